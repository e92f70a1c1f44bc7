"""
Blocking rules — pure derivation functions, no session access.

Rules:
  - A scenario is blocked when it has at least one step and every step is BLOCKED
    (an empty step list is never blocked)
  - A scenario *counts as* blocked for its package when its persisted status is
    already BLOCKED, or when its steps satisfy the rule above
  - A package is blocked when it has at least one scenario and every scenario
    counts as blocked
  - Moving into BLOCKED happens when the rule turns true; moving out of BLOCKED
    goes to a fixed resumed status; any other status is left untouched
  - A bug forces FAILED regardless of the blocking rule

Usage:
    from casetrack.services.status_rules import (
        derive_blocked,
        derive_package_blocked,
        resolve_scenario_transition,
        resolve_package_transition,
    )
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from casetrack.models.execution import (
    PACKAGE_RESUMED_STATUS,
    SCENARIO_RESUMED_STATUS,
    PackageStatus,
    ScenarioStatus,
    StepStatus,
)


class ScenarioTrigger(str, Enum):
    """What caused a scenario status re-evaluation."""
    STEPS_CHANGED = "steps_changed"
    BUG_CREATED = "bug_created"


# ── Derivation ──────────────────────────────────────────────────────────────

def derive_blocked(step_statuses: Iterable[StepStatus]) -> bool:
    """True iff there is at least one step and all steps are BLOCKED."""
    statuses = list(step_statuses)
    return bool(statuses) and all(s == StepStatus.BLOCKED for s in statuses)


def scenario_is_blocked(status: ScenarioStatus, step_statuses: Iterable[StepStatus]) -> bool:
    """Package-level view of a scenario: trusted BLOCKED status, or steps all blocked."""
    return status == ScenarioStatus.BLOCKED or derive_blocked(step_statuses)


def derive_package_blocked(
    scenarios: Iterable[tuple[ScenarioStatus, Iterable[StepStatus]]],
) -> bool:
    """True iff there is at least one scenario and every scenario counts as blocked.

    Args:
        scenarios: ``(scenario_status, step_statuses)`` pairs.
    """
    snapshot = list(scenarios)
    return bool(snapshot) and all(
        scenario_is_blocked(status, steps) for status, steps in snapshot
    )


# ── Transitions ─────────────────────────────────────────────────────────────

def next_blocking_status(current, all_blocked: bool, *, blocked, resumed):
    """Three-way blocking rule.

    Returns the status to write, or None when no write is needed.
    """
    if all_blocked and current != blocked:
        return blocked
    if not all_blocked and current == blocked:
        return resumed
    return None


def resolve_scenario_transition(
    current: ScenarioStatus,
    trigger: ScenarioTrigger,
    step_statuses: Iterable[StepStatus] = (),
) -> ScenarioStatus | None:
    """Single decision point for every automatic scenario status change.

    BUG_CREATED wins unconditionally (FAILED, even over BLOCKED). STEPS_CHANGED
    applies the blocking rule; a FAILED scenario whose steps are all blocked
    therefore moves to BLOCKED on the next step mutation.
    """
    if trigger == ScenarioTrigger.BUG_CREATED:
        return None if current == ScenarioStatus.FAILED else ScenarioStatus.FAILED
    return next_blocking_status(
        current,
        derive_blocked(step_statuses),
        blocked=ScenarioStatus.BLOCKED,
        resumed=SCENARIO_RESUMED_STATUS,
    )


def resolve_package_transition(
    current: PackageStatus,
    scenarios: Iterable[tuple[ScenarioStatus, Iterable[StepStatus]]],
) -> PackageStatus | None:
    """Blocking rule at package granularity; None means no write."""
    return next_blocking_status(
        current,
        derive_package_blocked(scenarios),
        blocked=PackageStatus.BLOCKED,
        resumed=PACKAGE_RESUMED_STATUS,
    )
