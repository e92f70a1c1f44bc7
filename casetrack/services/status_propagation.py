"""
Execution — Blocked Status Propagation Engine

Propagates step outcomes upward through the ownership hierarchy:
  ScenarioStep.status → TestScenario.status (BLOCKED / EXECUTED)
  TestScenario.status → TestPackage.status  (BLOCKED / IN_TEST)

Key Rules (see status_rules):
  - all steps BLOCKED (and ≥1 step)            → scenario BLOCKED
  - scenario BLOCKED but steps no longer all   → scenario EXECUTED
  - all scenarios blocked (and ≥1 scenario)    → package BLOCKED
  - package BLOCKED but not all blocked        → package IN_TEST
  - anything else                              → no write

Each stage re-reads its aggregate instead of reusing the caller's objects.
Writes are flushed, never committed: the calling service owns the
transaction, so a step mutation and both propagation stages land atomically.

Usage:
    from casetrack.services.status_propagation import (
        propagate_from_scenario,
        apply_scenario_trigger,
    )
"""

import logging

from casetrack.models import db
from casetrack.models.execution import TestPackage, TestScenario
from casetrack.services.aggregates import get_package_aggregate, get_scenario_aggregate
from casetrack.services.status_rules import (
    ScenarioTrigger,
    resolve_package_transition,
    resolve_scenario_transition,
)

logger = logging.getLogger(__name__)


# ── Status write entry points ───────────────────────────────────────────────

def apply_scenario_trigger(scenario: TestScenario, trigger: ScenarioTrigger) -> bool:
    """Re-evaluate and conditionally write a scenario status.

    The only code path that changes a scenario status automatically, for both
    the blocking rule and the bug rule.

    Returns:
        True when a new status was written.
    """
    step_statuses = [s.status for s in scenario.steps]
    new_status = resolve_scenario_transition(scenario.status, trigger, step_statuses)
    if new_status is None:
        return False

    logger.info(
        "Scenario status %s → %s scenario=%s trigger=%s",
        scenario.status.value, new_status.value, scenario.id, trigger.value,
    )
    scenario.status = new_status
    db.session.flush()
    return True


def _apply_package_blocking(package: TestPackage) -> bool:
    snapshot = [
        (s.status, [st.status for st in s.steps]) for s in package.scenarios
    ]
    new_status = resolve_package_transition(package.status, snapshot)
    if new_status is None:
        return False

    logger.info(
        "Package status %s → %s package=%s",
        package.status.value, new_status.value, package.id,
    )
    package.status = new_status
    db.session.flush()
    return True


# ── Stages ──────────────────────────────────────────────────────────────────

def propagate_scenario(scenario_id: int) -> dict:
    """Scenario stage: fresh read, blocking rule, conditional write.

    Returns:
        dict with keys: scenario_id, scenario_status, scenario_updated, package_id
    """
    scenario = get_scenario_aggregate(scenario_id, for_update=True)
    updated = apply_scenario_trigger(scenario, ScenarioTrigger.STEPS_CHANGED)
    return {
        "scenario_id": scenario.id,
        "scenario_status": scenario.status.value,
        "scenario_updated": updated,
        "package_id": scenario.package_id,
    }


def propagate_package(package_id: int) -> dict:
    """Package stage: fresh read of package → scenarios → steps, conditional write.

    Returns:
        dict with keys: package_id, package_status, package_updated
    """
    package = get_package_aggregate(package_id, for_update=True)
    updated = _apply_package_blocking(package)
    return {
        "package_id": package.id,
        "package_status": package.status.value,
        "package_updated": updated,
    }


def propagate_from_scenario(scenario_id: int) -> dict:
    """
    Run both stages for a scenario whose steps changed.

    The package stage only runs when the scenario belongs to a package.
    Calling this twice without an intervening step change writes nothing on
    the second call.

    Returns:
        dict with keys: scenario_id, scenario_status, scenario_updated,
        package_id, package_status, package_updated
    """
    result = propagate_scenario(scenario_id)
    result.update({"package_status": None, "package_updated": False})

    if result["package_id"] is not None:
        result.update(propagate_package(result["package_id"]))

    return result
