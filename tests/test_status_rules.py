"""
Tests: blocking rules — pure derivation and transition functions.

No database access; every case feeds plain enum values.
"""

import pytest

from casetrack.models.execution import (
    PACKAGE_TRANSITIONS,
    PackageStatus,
    ScenarioStatus,
    StepStatus,
    validate_package_transition,
)
from casetrack.services.status_rules import (
    ScenarioTrigger,
    derive_blocked,
    derive_package_blocked,
    next_blocking_status,
    resolve_package_transition,
    resolve_scenario_transition,
    scenario_is_blocked,
)

B = StepStatus.BLOCKED
P = StepStatus.PASSED
F = StepStatus.FAILED
N = StepStatus.PENDING


# ═════════════════════════════════════════════════════════════════════════════
# derive_blocked
# ═════════════════════════════════════════════════════════════════════════════


def test_empty_step_list_is_never_blocked():
    assert derive_blocked([]) is False


def test_single_blocked_step_is_blocked():
    assert derive_blocked([B]) is True


def test_all_blocked_steps_is_blocked():
    assert derive_blocked([B, B, B]) is True


@pytest.mark.parametrize("other", [P, F, N])
def test_one_non_blocked_step_breaks_the_rule(other):
    assert derive_blocked([B, other, B]) is False


def test_derive_blocked_accepts_generators():
    assert derive_blocked(s for s in [B, B]) is True


# ═════════════════════════════════════════════════════════════════════════════
# derive_package_blocked
# ═════════════════════════════════════════════════════════════════════════════


def test_empty_package_is_never_blocked():
    assert derive_package_blocked([]) is False


def test_package_blocked_when_every_scenario_steps_blocked():
    snapshot = [
        (ScenarioStatus.CREATED, [B, B]),
        (ScenarioStatus.EXECUTED, [B]),
    ]
    assert derive_package_blocked(snapshot) is True


def test_persisted_blocked_status_counts_even_without_steps():
    snapshot = [
        (ScenarioStatus.BLOCKED, []),
        (ScenarioStatus.CREATED, [B]),
    ]
    assert derive_package_blocked(snapshot) is True


def test_package_not_blocked_with_an_open_scenario():
    snapshot = [
        (ScenarioStatus.BLOCKED, [B]),
        (ScenarioStatus.CREATED, [B, P]),
    ]
    assert derive_package_blocked(snapshot) is False


def test_scenario_without_steps_keeps_package_unblocked():
    snapshot = [
        (ScenarioStatus.BLOCKED, [B]),
        (ScenarioStatus.CREATED, []),
    ]
    assert derive_package_blocked(snapshot) is False


def test_scenario_is_blocked_trusts_status_or_steps():
    assert scenario_is_blocked(ScenarioStatus.BLOCKED, [P]) is True
    assert scenario_is_blocked(ScenarioStatus.FAILED, [B, B]) is True
    assert scenario_is_blocked(ScenarioStatus.FAILED, [B, P]) is False


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


def test_next_blocking_status_three_way_rule():
    kw = {"blocked": "X", "resumed": "R"}
    assert next_blocking_status("A", True, **kw) == "X"
    assert next_blocking_status("X", True, **kw) is None
    assert next_blocking_status("X", False, **kw) == "R"
    assert next_blocking_status("A", False, **kw) is None


def test_scenario_moves_to_blocked_when_all_steps_blocked():
    new = resolve_scenario_transition(ScenarioStatus.PASSED, ScenarioTrigger.STEPS_CHANGED, [B, B])
    assert new == ScenarioStatus.BLOCKED


def test_blocked_scenario_resumes_as_executed():
    new = resolve_scenario_transition(ScenarioStatus.BLOCKED, ScenarioTrigger.STEPS_CHANGED, [B, P])
    assert new == ScenarioStatus.EXECUTED


@pytest.mark.parametrize("status", [
    ScenarioStatus.CREATED, ScenarioStatus.PASSED, ScenarioStatus.FAILED,
    ScenarioStatus.APPROVED, ScenarioStatus.REPROVED, ScenarioStatus.EXECUTED,
])
def test_non_blocked_scenario_untouched_when_steps_open(status):
    assert resolve_scenario_transition(status, ScenarioTrigger.STEPS_CHANGED, [P, N]) is None


def test_blocked_scenario_with_no_steps_resumes():
    new = resolve_scenario_transition(ScenarioStatus.BLOCKED, ScenarioTrigger.STEPS_CHANGED, [])
    assert new == ScenarioStatus.EXECUTED


def test_bug_forces_failed_even_over_blocked():
    new = resolve_scenario_transition(ScenarioStatus.BLOCKED, ScenarioTrigger.BUG_CREATED, [B, B])
    assert new == ScenarioStatus.FAILED


def test_bug_on_failed_scenario_writes_nothing():
    assert resolve_scenario_transition(ScenarioStatus.FAILED, ScenarioTrigger.BUG_CREATED) is None


def test_package_blocked_and_resumed():
    blocked = [(ScenarioStatus.BLOCKED, [B])]
    open_ = [(ScenarioStatus.EXECUTED, [P])]
    assert resolve_package_transition(PackageStatus.IN_TEST, blocked) == PackageStatus.BLOCKED
    assert resolve_package_transition(PackageStatus.BLOCKED, blocked) is None
    assert resolve_package_transition(PackageStatus.BLOCKED, open_) == PackageStatus.IN_TEST
    assert resolve_package_transition(PackageStatus.APPROVED, open_) is None


def test_empty_blocked_package_resumes():
    assert resolve_package_transition(PackageStatus.BLOCKED, []) == PackageStatus.IN_TEST


# ═════════════════════════════════════════════════════════════════════════════
# Package review lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def test_review_lifecycle_transitions():
    assert validate_package_transition(PackageStatus.CREATED, PackageStatus.IN_TEST)
    assert validate_package_transition(PackageStatus.IN_TEST, PackageStatus.COMPLETED)
    assert validate_package_transition(PackageStatus.IN_TEST, PackageStatus.REJECTED)
    assert validate_package_transition(PackageStatus.REJECTED, PackageStatus.IN_TEST)
    assert validate_package_transition(PackageStatus.COMPLETED, PackageStatus.APPROVED)
    assert not validate_package_transition(PackageStatus.CREATED, PackageStatus.APPROVED)


def test_blocked_is_never_a_review_target():
    for targets in PACKAGE_TRANSITIONS.values():
        assert PackageStatus.BLOCKED not in targets
    assert PACKAGE_TRANSITIONS[PackageStatus.BLOCKED] == []
