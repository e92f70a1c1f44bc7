"""Execution service layer — step outcomes, bugs and step comments.

Transaction policy: every public mutating function is one unit of work
(``unit_of_work``): the primary write, status propagation and history rows
are flushed together and committed once. A failure anywhere rolls the whole
call back.

Operations:
- Step status mutation + blocked-status propagation
- Bug registration (forces scenario FAILED, records BUG_CREATED history)
- Bug listing per scenario / per package, partial update, delete
- Step comments with user mentions
"""
import logging

from casetrack.core.exceptions import NotFoundError, ValidationError
from casetrack.models import db
from casetrack.models.execution import (
    Bug, BugSeverity, BugStatus, ScenarioStep, StepComment, StepStatus,
    TestPackage, TestScenario,
)
from casetrack.services.aggregates import get_scenario_aggregate
from casetrack.services.history_service import append_history
from casetrack.services.status_propagation import (
    apply_scenario_trigger,
    propagate_from_scenario,
)
from casetrack.services.status_rules import ScenarioTrigger
from casetrack.utils.helpers import dump_json, unit_of_work

logger = logging.getLogger(__name__)

BUG_CREATED = "BUG_CREATED"


def _get_step(step_id):
    step = db.session.get(ScenarioStep, step_id)
    if step is None:
        raise NotFoundError(resource="ScenarioStep", resource_id=step_id)
    return step


def _get_bug(bug_id):
    bug = db.session.get(Bug, bug_id)
    if bug is None:
        raise NotFoundError(resource="Bug", resource_id=bug_id)
    return bug


# ═════════════════════════════════════════════════════════════════════════════
# STEP STATUS
# ═════════════════════════════════════════════════════════════════════════════

def update_step_status(step_id: int, status: StepStatus, actual_result: str | None = None):
    """Set a step's outcome and propagate the blocked status upward.

    ``actual_result`` is a partial update: None keeps the stored value,
    any string (including "") replaces it.

    Returns:
        (step, propagation) where propagation is the dict returned by
        ``propagate_from_scenario``.

    Raises:
        NotFoundError: If the step does not exist.
        ConcurrencyError: If the scenario or package changed concurrently.
    """
    with unit_of_work("ScenarioStep", step_id):
        step = _get_step(step_id)
        step.status = StepStatus(status)
        if actual_result is not None:
            step.actual_result = actual_result
        db.session.flush()

        propagation = propagate_from_scenario(step.scenario_id)

    logger.info(
        "Step status updated step=%s status=%s scenario=%s→%s package=%s→%s",
        step.id, step.status.value,
        propagation["scenario_id"], propagation["scenario_status"],
        propagation["package_id"], propagation["package_status"],
    )
    return step, propagation


# ═════════════════════════════════════════════════════════════════════════════
# BUGS
# ═════════════════════════════════════════════════════════════════════════════

def create_bug(scenario_id: int, data: dict, user_id: int) -> Bug:
    """Register a bug against a scenario.

    Side effects (same transaction):
      - scenario status forced to FAILED unless already FAILED
      - one BUG_CREATED history entry with {bugId, severity, relatedStepId}

    Args:
        scenario_id: Owning scenario.
        data: {title, severity, description?, related_step_id?}
        user_id: Acting user.

    Raises:
        NotFoundError: If the scenario does not exist.
        ValidationError: If related_step_id is not a step of this scenario.
    """
    severity = BugSeverity(data["severity"])
    related_step_id = data.get("related_step_id")

    with unit_of_work("TestScenario", scenario_id):
        scenario = get_scenario_aggregate(scenario_id, for_update=True)

        if related_step_id is not None and related_step_id not in {s.id for s in scenario.steps}:
            raise ValidationError(
                f"Step {related_step_id} does not belong to scenario {scenario_id}",
                details={"relatedStepId": related_step_id},
            )

        bug = Bug(
            scenario_id=scenario.id,
            project_id=scenario.project_id,
            related_step_id=related_step_id,
            title=data["title"].strip(),
            description=data.get("description"),
            severity=severity,
            created_by=user_id,
        )
        db.session.add(bug)
        db.session.flush()

        apply_scenario_trigger(scenario, ScenarioTrigger.BUG_CREATED)

        append_history(
            scenario.id,
            BUG_CREATED,
            user_id,
            description=f"Bug created: {bug.title}",
            metadata={
                "bugId": bug.id,
                "severity": severity.value,
                "relatedStepId": related_step_id,
            },
        )

    logger.info("Bug created id=%s scenario=%s severity=%s", bug.id, scenario_id, severity.value)
    return bug


def list_scenario_bugs(scenario_id: int) -> list[Bug]:
    """Bugs of one scenario, newest first."""
    if db.session.get(TestScenario, scenario_id) is None:
        raise NotFoundError(resource="TestScenario", resource_id=scenario_id)
    return (
        Bug.query.filter_by(scenario_id=scenario_id)
        .order_by(Bug.created_at.desc(), Bug.id.desc())
        .all()
    )


def list_package_bugs(project_id: int, package_id: int) -> list[Bug]:
    """Bugs of every scenario in a package, newest first.

    Raises:
        NotFoundError: If the package does not exist within the project.
    """
    package = TestPackage.query.filter_by(id=package_id, project_id=project_id).first()
    if package is None:
        raise NotFoundError(resource="TestPackage", resource_id=package_id)

    scenario_ids = db.session.query(TestScenario.id).filter_by(
        package_id=package_id, project_id=project_id,
    )
    return (
        Bug.query.filter(Bug.scenario_id.in_(scenario_ids))
        .order_by(Bug.created_at.desc(), Bug.id.desc())
        .all()
    )


_BUG_UPDATABLE = ("title", "description", "severity", "status")


def update_bug(bug_id: int, data: dict) -> Bug:
    """Partial update: only keys present in ``data`` are written.

    Bug edits do not touch scenario status.
    """
    with unit_of_work("Bug", bug_id):
        bug = _get_bug(bug_id)
        for field in _BUG_UPDATABLE:
            if field not in data:
                continue
            value = data[field]
            if field == "severity":
                value = BugSeverity(value)
            elif field == "status":
                value = BugStatus(value)
            setattr(bug, field, value)

    logger.info("Bug updated id=%s fields=%s", bug_id, sorted(k for k in data if k in _BUG_UPDATABLE))
    return bug


def delete_bug(bug_id: int) -> None:
    with unit_of_work("Bug", bug_id):
        bug = _get_bug(bug_id)
        db.session.delete(bug)
    logger.info("Bug deleted id=%s", bug_id)


# ═════════════════════════════════════════════════════════════════════════════
# STEP COMMENTS
# ═════════════════════════════════════════════════════════════════════════════

def add_step_comment(step_id: int, text: str, user_id: int, mentions: list[int] | None = None) -> StepComment:
    """Attach a comment to a step. ``mentions`` is a list of user ids."""
    with unit_of_work("ScenarioStep", step_id):
        _get_step(step_id)
        comment = StepComment(
            step_id=step_id,
            user_id=user_id,
            text=text.strip(),
            mentions_json=dump_json(mentions) if mentions else None,
        )
        db.session.add(comment)

    logger.info("Step comment added id=%s step=%s", comment.id, step_id)
    return comment


def list_step_comments(step_id: int) -> list[StepComment]:
    """Comments on a step, oldest first."""
    _get_step(step_id)
    return (
        StepComment.query.filter_by(step_id=step_id)
        .order_by(StepComment.created_at.asc(), StepComment.id.asc())
        .all()
    )
