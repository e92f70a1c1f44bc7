"""Catalog service — projects, packages, scenarios and their step sets.

Every public mutating function commits (``unit_of_work``). Operations that
change which steps or scenarios an aggregate holds re-run status propagation
in the same transaction, so the blocked invariants hold after bulk edits as
well as after single step mutations.
"""
import logging
from datetime import datetime, timezone

from casetrack.core.exceptions import NotFoundError, ValidationError
from casetrack.models import db
from casetrack.models.execution import (
    PACKAGE_TRANSITIONS, PackageStatus, ScenarioStatus, ScenarioStep,
    StepStatus, TestPackage, TestScenario, validate_package_transition,
)
from casetrack.models.project import Project
from casetrack.services.aggregates import get_package_aggregate, get_scenario_aggregate
from casetrack.services.status_propagation import propagate_from_scenario, propagate_package
from casetrack.utils.helpers import unit_of_work

logger = logging.getLogger(__name__)


def _get_project(project_id):
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def _build_steps(raw_steps):
    """Turn ``[{action, expected?}]`` into ScenarioStep rows numbered 1..n."""
    steps = []
    for index, raw in enumerate(raw_steps or [], start=1):
        steps.append(ScenarioStep(
            step_order=index,
            action=raw["action"].strip(),
            expected=(raw.get("expected") or "").strip(),
            status=StepStatus.PENDING,
        ))
    return steps


# ── Projects ────────────────────────────────────────────────────────────────

def create_project(data: dict) -> Project:
    with unit_of_work("Project"):
        project = Project(
            name=data["name"].strip(),
            description=data.get("description", ""),
        )
        db.session.add(project)
    logger.info("Project created id=%s", project.id)
    return project


# ── Packages ────────────────────────────────────────────────────────────────

def create_package(project_id: int, data: dict) -> TestPackage:
    with unit_of_work("Project", project_id):
        _get_project(project_id)
        package = TestPackage(
            project_id=project_id,
            title=data["title"].strip(),
            description=data.get("description", ""),
            release=data.get("release", ""),
            status=PackageStatus.CREATED,
        )
        db.session.add(package)
    logger.info("Package created id=%s project=%s", package.id, project_id)
    return package


def get_package(package_id: int) -> TestPackage:
    return get_package_aggregate(package_id)


def transition_package(package_id: int, new_status: PackageStatus, user_id: int,
                       reason: str | None = None) -> TestPackage:
    """Move a package along its review lifecycle.

    BLOCKED is owned by status propagation: it is never a valid manual
    target and a blocked package cannot be reviewed.

    Raises:
        NotFoundError: If the package does not exist.
        ValidationError: On an invalid transition or a rejection without reason.
    """
    new_status = PackageStatus(new_status)
    with unit_of_work("TestPackage", package_id):
        package = get_package_aggregate(package_id, for_update=True)
        old_status = package.status

        if not validate_package_transition(old_status, new_status):
            allowed = [s.value for s in PACKAGE_TRANSITIONS.get(old_status, [])]
            raise ValidationError(
                f"Invalid status transition: {old_status.value} → {new_status.value}. "
                f"Allowed: {allowed}",
                details={"status": new_status.value, "allowed": allowed},
            )
        if new_status == PackageStatus.REJECTED and not (reason or "").strip():
            raise ValidationError("A rejection reason is required", details={"reason": "required"})

        package.status = new_status
        if new_status in (PackageStatus.COMPLETED, PackageStatus.APPROVED, PackageStatus.REJECTED):
            package.reviewed_by_id = user_id
            package.reviewed_at = datetime.now(timezone.utc)
            package.rejection_reason = reason.strip() if new_status == PackageStatus.REJECTED else None

    logger.info(
        "Package transition %s → %s package=%s by user=%s",
        old_status.value, new_status.value, package_id, user_id,
    )
    return package


# ── Scenarios ───────────────────────────────────────────────────────────────

def create_scenario(project_id: int, data: dict) -> TestScenario:
    """Create a scenario (optionally inside a package) with an initial step set.

    Raises:
        NotFoundError: If the project does not exist.
        ValidationError: If package_id does not belong to the project.
    """
    package_id = data.get("package_id")
    with unit_of_work("Project", project_id):
        _get_project(project_id)
        if package_id is not None:
            package = db.session.get(TestPackage, package_id)
            if package is None or package.project_id != project_id:
                raise ValidationError(
                    f"Package {package_id} does not belong to project {project_id}",
                    details={"packageId": package_id},
                )

        scenario = TestScenario(
            project_id=project_id,
            package_id=package_id,
            title=data["title"].strip(),
            description=data.get("description", ""),
            status=ScenarioStatus.CREATED,
            steps=_build_steps(data.get("steps")),
        )
        db.session.add(scenario)
        db.session.flush()

        if package_id is not None:
            # A new member can unblock its package.
            propagate_package(package_id)

    logger.info("Scenario created id=%s project=%s package=%s", scenario.id, project_id, package_id)
    return scenario


def get_scenario(scenario_id: int) -> TestScenario:
    return get_scenario_aggregate(scenario_id)


def replace_scenario_steps(scenario_id: int, raw_steps: list[dict]) -> tuple[TestScenario, dict]:
    """Bulk-replace a scenario's step set; new steps are numbered 1..n and PENDING.

    Returns:
        (scenario, propagation)
    """
    with unit_of_work("TestScenario", scenario_id):
        scenario = get_scenario_aggregate(scenario_id, for_update=True)
        scenario.steps.clear()
        # Old rows must be gone before new ones reuse their step_order.
        db.session.flush()
        scenario.steps.extend(_build_steps(raw_steps))
        db.session.flush()

        propagation = propagate_from_scenario(scenario_id)

    logger.info("Scenario steps replaced scenario=%s count=%s", scenario_id, len(raw_steps or []))
    return get_scenario_aggregate(scenario_id), propagation


def duplicate_scenario(scenario_id: int) -> TestScenario:
    """Copy a scenario into the same project/package with fresh PENDING steps."""
    with unit_of_work("TestScenario", scenario_id):
        source = get_scenario_aggregate(scenario_id)
        copy = TestScenario(
            project_id=source.project_id,
            package_id=source.package_id,
            title=f"{source.title} (copy)",
            description=source.description,
            status=ScenarioStatus.CREATED,
            steps=_build_steps(
                [{"action": s.action, "expected": s.expected} for s in source.steps]
            ),
        )
        db.session.add(copy)
        db.session.flush()

        if copy.package_id is not None:
            propagate_package(copy.package_id)

    logger.info("Scenario duplicated source=%s copy=%s", scenario_id, copy.id)
    return copy


def delete_scenario(scenario_id: int) -> dict | None:
    """Delete a scenario with its steps, bugs, comments and history.

    Removing a member can move the package either way: into BLOCKED when the
    last unblocked scenario goes, out of BLOCKED when the package empties.

    Returns:
        The package-stage propagation dict, or None when the scenario had no package.

    Raises:
        NotFoundError: If the scenario does not exist.
    """
    with unit_of_work("TestScenario", scenario_id):
        scenario = get_scenario_aggregate(scenario_id, for_update=True)
        package_id = scenario.package_id
        db.session.delete(scenario)
        db.session.flush()

        propagation = propagate_package(package_id) if package_id is not None else None

    logger.info("Scenario deleted id=%s package=%s", scenario_id, package_id)
    return propagation
