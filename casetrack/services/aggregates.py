"""Aggregate readers — scenario-with-steps and package-with-scenarios snapshots.

Read-only. Every call bypasses the session identity map
(``populate_existing``) so the caller never acts on a snapshot loaded before
its own or someone else's last write. ``for_update=True`` additionally takes
row locks on backends that support ``SELECT ... FOR UPDATE``.
"""

import logging

from sqlalchemy.orm import selectinload

from casetrack.core.exceptions import NotFoundError
from casetrack.models.execution import TestPackage, TestScenario

logger = logging.getLogger(__name__)


def get_scenario_aggregate(scenario_id: int, *, for_update: bool = False) -> TestScenario:
    """Return a scenario with its steps ordered by step_order.

    Raises:
        NotFoundError: If the scenario does not exist.
    """
    q = (
        TestScenario.query
        .options(selectinload(TestScenario.steps))
        .populate_existing()
        .filter(TestScenario.id == scenario_id)
    )
    if for_update:
        q = q.with_for_update(of=TestScenario)
    scenario = q.one_or_none()
    if scenario is None:
        raise NotFoundError(resource="TestScenario", resource_id=scenario_id)
    return scenario


def get_package_aggregate(package_id: int, *, for_update: bool = False) -> TestPackage:
    """Return a package with its scenarios, each with ordered steps.

    Raises:
        NotFoundError: If the package does not exist.
    """
    q = (
        TestPackage.query
        .options(
            selectinload(TestPackage.scenarios).selectinload(TestScenario.steps),
        )
        .populate_existing()
        .filter(TestPackage.id == package_id)
    )
    if for_update:
        q = q.with_for_update(of=TestPackage)
    package = q.one_or_none()
    if package is None:
        raise NotFoundError(resource="TestPackage", resource_id=package_id)
    return package
