"""Execution history service — append-only audit trail per scenario.

Transaction policy: ``append_history`` only flushes so it can join the
caller's unit of work (e.g. bug creation); ``record_history`` is the
standalone entry point and commits.
"""
import logging

from casetrack.core.exceptions import NotFoundError
from casetrack.models import db
from casetrack.models.execution import ExecutionHistory, TestScenario
from casetrack.utils.helpers import dump_json, unit_of_work

logger = logging.getLogger(__name__)


def append_history(scenario_id, action, user_id, description=None, metadata=None):
    """Add one history row to the current session (flush only).

    ``metadata`` is stored as opaque JSON; the engine never inspects it.
    """
    entry = ExecutionHistory(
        scenario_id=scenario_id,
        user_id=user_id,
        action=action,
        description=description,
        metadata_json=dump_json(metadata),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def record_history(scenario_id, action, user_id, description=None, metadata=None):
    """Append a history entry for an existing scenario and commit.

    Raises:
        NotFoundError: If the scenario does not exist.
    """
    with unit_of_work("TestScenario", scenario_id):
        if db.session.get(TestScenario, scenario_id) is None:
            raise NotFoundError(resource="TestScenario", resource_id=scenario_id)
        entry = append_history(scenario_id, action, user_id, description, metadata)

    logger.info("History recorded id=%s scenario=%s action=%s", entry.id, scenario_id, action)
    return entry


def list_history(scenario_id):
    """Return history entries for a scenario, newest first."""
    if db.session.get(TestScenario, scenario_id) is None:
        raise NotFoundError(resource="TestScenario", resource_id=scenario_id)
    return (
        ExecutionHistory.query
        .filter_by(scenario_id=scenario_id)
        .order_by(ExecutionHistory.created_at.desc(), ExecutionHistory.id.desc())
        .all()
    )
