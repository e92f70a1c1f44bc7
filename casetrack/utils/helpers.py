"""Shared service-layer helpers.

unit_of_work:  one commit per public service call; rollback on any failure
               and StaleDataError → ConcurrencyError translation
dump_json:     opaque JSON serialisation for metadata/mentions columns
"""
import json
import logging
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from casetrack.core.exceptions import ConcurrencyError
from casetrack.models import db

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(resource: str, resource_id=None):
    """Commit everything flushed inside the block as a single transaction.

    Usage::

        with unit_of_work("ScenarioStep", step_id):
            step.status = status
            propagate_from_scenario(step.scenario_id)

    StaleDataError (a versioned scenario/package row changed under us)
    → rollback + ConcurrencyError.  Any other exception → rollback + re-raise,
    so a failing propagation stage never leaves a half-propagated state behind.
    """
    try:
        yield
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification of %s id=%s: %s", resource, resource_id, exc)
        raise ConcurrencyError(resource=resource, resource_id=resource_id) from exc
    except Exception:
        db.session.rollback()
        raise


def dump_json(value):
    """Serialise an optional payload; None stays None."""
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)
