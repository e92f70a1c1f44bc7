"""
CaseTrack — Test Execution Service
Blueprint registry and shared request helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from casetrack.core.exceptions import ConcurrencyError, NotFoundError, ValidationError
from casetrack.services.user_service import resolve_acting_user
from casetrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Map service-layer exceptions to JSON responses for one blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConcurrencyError)
    def _handle_conflict(error: ConcurrencyError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def pick(data: dict, *keys, default=None):
    """First present key wins — accepts camelCase and snake_case spellings."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def optional_text(data: dict, *fields):
    """400 response for the first present field that is neither null nor a string."""
    for field in fields:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            return api_error(E.VALIDATION_INVALID, f"{field} must be a string")
    return None


def acting_user_id() -> tuple[int | None, tuple | None]:
    """Resolve the acting user from ``X-User-Id`` (first user when absent).

    Returns ``(user_id, None)`` or ``(None, error_response)`` for a malformed
    header. Unknown ids raise NotFoundError via ``resolve_acting_user``.
    """
    raw = request.headers.get("X-User-Id")
    if raw in (None, ""):
        return resolve_acting_user(None), None
    try:
        user_id = int(raw)
    except ValueError:
        return None, api_error(E.VALIDATION_INVALID, "X-User-Id header must be an integer")
    return resolve_acting_user(user_id), None
