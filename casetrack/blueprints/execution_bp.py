"""
CaseTrack — Test Execution Service
Execution Blueprint — step outcomes, bugs, comments and history.

Endpoints:
    Step execution:
        PUT    /api/v1/steps/<sid>/status                     — Set outcome (+ propagation)
        GET    /api/v1/steps/<sid>/comments                   — List comments
        POST   /api/v1/steps/<sid>/comments                   — Add comment

    Bugs:
        GET    /api/v1/scenarios/<scid>/bugs                  — List scenario bugs
        POST   /api/v1/scenarios/<scid>/bugs                  — Register bug (scenario → FAILED)
        GET    /api/v1/projects/<pid>/packages/<pkid>/bugs    — List package bugs
        PUT    /api/v1/bugs/<bid>                             — Partial update
        DELETE /api/v1/bugs/<bid>                             — Delete

    Execution history:
        GET    /api/v1/scenarios/<scid>/history               — Audit trail (newest first)
        POST   /api/v1/scenarios/<scid>/history               — Append entry

Acting user: ``X-User-Id`` header, first registered user when absent.
Service layer owns all business logic and commits.
"""

import logging

from flask import Blueprint, jsonify

from casetrack.blueprints import (
    acting_user_id, json_body, optional_text, pick, register_error_handlers,
)
from casetrack.models.execution import BugSeverity, BugStatus, StepStatus
from casetrack.services import execution_service, history_service
from casetrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

execution_bp = Blueprint("execution", __name__, url_prefix="/api/v1")
register_error_handlers(execution_bp)

STEP_STATUS_VALUES = [s.value for s in StepStatus]
SEVERITY_VALUES = [s.value for s in BugSeverity]
BUG_STATUS_VALUES = [s.value for s in BugStatus]


def _optional_int(value, field):
    """Coerce an optional id; returns (int | None, error)."""
    if value in (None, ""):
        return None, None
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer")


# ═════════════════════════════════════════════════════════════════════════
# Step execution
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/steps/<int:step_id>/status", methods=["PUT"])
def update_step_status(step_id):
    """Set a step's outcome; scenario and package statuses are re-derived.

    Body: { status: PENDING|PASSED|FAILED|BLOCKED, actualResult? }
    Returns: { step, propagation } (200).
    """
    data = json_body()
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    if status not in STEP_STATUS_VALUES:
        return api_error(
            E.VALIDATION_INVALID, f"Invalid status: {status}",
            details={"allowed": STEP_STATUS_VALUES},
        )

    actual_result = pick(data, "actualResult", "actual_result")
    if actual_result is not None and not isinstance(actual_result, str):
        return api_error(E.VALIDATION_INVALID, "actualResult must be a string")

    step, propagation = execution_service.update_step_status(
        step_id, StepStatus(status), actual_result,
    )
    return jsonify({"step": step.to_dict(), "propagation": propagation}), 200


@execution_bp.route("/steps/<int:step_id>/comments", methods=["GET"])
def list_step_comments(step_id):
    comments = execution_service.list_step_comments(step_id)
    return jsonify({"comments": [c.to_dict() for c in comments]}), 200


@execution_bp.route("/steps/<int:step_id>/comments", methods=["POST"])
def add_step_comment(step_id):
    """Body: { text, mentions?: [user_id, …] }"""
    user_id, err = acting_user_id()
    if err:
        return err

    data = json_body()
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return api_error(E.VALIDATION_REQUIRED, "text is required")

    mentions = data.get("mentions") or []
    if not isinstance(mentions, list) or not all(isinstance(m, int) for m in mentions):
        return api_error(E.VALIDATION_INVALID, "mentions must be a list of user ids")

    comment = execution_service.add_step_comment(step_id, text, user_id, mentions)
    return jsonify({"comment": comment.to_dict()}), 201


# ═════════════════════════════════════════════════════════════════════════
# Bugs
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/scenarios/<int:scenario_id>/bugs", methods=["GET"])
def list_scenario_bugs(scenario_id):
    bugs = execution_service.list_scenario_bugs(scenario_id)
    return jsonify({"bugs": [b.to_dict() for b in bugs]}), 200


@execution_bp.route("/scenarios/<int:scenario_id>/bugs", methods=["POST"])
def create_bug(scenario_id):
    """Register a bug; the scenario is forced to FAILED.

    Body: { title, severity: LOW|MEDIUM|HIGH|CRITICAL, description?, relatedStepId? }
    Returns: { bug } (201).
    """
    user_id, err = acting_user_id()
    if err:
        return err

    data = json_body()
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    if len(title.strip()) > 255:
        return api_error(E.VALIDATION_INVALID, "title must be ≤ 255 characters")

    severity = data.get("severity")
    if severity not in SEVERITY_VALUES:
        return api_error(
            E.VALIDATION_INVALID, f"Invalid severity: {severity}",
            details={"allowed": SEVERITY_VALUES},
        )

    err = optional_text(data, "description")
    if err:
        return err

    related_step_id, err = _optional_int(pick(data, "relatedStepId", "related_step_id"), "relatedStepId")
    if err:
        return err

    bug = execution_service.create_bug(
        scenario_id,
        {
            "title": title,
            "severity": severity,
            "description": data.get("description"),
            "related_step_id": related_step_id,
        },
        user_id,
    )
    return jsonify({"bug": bug.to_dict()}), 201


@execution_bp.route("/projects/<int:project_id>/packages/<int:package_id>/bugs", methods=["GET"])
def list_package_bugs(project_id, package_id):
    bugs = execution_service.list_package_bugs(project_id, package_id)
    return jsonify({"bugs": [b.to_dict() for b in bugs]}), 200


@execution_bp.route("/bugs/<int:bug_id>", methods=["PUT"])
def update_bug(bug_id):
    """Body: any of { title, description, severity, status }"""
    data = json_body()
    changes = {}

    if "title" in data:
        title = data["title"]
        if not isinstance(title, str) or not title.strip():
            return api_error(E.VALIDATION_INVALID, "title cannot be empty")
        changes["title"] = title.strip()
    if "description" in data:
        err = optional_text(data, "description")
        if err:
            return err
        changes["description"] = data["description"]
    if "severity" in data:
        if data["severity"] not in SEVERITY_VALUES:
            return api_error(
                E.VALIDATION_INVALID, f"Invalid severity: {data['severity']}",
                details={"allowed": SEVERITY_VALUES},
            )
        changes["severity"] = data["severity"]
    if "status" in data:
        if data["status"] not in BUG_STATUS_VALUES:
            return api_error(
                E.VALIDATION_INVALID, f"Invalid status: {data['status']}",
                details={"allowed": BUG_STATUS_VALUES},
            )
        changes["status"] = data["status"]

    bug = execution_service.update_bug(bug_id, changes)
    return jsonify({"bug": bug.to_dict()}), 200


@execution_bp.route("/bugs/<int:bug_id>", methods=["DELETE"])
def delete_bug(bug_id):
    execution_service.delete_bug(bug_id)
    return "", 204


# ═════════════════════════════════════════════════════════════════════════
# Execution history
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/scenarios/<int:scenario_id>/history", methods=["GET"])
def get_history(scenario_id):
    entries = history_service.list_history(scenario_id)
    return jsonify({"history": [e.to_dict() for e in entries]}), 200


@execution_bp.route("/scenarios/<int:scenario_id>/history", methods=["POST"])
def register_history(scenario_id):
    """Body: { action, description?, metadata? }"""
    user_id, err = acting_user_id()
    if err:
        return err

    data = json_body()
    action = data.get("action")
    if not isinstance(action, str) or not action.strip():
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    if len(action.strip()) > 60:
        return api_error(E.VALIDATION_INVALID, "action must be ≤ 60 characters")
    err = optional_text(data, "description")
    if err:
        return err

    entry = history_service.record_history(
        scenario_id,
        action.strip(),
        user_id,
        description=data.get("description"),
        metadata=data.get("metadata"),
    )
    return jsonify({"history": entry.to_dict()}), 201
