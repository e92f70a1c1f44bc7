"""
CaseTrack — Test Execution Service
Catalog Blueprint — users, projects, packages, scenarios and step sets.

Endpoints:
    POST   /api/v1/users                                  — Register user
    POST   /api/v1/projects                               — Create project
    POST   /api/v1/projects/<pid>/packages                — Create package
    GET    /api/v1/packages/<pkid>                        — Package aggregate (scenarios + steps)
    POST   /api/v1/packages/<pkid>/transition             — Review lifecycle move
    POST   /api/v1/projects/<pid>/scenarios               — Create scenario (+ steps)
    GET    /api/v1/scenarios/<scid>                       — Scenario aggregate (steps)
    DELETE /api/v1/scenarios/<scid>                       — Delete scenario (+ package propagation)
    PUT    /api/v1/scenarios/<scid>/steps                 — Bulk-replace step set
    POST   /api/v1/scenarios/<scid>/duplicate             — Copy scenario
"""

import logging

from flask import Blueprint, jsonify

from casetrack.blueprints import (
    acting_user_id, json_body, optional_text, pick, register_error_handlers,
)
from casetrack.models.execution import PackageStatus
from casetrack.services import catalog_service, user_service
from casetrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")
register_error_handlers(catalog_bp)

REVIEW_TARGETS = [s.value for s in PackageStatus if s != PackageStatus.BLOCKED]


def _required_text(data, field, max_len=255):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    if len(value.strip()) > max_len:
        return api_error(E.VALIDATION_INVALID, f"{field} must be ≤ {max_len} characters")
    return None


def _validate_steps(raw_steps):
    if raw_steps is None:
        return None
    if not isinstance(raw_steps, list):
        return api_error(E.VALIDATION_INVALID, "steps must be a list")
    for index, raw in enumerate(raw_steps, start=1):
        if not isinstance(raw, dict) or not isinstance(raw.get("action"), str) or not raw["action"].strip():
            return api_error(E.VALIDATION_REQUIRED, f"steps[{index}].action is required")
        if raw.get("expected") is not None and not isinstance(raw["expected"], str):
            return api_error(E.VALIDATION_INVALID, f"steps[{index}].expected must be a string")
    return None


# ── Users & projects ─────────────────────────────────────────────────────────


@catalog_bp.route("/users", methods=["POST"])
def create_user():
    data = json_body()
    err = (
        _required_text(data, "name", 150)
        or _required_text(data, "email")
        or optional_text(data, "avatar_url", "avatarUrl")
    )
    if err:
        return err
    user = user_service.create_user(data)
    return jsonify(user.to_dict()), 201


@catalog_bp.route("/projects", methods=["POST"])
def create_project():
    data = json_body()
    err = _required_text(data, "name", 200) or optional_text(data, "description")
    if err:
        return err
    project = catalog_service.create_project(data)
    return jsonify(project.to_dict()), 201


# ── Packages ─────────────────────────────────────────────────────────────────


@catalog_bp.route("/projects/<int:project_id>/packages", methods=["POST"])
def create_package(project_id):
    data = json_body()
    err = _required_text(data, "title") or optional_text(data, "description", "release")
    if err:
        return err
    package = catalog_service.create_package(project_id, data)
    return jsonify(package.to_dict()), 201


@catalog_bp.route("/packages/<int:package_id>", methods=["GET"])
def get_package(package_id):
    package = catalog_service.get_package(package_id)
    return jsonify(package.to_dict(include_scenarios=True)), 200


@catalog_bp.route("/packages/<int:package_id>/transition", methods=["POST"])
def transition_package(package_id):
    """Body: { status: IN_TEST|COMPLETED|APPROVED|REJECTED|CREATED, reason? }"""
    user_id, err = acting_user_id()
    if err:
        return err

    data = json_body()
    err = optional_text(data, "reason")
    if err:
        return err
    status = data.get("status")
    if status not in REVIEW_TARGETS:
        return api_error(
            E.VALIDATION_INVALID, f"Invalid status: {status}",
            details={"allowed": REVIEW_TARGETS},
        )

    package = catalog_service.transition_package(
        package_id, PackageStatus(status), user_id, reason=data.get("reason"),
    )
    return jsonify(package.to_dict()), 200


# ── Scenarios ────────────────────────────────────────────────────────────────


@catalog_bp.route("/projects/<int:project_id>/scenarios", methods=["POST"])
def create_scenario(project_id):
    """Body: { title, description?, packageId?, steps?: [{action, expected?}] }"""
    data = json_body()
    err = (
        _required_text(data, "title")
        or optional_text(data, "description")
        or _validate_steps(data.get("steps"))
    )
    if err:
        return err

    package_id = pick(data, "packageId", "package_id")
    if package_id is not None and not isinstance(package_id, int):
        return api_error(E.VALIDATION_INVALID, "packageId must be an integer")

    scenario = catalog_service.create_scenario(project_id, {
        "title": data["title"],
        "description": data.get("description", ""),
        "package_id": package_id,
        "steps": data.get("steps"),
    })
    return jsonify(scenario.to_dict(include_steps=True)), 201


@catalog_bp.route("/scenarios/<int:scenario_id>", methods=["GET"])
def get_scenario(scenario_id):
    scenario = catalog_service.get_scenario(scenario_id)
    return jsonify(scenario.to_dict(include_steps=True)), 200


@catalog_bp.route("/scenarios/<int:scenario_id>/steps", methods=["PUT"])
def replace_steps(scenario_id):
    """Body: { steps: [{action, expected?}] } — replaces the whole step set."""
    data = json_body()
    if "steps" not in data:
        return api_error(E.VALIDATION_REQUIRED, "steps is required")
    err = _validate_steps(data["steps"])
    if err:
        return err

    scenario, propagation = catalog_service.replace_scenario_steps(scenario_id, data["steps"])
    return jsonify({
        "scenario": scenario.to_dict(include_steps=True),
        "propagation": propagation,
    }), 200


@catalog_bp.route("/scenarios/<int:scenario_id>/duplicate", methods=["POST"])
def duplicate_scenario(scenario_id):
    copy = catalog_service.duplicate_scenario(scenario_id)
    return jsonify(copy.to_dict(include_steps=True)), 201


@catalog_bp.route("/scenarios/<int:scenario_id>", methods=["DELETE"])
def delete_scenario(scenario_id):
    """Returns: { deleted, propagation } — propagation is null outside a package."""
    propagation = catalog_service.delete_scenario(scenario_id)
    return jsonify({"deleted": scenario_id, "propagation": propagation}), 200
