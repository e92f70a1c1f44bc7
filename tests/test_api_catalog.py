"""
Tests: Catalog API — users, projects, packages, scenarios and step sets,
plus the package review lifecycle and the health endpoints.
"""

import pytest

from casetrack import create_app
from casetrack.config import ProductionConfig
from casetrack.services import user_service


# ── Helpers ──────────────────────────────────────────────────────────────────


def _create_scenario(client, project_id, steps=("Open page", "Submit"), package_id=None, title="Signup"):
    payload = {"title": title, "steps": [{"action": a} for a in steps]}
    if package_id is not None:
        payload["packageId"] = package_id
    res = client.post(f"/api/v1/projects/{project_id}/scenarios", json=payload)
    assert res.status_code == 201
    return res.get_json()


def _transition(client, package_id, status, **extra):
    return client.post(f"/api/v1/packages/{package_id}/transition", json={"status": status, **extra})


def _block_scenario(client, scenario):
    for step in scenario["steps"]:
        res = client.put(f"/api/v1/steps/{step['id']}/status", json={"status": "BLOCKED"})
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# Users & projects
# ═════════════════════════════════════════════════════════════════════════════


def test_create_user(client):
    res = client.post("/api/v1/users", json={"name": "Ana", "email": "Ana@Example.com"})
    assert res.status_code == 201
    assert res.get_json()["email"] == "ana@example.com"


def test_duplicate_user_email_returns_422(client, tester):
    res = client.post("/api/v1/users", json={"name": "Ana 2", "email": "ana@example.com"})
    assert res.status_code == 422


def test_concurrent_duplicate_email_returns_422(client, tester, monkeypatch):
    # Simulate a racing registration that passed the lookup before ours committed
    monkeypatch.setattr(user_service, "_email_taken", lambda email: False)

    res = client.post("/api/v1/users", json={"name": "Ana 2", "email": "ana@example.com"})

    assert res.status_code == 422
    assert res.get_json()["details"] == {"email": "ana@example.com"}


def test_create_project_requires_name(client):
    assert client.post("/api/v1/projects", json={}).status_code == 400
    res = client.post("/api/v1/projects", json={"name": "ERP", "description": "core"})
    assert res.status_code == 201
    assert res.get_json()["name"] == "ERP"


def test_create_package_for_missing_project_returns_404(client):
    res = client.post("/api/v1/projects/9999/packages", json={"title": "P"})
    assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Scenarios
# ═════════════════════════════════════════════════════════════════════════════


def test_create_scenario_numbers_steps(client, project):
    sc = _create_scenario(client, project.id, steps=("a", "b", "c"))

    assert sc["status"] == "CREATED"
    assert [s["step_order"] for s in sc["steps"]] == [1, 2, 3]
    assert all(s["status"] == "PENDING" for s in sc["steps"])


@pytest.mark.parametrize("payload", [
    {},
    {"title": "T", "steps": "nope"},
    {"title": "T", "steps": [{"expected": "no action"}]},
    {"title": "T", "packageId": "abc"},
    {"title": "T", "steps": [{"action": "a", "expected": 5}]},
    {"title": "T", "steps": [{"action": "a", "expected": ["x"]}]},
    {"title": "T", "description": {"a": 1}},
    {"title": "T", "description": ["x"]},
])
def test_create_scenario_malformed_returns_400(client, project, payload):
    res = client.post(f"/api/v1/projects/{project.id}/scenarios", json=payload)
    assert res.status_code == 400


def test_create_scenario_with_foreign_package_returns_422(client, project):
    other = client.post("/api/v1/projects", json={"name": "Other"}).get_json()
    pkg = client.post(f"/api/v1/projects/{other['id']}/packages", json={"title": "X"}).get_json()

    res = client.post(
        f"/api/v1/projects/{project.id}/scenarios",
        json={"title": "T", "packageId": pkg["id"]},
    )
    assert res.status_code == 422


def test_get_missing_scenario_returns_404(client):
    assert client.get("/api/v1/scenarios/9999").status_code == 404


def test_replace_steps_renumbers_and_resets(client, project):
    sc = _create_scenario(client, project.id)
    client.put(f"/api/v1/steps/{sc['steps'][0]['id']}/status", json={"status": "PASSED"})

    res = client.put(
        f"/api/v1/scenarios/{sc['id']}/steps",
        json={"steps": [{"action": "x"}, {"action": "y", "expected": "z"}, {"action": "w"}]},
    )

    assert res.status_code == 200
    body = res.get_json()
    steps = body["scenario"]["steps"]
    assert [s["action"] for s in steps] == ["x", "y", "w"]
    assert [s["step_order"] for s in steps] == [1, 2, 3]
    assert {s["status"] for s in steps} == {"PENDING"}
    assert body["propagation"]["scenario_updated"] is False


def test_replace_steps_unblocks_scenario(client, project):
    sc = _create_scenario(client, project.id)
    _block_scenario(client, sc)

    res = client.put(f"/api/v1/scenarios/{sc['id']}/steps", json={"steps": [{"action": "retry"}]})

    assert res.get_json()["scenario"]["status"] == "EXECUTED"


def test_replace_steps_with_empty_list(client, project):
    sc = _create_scenario(client, project.id)
    res = client.put(f"/api/v1/scenarios/{sc['id']}/steps", json={"steps": []})
    assert res.status_code == 200
    assert res.get_json()["scenario"]["steps"] == []


def test_replace_steps_requires_steps_key(client, project):
    sc = _create_scenario(client, project.id)
    assert client.put(f"/api/v1/scenarios/{sc['id']}/steps", json={}).status_code == 400


def test_duplicate_scenario(client, project, package):
    sc = _create_scenario(client, project.id, package_id=package.id)
    client.put(f"/api/v1/steps/{sc['steps'][0]['id']}/status", json={"status": "FAILED"})

    res = client.post(f"/api/v1/scenarios/{sc['id']}/duplicate")

    assert res.status_code == 201
    copy = res.get_json()
    assert copy["id"] != sc["id"]
    assert copy["title"] == "Signup (copy)"
    assert copy["package_id"] == package.id
    assert [s["action"] for s in copy["steps"]] == ["Open page", "Submit"]
    assert {s["status"] for s in copy["steps"]} == {"PENDING"}


def test_duplicate_into_blocked_package_unblocks_it(client, project, package):
    sc = _create_scenario(client, project.id, package_id=package.id)
    _block_scenario(client, sc)
    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "BLOCKED"

    client.post(f"/api/v1/scenarios/{sc['id']}/duplicate")

    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "IN_TEST"


# ═════════════════════════════════════════════════════════════════════════════
# Packages
# ═════════════════════════════════════════════════════════════════════════════


def test_get_package_aggregate(client, project, package):
    _create_scenario(client, project.id, package_id=package.id, title="A")
    _create_scenario(client, project.id, package_id=package.id, title="B")

    res = client.get(f"/api/v1/packages/{package.id}")

    assert res.status_code == 200
    body = res.get_json()
    assert [s["title"] for s in body["scenarios"]] == ["A", "B"]
    assert len(body["scenarios"][0]["steps"]) == 2


def test_package_blocked_when_all_scenarios_blocked(client, project, package):
    first = _create_scenario(client, project.id, package_id=package.id, title="A")
    second = _create_scenario(client, project.id, package_id=package.id, title="B")

    _block_scenario(client, first)
    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "CREATED"
    _block_scenario(client, second)
    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "BLOCKED"

    client.put(f"/api/v1/steps/{first['steps'][0]['id']}/status", json={"status": "PASSED"})
    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "IN_TEST"


def test_review_lifecycle(client, package, tester):
    assert _transition(client, package.id, "IN_TEST").status_code == 200

    res = _transition(client, package.id, "COMPLETED")
    assert res.status_code == 200
    assert res.get_json()["reviewed_by_id"] == tester.id

    res = _transition(client, package.id, "APPROVED")
    assert res.status_code == 200
    assert res.get_json()["status"] == "APPROVED"


def test_reject_requires_reason(client, package, tester):
    _transition(client, package.id, "IN_TEST")

    assert _transition(client, package.id, "REJECTED").status_code == 422

    res = _transition(client, package.id, "REJECTED", reason="Too many open bugs")
    assert res.status_code == 200
    assert res.get_json()["rejection_reason"] == "Too many open bugs"

    assert _transition(client, package.id, "IN_TEST").status_code == 200


def test_invalid_transition_returns_422(client, package, tester):
    res = _transition(client, package.id, "APPROVED")
    assert res.status_code == 422
    assert res.get_json()["details"]["allowed"] == ["IN_TEST"]


def test_blocked_is_not_a_manual_target(client, package, tester):
    res = _transition(client, package.id, "BLOCKED")
    assert res.status_code == 400


def test_blocked_package_cannot_be_reviewed(client, project, package, tester):
    sc = _create_scenario(client, project.id, package_id=package.id)
    _block_scenario(client, sc)

    res = _transition(client, package.id, "COMPLETED")

    assert res.status_code == 422
    assert res.get_json()["details"]["allowed"] == []


# ═════════════════════════════════════════════════════════════════════════════
# Health & app-level errors
# ═════════════════════════════════════════════════════════════════════════════


def test_health_endpoints(client):
    assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"


def test_unknown_route_returns_json_404(client):
    res = client.get("/api/v1/nope")
    assert res.status_code == 404
    assert res.get_json()["path"] == "/api/v1/nope"


def test_request_id_header_echoed(client):
    res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"
    assert "X-Request-Duration-Ms" in res.headers


@pytest.mark.parametrize("url_suffix, payload", [
    ("", {"name": "ERP", "description": 7}),
    ("/{pid}/packages", {"title": "P", "description": {"a": 1}}),
    ("/{pid}/packages", {"title": "P", "release": 2024}),
])
def test_non_string_optional_text_returns_400(client, project, url_suffix, payload):
    res = client.post("/api/v1/projects" + url_suffix.format(pid=project.id), json=payload)
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


def test_replace_steps_non_string_expected_returns_400(client, project):
    sc = _create_scenario(client, project.id)
    res = client.put(
        f"/api/v1/scenarios/{sc['id']}/steps",
        json={"steps": [{"action": "x", "expected": 12}]},
    )
    assert res.status_code == 400
    assert len(client.get(f"/api/v1/scenarios/{sc['id']}").get_json()["steps"]) == 2


def test_reject_reason_must_be_string(client, package, tester):
    _transition(client, package.id, "IN_TEST")
    assert _transition(client, package.id, "REJECTED", reason=["nope"]).status_code == 400


def test_null_optional_text_is_accepted(client, project):
    res = client.post(
        f"/api/v1/projects/{project.id}/scenarios",
        json={"title": "T", "description": None, "steps": [{"action": "a", "expected": None}]},
    )
    assert res.status_code == 201
    assert res.get_json()["steps"][0]["expected"] == ""


# ═════════════════════════════════════════════════════════════════════════════
# Scenario deletion
# ═════════════════════════════════════════════════════════════════════════════


def test_deleting_last_unblocked_scenario_blocks_package(client, project, package):
    blocked = _create_scenario(client, project.id, package_id=package.id, title="Blocked")
    open_ = _create_scenario(client, project.id, package_id=package.id, title="Open")
    _block_scenario(client, blocked)
    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "CREATED"

    res = client.delete(f"/api/v1/scenarios/{open_['id']}")

    assert res.status_code == 200
    body = res.get_json()
    assert body["deleted"] == open_["id"]
    assert body["propagation"]["package_status"] == "BLOCKED"
    assert body["propagation"]["package_updated"] is True
    assert client.get(f"/api/v1/scenarios/{open_['id']}").status_code == 404


def test_emptying_blocked_package_unblocks_it(client, project, package):
    sc = _create_scenario(client, project.id, package_id=package.id)
    _block_scenario(client, sc)
    assert client.get(f"/api/v1/packages/{package.id}").get_json()["status"] == "BLOCKED"

    res = client.delete(f"/api/v1/scenarios/{sc['id']}")

    assert res.get_json()["propagation"]["package_status"] == "IN_TEST"
    pkg = client.get(f"/api/v1/packages/{package.id}").get_json()
    assert pkg["status"] == "IN_TEST"
    assert pkg["scenarios"] == []


def test_delete_scenario_removes_bugs_and_history(client, project, tester):
    sc = _create_scenario(client, project.id)
    bug = client.post(
        f"/api/v1/scenarios/{sc['id']}/bugs",
        json={"title": "Broken", "severity": "LOW", "relatedStepId": sc["steps"][0]["id"]},
    ).get_json()["bug"]

    res = client.delete(f"/api/v1/scenarios/{sc['id']}")

    assert res.status_code == 200
    assert res.get_json()["propagation"] is None
    assert client.delete(f"/api/v1/bugs/{bug['id']}").status_code == 404
    assert client.get(f"/api/v1/scenarios/{sc['id']}/history").status_code == 404


def test_delete_missing_scenario_returns_404(client):
    assert client.delete("/api/v1/scenarios/9999").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Configuration
# ═════════════════════════════════════════════════════════════════════════════


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        create_app("production")


def test_production_requires_secret_key(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "sqlite://")
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app("production")


def test_rate_limit_storage_comes_from_config(app):
    assert app.config["RATELIMIT_STORAGE_URI"] == app.config["REDIS_URL"]
