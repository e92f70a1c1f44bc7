"""
Shared pytest fixtures for the CaseTrack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tester: Pre-created User (first user → default acting user)
    - project: Pre-created Project
    - package: Pre-created TestPackage inside ``project``
"""

import pytest

from casetrack import create_app
from casetrack.models import db as _db
from casetrack.services import catalog_service, user_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def tester():
    """First registered user; acts whenever X-User-Id is omitted."""
    return user_service.create_user({"name": "Ana Tester", "email": "ana@example.com"})


@pytest.fixture()
def project():
    return catalog_service.create_project({"name": "Billing Revamp"})


@pytest.fixture()
def package(project):
    return catalog_service.create_package(project.id, {"title": "Sprint 12 regression"})
