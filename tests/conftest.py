"""
Shared pytest fixtures for the Bug Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / auth_headers: user and bearer-token factories
    - admin, tester, developer, other_developer: ready-made principals
    - create_bug: report a bug through the API as a tester
"""

import itertools

import pytest

from bugtracker import create_app
from bugtracker.models import db as _db
from bugtracker.models.auth import User
from bugtracker.services.jwt_service import generate_access_token

_email_seq = itertools.count(1)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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


# ── Principals ───────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: persist a User with the given role."""

    def _make(role, name=None, *, is_active=True):
        n = next(_email_seq)
        user = User(
            name=name or f"{role.title()} {n}",
            email=f"{role}{n}@example.com",
            role=role,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    """Factory: Authorization header for a user."""

    def _headers(user):
        token = generate_access_token(user.id, [user.role])
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def admin(make_user):
    return make_user("admin", "Alice Admin")


@pytest.fixture()
def tester(make_user):
    return make_user("tester", "Tom Tester")


@pytest.fixture()
def developer(make_user):
    return make_user("developer", "Dana Developer")


@pytest.fixture()
def other_developer(make_user):
    return make_user("developer", "Dev Two")


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def create_bug(client, tester, developer, auth_headers):
    """Report a bug via the API; defaults to tester → developer."""

    def _create(reporter=None, assignees=None, **overrides):
        reporter = reporter or tester
        payload = {
            "title": "Login button unresponsive",
            "description": "Clicking login does nothing on Safari",
            "priority": "High",
            "severity": "Major",
            "assigned_to": [u.id for u in (assignees or [developer])],
        }
        payload.update(overrides)
        res = client.post("/api/v1/bugs", json=payload, headers=auth_headers(reporter))
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    return _create
