"""
Authentication, health probes, middleware headers, rate limits, CLI commands
and the commit helper.
"""

import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import jwt
import pytest
from flask import g

from bugtracker.config import ProductionConfig
from bugtracker.middleware.rate_limiter import BUG_LIMIT, READ_LIMIT, init_rate_limits
from bugtracker.models import db
from bugtracker.models.auth import User
from bugtracker.services.jwt_service import ALGORITHM, decode_access_token, generate_access_token
from bugtracker.utils.helpers import db_commit_or_error

BUGS = "/api/v1/bugs"


class TestBearerAuth:
    def test_missing_token_is_401(self, client):
        res = client.get(BUGS)
        assert res.status_code == 401

    def test_garbage_token_is_401(self, client):
        res = client.get(BUGS, headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_expired_token_is_401(self, app, client, tester):
        now = datetime.now(timezone.utc)
        token = jwt.encode({
            "sub": str(tester.id), "roles": ["tester"], "type": "access",
            "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1),
        }, app.config["SECRET_KEY"], algorithm=ALGORITHM)
        res = client.get(BUGS, headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert "expired" in res.get_json()["error"]

    def test_inactive_user_is_401(self, client, make_user, auth_headers):
        user = make_user("tester", is_active=False)
        assert client.get(BUGS, headers=auth_headers(user)).status_code == 401

    def test_role_comes_from_user_row(self, client, make_user):
        # Token claims "admin" but the row says tester: tester rules apply
        user = make_user("tester")
        token = generate_access_token(user.id, ["admin"])
        res = client.get("/api/v1/dashboard/admin", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 403

    def test_only_subject_kept_from_token(self, app, tester, auth_headers):
        with app.test_request_context(BUGS, headers=auth_headers(tester)):
            app.preprocess_request()
            assert g.jwt_user_id == str(tester.id)
            assert not hasattr(g, "jwt_roles")

    def test_token_round_trip(self, tester):
        payload = decode_access_token(generate_access_token(tester.id, ["tester"]))
        assert payload["sub"] == str(tester.id)
        assert payload["type"] == "access"
        assert {"iat", "exp", "jti"} <= set(payload)


class TestUsers:
    def test_tester_lists_developers(self, client, tester, developer, other_developer, auth_headers):
        res = client.get("/api/v1/users?role=developer", headers=auth_headers(tester))
        assert res.status_code == 200
        assert {u["id"] for u in res.get_json()["items"]} == {developer.id, other_developer.id}

    def test_developer_cannot_list(self, client, developer, auth_headers):
        assert client.get("/api/v1/users", headers=auth_headers(developer)).status_code == 403

    def test_self_lookup_always_allowed(self, client, developer, tester, auth_headers):
        assert client.get(f"/api/v1/users/{developer.id}", headers=auth_headers(developer)).status_code == 200
        assert client.get(f"/api/v1/users/{tester.id}", headers=auth_headers(developer)).status_code == 403

    def test_unknown_role_filter(self, client, admin, auth_headers):
        assert client.get("/api/v1/users?role=viewer", headers=auth_headers(admin)).status_code == 400


class TestPlatform:
    def test_health_probes_need_no_token(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_request_headers(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0
        assert res.headers["X-Content-Type-Options"] == "nosniff"

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            ProductionConfig()


class TestCli:
    def test_create_user_and_issue_token(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["create-user", "Ada", "ada@example.com", "--role", "tester"])
        assert result.exit_code == 0, result.output
        user = User.query.filter_by(email="ada@example.com").one()
        assert user.role == "tester"

        result = runner.invoke(args=["create-user", "Ada", "ada@example.com"])
        assert result.exit_code != 0

        result = runner.invoke(args=["issue-token", "ada@example.com"])
        assert result.exit_code == 0
        assert decode_access_token(result.output.strip())["sub"] == str(user.id)

    def test_issue_token_unknown_user(self, app):
        result = app.test_cli_runner().invoke(args=["issue-token", "ghost@example.com"])
        assert result.exit_code != 0


class TestCommitHelper:
    def test_duplicate_email_maps_to_409(self, make_user):
        user = make_user("tester")
        db.session.add(User(name="Dup", email=user.email, role="tester"))
        response, status = db_commit_or_error()
        assert status == 409
        assert response.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"


class _RecordingLimiter:
    def __init__(self):
        self.limits = {}
        self.exempted = []

    def limit(self, value, key_func=None):
        def _apply(bp):
            self.limits[bp.name] = value
            return bp
        return _apply

    def exempt(self, bp):
        self.exempted.append(bp.name)


class TestRateLimits:
    def test_limits_per_blueprint(self, app):
        fake_app = SimpleNamespace(
            config={"TESTING": False},
            blueprints=app.blueprints,
            logger=logging.getLogger("test"),
        )
        limiter = _RecordingLimiter()
        init_rate_limits(fake_app, limiter)
        assert limiter.limits == {"bug": BUG_LIMIT, "dashboard": READ_LIMIT, "user": READ_LIMIT}
        assert limiter.exempted == ["health_bp"]

    def test_disabled_under_testing(self, app):
        limiter = _RecordingLimiter()
        init_rate_limits(app, limiter)
        assert limiter.limits == {}
