"""
Bug Tracker
Authentication middleware.

Provides:
    - Principal resolution from the bearer token parsed by
      ``middleware.jwt_auth`` (g.jwt_user_id)
    - ``require_principal`` decorator for API routes
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/v1/* endpoints require a valid access token, except
      /api/v1/health/*
    - The token only names the user; the role is always read from the
      users table so a demoted or deactivated user loses access at once
"""

import functools
import logging

from flask import g, jsonify, request

from bugtracker.models import db
from bugtracker.models.auth import User
from bugtracker.services.permission import Principal

logger = logging.getLogger(__name__)


# ── Principal resolution ─────────────────────────────────────────────────────

def _load_principal():
    """Return (principal, None) or (None, error_message)."""
    raw_id = getattr(g, "jwt_user_id", None)
    if not raw_id:
        return None, getattr(g, "jwt_error", None) or "Authentication required. Provide a Bearer token."
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        return None, "Invalid token subject"

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning("Token for unknown or inactive user %s rejected", raw_id)
        return None, "User not found or inactive"
    return Principal.from_user(user), None


def current_principal() -> Principal | None:
    """The principal resolved for this request, or None."""
    return getattr(g, "principal", None)


def require_principal(f):
    """
    Decorator: require an authenticated principal for the endpoint.

    Sets g.principal; answers 401 when the token is missing, invalid,
    expired or names an inactive user.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_principal() is None:
            principal, error = _load_principal()
            if principal is None:
                return jsonify({"error": error}), 401
            g.principal = principal
        return f(*args, **kwargs)

    return decorated


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE) with a body, require
    Content-Type: application/json. HTML forms cannot send that type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def init_auth(app):
    """
    Install the content-type guard for API routes.

    Authentication itself is enforced per route by ``require_principal``.
    """
    @app.before_request
    def _before_request_auth():
        g.principal = None
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health/"):
            return None
        if request.method == "OPTIONS":
            return None
        return _check_content_type()

    logger.info("Auth middleware installed")
