"""
Rate limiting configuration.

The Limiter instance is created in bugtracker/__init__.py with no default
limits; this module applies limits per blueprint.

Usage:
    from bugtracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

BUG_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """Key limits by authenticated user when a token was presented, else by IP."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Bug endpoints:        60/minute (reads and writes alike)
        - Dashboard / users:    200/minute
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("bug")
    if bp:
        limiter.limit(BUG_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in ("dashboard", "user"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: bugs %s, dashboard/users %s", BUG_LIMIT, READ_LIMIT)
