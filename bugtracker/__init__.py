"""
Bug Tracker
Flask Application Factory.

Usage:
    from bugtracker import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from bugtracker.auth import init_auth
from bugtracker.config import config
from bugtracker.middleware.jwt_auth import init_jwt_middleware
from bugtracker.middleware.logging_config import configure_logging
from bugtracker.middleware.rate_limiter import init_rate_limits
from bugtracker.middleware.security_headers import init_security_headers
from bugtracker.middleware.timing import init_request_timing
from bugtracker.models import db
from bugtracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can refuse to start half-configured
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware (order matters: timing, then JWT, then auth guard) ────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_auth(app)
    init_security_headers(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from bugtracker.models import auth as _auth_models  # noqa: F401
    from bugtracker.models import bug as _bug_models    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
        if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from bugtracker.blueprints.bug_bp import bug_bp
    from bugtracker.blueprints.dashboard_bp import dashboard_bp
    from bugtracker.blueprints.health_bp import health_bp
    from bugtracker.blueprints.user_bp import user_bp

    app.register_blueprint(bug_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-user")
    @click.argument("name")
    @click.argument("email")
    @click.option("--role", type=click.Choice(["admin", "tester", "developer"]),
                  default="developer", show_default=True)
    def create_user_cmd(name, email, role):
        """Create a user that can act on bugs."""
        from bugtracker.models.auth import User

        if User.query.filter_by(email=email).first():
            raise click.ClickException(f"User with email {email} already exists")
        user = User(name=name, email=email, role=role)
        db.session.add(user)
        db.session.commit()
        logger.info("Created %s user %s (%s)", role, user.id, email)
        click.echo(f"Created user {user.id}: {email} ({role})")

    @app.cli.command("issue-token")
    @click.argument("email")
    @click.option("--expires-in", type=int, default=None, help="Lifetime in seconds")
    def issue_token_cmd(email, expires_in):
        """Print an access token for an existing user."""
        from bugtracker.models.auth import User
        from bugtracker.services.jwt_service import generate_access_token

        user = User.query.filter_by(email=email).first()
        if user is None or not user.is_active:
            raise click.ClickException(f"No active user with email {email}")
        click.echo(generate_access_token(user.id, [user.role], expires_in=expires_in))

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_HTTP_405"}, 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return api_error(E.PAYLOAD_TOO_LARGE, "Request body too large")

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
