"""
Bug Tracker
Blueprint registry and shared route helpers.
"""

import logging

from flask import request
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from bugtracker.core.exceptions import ConflictError, NotFoundError, ValidationError
from bugtracker.models import db
from bugtracker.services.permission import PermissionDenied
from bugtracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_error_handlers(bp):
    """Map service exceptions to JSON error responses for one blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(PermissionDenied)
    def _handle_forbidden(error: PermissionDenied):
        logger.info("Permission denied: user=%s role=%s action=%s endpoint=%s",
                    error.user_id, error.role, error.action, request.endpoint)
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        logger.info("Validation rejected at %s: %s", request.endpoint, error)
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        logger.warning("Conflict at %s: %s", request.endpoint, error)
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @bp.errorhandler(StaleDataError)
    def _handle_stale_row(error: StaleDataError):
        # version_id_col mismatch raised at flush: another writer got there first
        db.session.rollback()
        logger.warning("Concurrent write rejected at %s: %s", request.endpoint, error)
        return api_error(E.CONFLICT_STATE, "Resource was modified by someone else, reload and retry")

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return api_error(f"ERR_HTTP_{error.code}", error.description, status=error.code)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")

    return bp
