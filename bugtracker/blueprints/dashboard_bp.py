"""
Bug Tracker
Dashboard blueprint.

Endpoints:
    GET /api/v1/dashboard        — aggregates over the caller's visible bugs
    GET /api/v1/dashboard/admin  — platform-wide aggregates (admin only)
"""

from flask import Blueprint, jsonify

from bugtracker.auth import current_principal, require_principal
from bugtracker.blueprints import register_error_handlers
from bugtracker.services import dashboard_service

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard")
register_error_handlers(dashboard_bp)


@dashboard_bp.route("", methods=["GET"])
@require_principal
def dashboard():
    return jsonify(dashboard_service.get_dashboard(current_principal()))


@dashboard_bp.route("/admin", methods=["GET"])
@require_principal
def admin_dashboard():
    return jsonify(dashboard_service.get_admin_dashboard(current_principal()))
