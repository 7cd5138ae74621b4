"""
Bug Tracker
User lookup blueprint (assignee pickers, profile cards).

Endpoints:
    GET /api/v1/users        — list users, optional ?role= / ?active=
    GET /api/v1/users/<id>   — single user
"""

from flask import Blueprint, jsonify, request

from bugtracker.auth import current_principal, require_principal
from bugtracker.blueprints import paginate_query, register_error_handlers
from bugtracker.core.exceptions import NotFoundError, ValidationError
from bugtracker.models import db
from bugtracker.models.auth import USER_ROLES, User
from bugtracker.services.permission import ACTION_USERS_LIST, check_permission

user_bp = Blueprint("user", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


@user_bp.route("", methods=["GET"])
@require_principal
def list_users():
    check_permission(current_principal(), None, ACTION_USERS_LIST,
                     reason="Not authorized to list users")

    q = User.query
    role = request.args.get("role")
    if role:
        if role not in USER_ROLES:
            raise ValidationError(f"Unknown role '{role}'", details={"role": "invalid"})
        q = q.filter(User.role == role)
    if request.args.get("active", "true").lower() in ("true", "1", "yes"):
        q = q.filter(User.is_active.is_(True))

    items, total = paginate_query(q.order_by(User.name, User.id))
    return jsonify({"items": [u.to_dict() for u in items], "total": total})


@user_bp.route("/<int:user_id>", methods=["GET"])
@require_principal
def get_user(user_id):
    principal = current_principal()
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    # Everyone may read their own card; full lookup needs the list permission
    if user.id != principal.user_id:
        check_permission(principal, None, ACTION_USERS_LIST,
                         reason="Not authorized to view other users")
    return jsonify(user.to_dict())
