"""
Bug Tracker
Bug blueprint — CRUD plus the status and checklist workflow.

Endpoints:
    GET    /api/v1/bugs                     — role-scoped list (filters, paging, statusSummary)
    GET    /api/v1/bugs/all-viewable        — every visible bug, latest activity first
    POST   /api/v1/bugs                     — report a bug (testers)
    GET    /api/v1/bugs/status-labels       — active status label table
    GET    /api/v1/bugs/<id>                — detail
    PUT    /api/v1/bugs/<id>                — general update (admin / reporter)
    DELETE /api/v1/bugs/<id>                — delete (admin / reporter)
    PUT    /api/v1/bugs/<id>/status         — guarded status transition
    PUT    /api/v1/bugs/<id>/checklist      — replace checklist, derive status
    GET    /api/v1/bugs/<id>/history        — change history, newest first
"""

import logging

from flask import Blueprint, jsonify, request

from bugtracker.auth import current_principal, require_principal
from bugtracker.blueprints import paginate_query, register_error_handlers
from bugtracker.core.exceptions import ValidationError
from bugtracker.models.bug import BUG_STATUSES, Bug
from bugtracker.services import bug_service, workflow
from bugtracker.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

bug_bp = Blueprint("bug", __name__, url_prefix="/api/v1/bugs")
register_error_handlers(bug_bp)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ═══════════════════════════════════════════════════════════════
# Lists
# ═══════════════════════════════════════════════════════════════
@bug_bp.route("", methods=["GET"])
@require_principal
def list_bugs():
    principal = current_principal()
    scoped = bug_service.scoped_query(principal)
    summary = bug_service.status_summary(scoped)

    q = bug_service.filter_query(scoped, request.args)
    q = q.order_by(Bug.created_at.desc(), Bug.id.desc())
    items, total = paginate_query(q)
    return jsonify({
        "items": [b.to_dict() for b in items],
        "total": total,
        "statusSummary": summary,
    })


@bug_bp.route("/all-viewable", methods=["GET"])
@require_principal
def list_viewable_bugs():
    principal = current_principal()
    bugs = bug_service.list_viewable_bugs(principal)
    return jsonify({
        "items": [b.to_dict() for b in bugs],
        "total": len(bugs),
        "statusSummary": bug_service.status_summary(bug_service.scoped_query(principal)),
    })


@bug_bp.route("/status-labels", methods=["GET"])
@require_principal
def status_labels():
    labels = bug_service.get_status_labels()
    return jsonify({
        "labels": [
            {"code": code, "label": labels[code], "key": workflow.compact_label(labels[code])}
            for code in BUG_STATUSES
        ],
    })


# ═══════════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════════
@bug_bp.route("", methods=["POST"])
@require_principal
def create_bug():
    bug = bug_service.create_bug(_json_body(), current_principal())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(bug.to_dict()), 201


@bug_bp.route("/<int:bug_id>", methods=["GET"])
@require_principal
def get_bug(bug_id):
    principal = current_principal()
    bug = bug_service.get_bug(bug_id, principal)
    data = bug.to_dict()
    data["allowed_actions"] = bug_service.allowed_actions(bug, principal)
    return jsonify(data)


@bug_bp.route("/<int:bug_id>", methods=["PUT"])
@require_principal
def update_bug(bug_id):
    bug = bug_service.update_bug(bug_id, _json_body(), current_principal())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(bug.to_dict())


@bug_bp.route("/<int:bug_id>", methods=["DELETE"])
@require_principal
def delete_bug(bug_id):
    bug_service.delete_bug(bug_id, current_principal())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Bug deleted", "id": bug_id})


# ═══════════════════════════════════════════════════════════════
# Workflow
# ═══════════════════════════════════════════════════════════════
@bug_bp.route("/<int:bug_id>/status", methods=["PUT"])
@require_principal
def update_status(bug_id):
    data = _json_body()
    bug = bug_service.update_status(
        bug_id, data.get("status"), current_principal(), version=data.get("version"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(bug.to_dict())


@bug_bp.route("/<int:bug_id>/checklist", methods=["PUT"])
@require_principal
def update_checklist(bug_id):
    data = request.get_json(silent=True)
    # A bare JSON array is the checklist itself
    if isinstance(data, list):
        data = {"checklist": data}
    elif not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object or array")
    bug = bug_service.update_checklist(
        bug_id, data.get("checklist"), current_principal(), version=data.get("version"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(bug.to_dict())


@bug_bp.route("/<int:bug_id>/history", methods=["GET"])
@require_principal
def bug_history(bug_id):
    rows = bug_service.list_history(bug_id, current_principal())
    return jsonify({"items": [h.to_dict() for h in rows], "total": len(rows)})
