"""
Bug service — loads bugs, runs them through the workflow engine, persists.

Every mutating function:
    1. loads the Bug (NotFoundError if absent)
    2. checks the optional optimistic ``version`` token (StaleVersionError)
    3. asks ``workflow`` / ``permission`` for a decision (raises on rejection)
    4. applies the decision, writes BugHistory rows and flushes

Nothing is committed here; blueprints commit via ``db_commit_or_error`` so a
rejected request never leaves a partial write behind.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import or_

from bugtracker.core.exceptions import NotFoundError, StaleVersionError, ValidationError
from bugtracker.models import db
from bugtracker.models.auth import ROLE_ADMIN, ROLE_DEVELOPER, ROLE_TESTER, User
from bugtracker.models.bug import (
    BUG_STATUSES,
    STATUS_CLOSED,
    TERMINAL_STATUSES,
    Bug,
    BugChecklistItem,
    BugHistory,
)
from bugtracker.services import workflow
from bugtracker.services.permission import (
    ACTION_DELETE,
    ACTION_EDIT,
    ACTION_VIEW,
    Principal,
    check_permission,
    get_allowed_actions,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# CONFIG ACCESSORS
# ═════════════════════════════════════════════════════════════════════════════

def get_status_labels() -> dict:
    return current_app.config.get("BUG_STATUS_LABELS") or workflow.resolve_label_set(None)


def _require_assignee() -> bool:
    return bool(current_app.config.get("BUG_REQUIRE_ASSIGNEE", True))


def _reporter_can_delete() -> bool:
    return bool(current_app.config.get("BUG_REPORTER_CAN_DELETE", True))


# ═════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═════════════════════════════════════════════════════════════════════════════

def get_bug_or_404(bug_id: int) -> Bug:
    bug = db.session.get(Bug, bug_id)
    if bug is None:
        raise NotFoundError(resource="Bug", resource_id=bug_id)
    return bug


def _check_version(bug: Bug, expected) -> None:
    """Reject the write when the caller read an older version of the bug."""
    if expected is None:
        return
    try:
        expected = int(expected)
    except (TypeError, ValueError):
        raise ValidationError("version must be an integer", details={"version": "invalid"}) from None
    if expected != bug.version:
        logger.info("Stale write on bug %s: expected v%s, current v%s",
                    bug.id, expected, bug.version)
        raise StaleVersionError("Bug", bug.id, expected, bug.version)


def _resolve_developers(ids: list[int]) -> list[User]:
    """Map assignee ids to active developer users; reject unknown ids."""
    if not ids:
        return []
    users = User.query.filter(User.id.in_(ids)).all()
    by_id = {u.id: u for u in users}
    invalid = [
        i for i in ids
        if i not in by_id or by_id[i].role != ROLE_DEVELOPER or not by_id[i].is_active
    ]
    if invalid:
        raise ValidationError(
            f"assigned_to contains users that are not active developers: {invalid}",
            details={"assigned_to": f"invalid developer ids {invalid}"},
        )
    return [by_id[i] for i in ids]


def _build_checklist(entries) -> list[BugChecklistItem]:
    return [
        BugChecklistItem(position=index, text=entry.text, completed=entry.completed)
        for index, entry in enumerate(entries)
    ]


def _checklist_repr(items) -> str:
    return "; ".join(f"[{'x' if i.completed else ' '}] {i.text}" for i in items)


def _record(bug: Bug, field: str, old, new, principal: Principal) -> None:
    old_val = "" if old is None else str(old)
    new_val = "" if new is None else str(new)
    if old_val == new_val:
        return
    db.session.add(BugHistory(
        bug_id=bug.id,
        field=field,
        old_value=old_val,
        new_value=new_val,
        changed_by=principal.user_id,
    ))


def _apply_status(bug: Bug, new_status: str, principal: Principal, *, by_checklist: bool = False) -> None:
    """Set status and keep closed_at / reopen_count / closed_by_checklist in step."""
    old_status = bug.status
    if new_status == old_status:
        return
    _record(bug, "status", old_status, new_status, principal)
    if new_status == STATUS_CLOSED:
        bug.closed_at = datetime.now(timezone.utc)
    elif old_status == STATUS_CLOSED:
        bug.reopen_count = (bug.reopen_count or 0) + 1
        bug.closed_at = None
    bug.status = new_status
    bug.closed_by_checklist = by_checklist and new_status == STATUS_CLOSED


def _touch(bug: Bug, principal: Principal) -> None:
    """Mark the row dirty so the version counter moves even for child-only edits."""
    bug.last_updated_by_id = principal.user_id
    bug.updated_at = datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# READS
# ═════════════════════════════════════════════════════════════════════════════

def scoped_query(principal: Principal):
    """Bugs visible to a principal: admin all, tester own, developer assigned."""
    q = Bug.query
    if principal.role == ROLE_ADMIN:
        return q
    if principal.role == ROLE_TESTER:
        return q.filter(Bug.created_by_id == principal.user_id)
    if principal.role == ROLE_DEVELOPER:
        return q.filter(Bug.assignees.any(User.id == principal.user_id))
    return q.filter(db.false())


def status_summary(query) -> dict:
    """Per-status counts over a scoped query; every status present."""
    rows = (
        query.with_entities(Bug.status, db.func.count(Bug.id))
        .order_by(None)
        .group_by(Bug.status)
        .all()
    )
    counts = dict(rows)
    summary = {status: counts.get(status, 0) for status in BUG_STATUSES}
    summary["all"] = sum(summary.values())
    return summary


def filter_query(q, args):
    """Apply list filters: status, priority, severity, module, search."""
    status = args.get("status")
    if status:
        q = q.filter(Bug.status == workflow.parse_status(status, get_status_labels()))

    priority = args.get("priority")
    if priority:
        q = q.filter(Bug.priority == workflow.parse_priority(priority))

    severity = args.get("severity")
    if severity:
        q = q.filter(Bug.severity == workflow.parse_severity(severity))

    module = args.get("module")
    if module:
        q = q.filter(Bug.module == module)

    search = args.get("search")
    if search:
        term = f"%{search}%"
        q = q.filter(or_(
            Bug.title.ilike(term),
            Bug.description.ilike(term),
        ))
    return q


def list_viewable_bugs(principal: Principal) -> list[Bug]:
    """Every bug the principal can see, most recently touched first."""
    return (
        scoped_query(principal)
        .order_by(Bug.updated_at.desc(), Bug.id.desc())
        .all()
    )


def get_bug(bug_id: int, principal: Principal) -> Bug:
    bug = get_bug_or_404(bug_id)
    check_permission(principal, bug, ACTION_VIEW, reason="Not authorized to view this bug")
    return bug


def allowed_actions(bug: Bug, principal: Principal) -> list[str]:
    return get_allowed_actions(principal, bug, reporter_can_delete=_reporter_can_delete())


def list_history(bug_id: int, principal: Principal) -> list[BugHistory]:
    bug = get_bug(bug_id, principal)
    return (
        BugHistory.query.filter_by(bug_id=bug.id)
        .order_by(BugHistory.changed_at.desc(), BugHistory.id.desc())
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# WRITES
# ═════════════════════════════════════════════════════════════════════════════

def create_bug(data: dict, principal: Principal) -> Bug:
    """Create a new bug in status open.

    Returns the new Bug instance (uncommitted — caller must commit).
    """
    values = workflow.normalize_new_bug(data, principal, require_assignee=_require_assignee())
    assignees = _resolve_developers(values.pop("assignee_ids"))
    checklist = _build_checklist(values.pop("checklist"))

    bug = Bug(**values)
    bug.assignees = assignees
    bug.checklist = checklist
    bug.last_updated_by_id = principal.user_id
    db.session.add(bug)
    db.session.flush()

    _record(bug, "status", "", bug.status, principal)
    logger.info("Bug %s created by user %s (%d assignee(s), %d checklist item(s))",
                bug.id, principal.user_id, len(assignees), len(checklist))
    return bug


def update_bug(bug_id: int, data: dict, principal: Principal) -> Bug:
    """General field update by an admin or the reporting tester.

    Full replace of the supplied fields; status is enum-checked only.
    """
    bug = get_bug_or_404(bug_id)
    check_permission(principal, bug, ACTION_EDIT, reason="Not authorized to update this bug")
    _check_version(bug, data.get("version"))

    values = workflow.normalize_bug_update(
        data, labels=get_status_labels(), require_assignee=_require_assignee(),
    )

    if "assigned_to" in values:
        assignees = _resolve_developers(values.pop("assigned_to"))
        _record(bug, "assigned_to",
                ",".join(str(u.id) for u in bug.assignees),
                ",".join(str(u.id) for u in assignees), principal)
        bug.assignees = assignees

    if "checklist" in values:
        entries = values.pop("checklist")
        _record(bug, "checklist", _checklist_repr(bug.checklist), _checklist_repr(entries), principal)
        bug.checklist = _build_checklist(entries)

    if "status" in values:
        _apply_status(bug, values.pop("status"), principal)

    for field, value in values.items():
        _record(bug, field, getattr(bug, field), value, principal)
        setattr(bug, field, value)

    _touch(bug, principal)
    db.session.flush()
    return bug


def update_status(bug_id: int, requested, principal: Principal, *, version=None) -> Bug:
    """Direct status transition, guarded by the workflow rules."""
    bug = get_bug_or_404(bug_id)
    change = workflow.plan_status_update(bug, requested, principal, get_status_labels())
    _check_version(bug, version)

    _apply_status(bug, change.new, principal)
    _touch(bug, principal)
    db.session.flush()
    if change.changed:
        logger.info("Bug %s status %s → %s by user %s",
                    bug.id, change.old, change.new, principal.user_id)
    return bug


def update_checklist(bug_id: int, values, principal: Principal, *, version=None) -> Bug:
    """Replace the checklist and apply the derived status."""
    bug = get_bug_or_404(bug_id)
    entries, change = workflow.plan_checklist_update(bug, values, principal)
    _check_version(bug, version)

    _record(bug, "checklist", _checklist_repr(bug.checklist), _checklist_repr(entries), principal)
    bug.checklist = _build_checklist(entries)

    if change.old not in TERMINAL_STATUSES:
        _apply_status(bug, change.new, principal, by_checklist=change.closed_by_checklist)

    _touch(bug, principal)
    db.session.flush()
    if change.changed:
        logger.info("Bug %s auto-status %s → %s from checklist (user %s)",
                    bug.id, change.old, change.new, principal.user_id)
    return bug


def delete_bug(bug_id: int, principal: Principal) -> None:
    """Hard-delete a bug together with its checklist and history."""
    bug = get_bug_or_404(bug_id)
    check_permission(
        principal, bug, ACTION_DELETE,
        reporter_can_delete=_reporter_can_delete(),
        reason="Not authorized to delete this bug",
    )
    db.session.delete(bug)
    db.session.flush()
    logger.info("Bug %s deleted by user %s", bug_id, principal.user_id)
