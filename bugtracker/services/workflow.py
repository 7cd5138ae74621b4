"""
Bug Workflow Engine — status state machine + checklist-driven auto-status.

Pure decision functions. Nothing here touches the database: callers pass the
current Bug (ORM row or any object with the same attributes), the requested
change and the acting Principal, and get back either a plan to apply or an
exception from ``bugtracker.core.exceptions`` / ``PermissionDenied``.

Transition rules:
    open        → in_progress   assigned developer
    in_progress → closed        assigned developer, every checklist item completed
    closed      → anything else administrator only
    (general field update by admin / reporter bypasses these, see bug_service)

Checklist derivation (skipped while the bug is terminal):
    every item completed  → closed  (closed_by_checklist = True)
    some item completed   → in_progress
    nothing completed     → open

Usage:
    from bugtracker.services import workflow

    plan = workflow.plan_status_update(bug, "In Progress", principal, labels)
    items, plan = workflow.plan_checklist_update(bug, payload["checklist"], principal)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from bugtracker.core.exceptions import ValidationError
from bugtracker.models.bug import (
    BUG_PRIORITIES,
    BUG_SEVERITIES,
    BUG_STATUSES,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_LABEL_SETS,
    STATUS_OPEN,
    TERMINAL_STATUSES,
)
from bugtracker.services.permission import (
    ACTION_CHECKLIST,
    ACTION_CREATE,
    ACTION_STATUS,
    PermissionDenied,
    Principal,
    check_permission,
    is_assigned_developer,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 300
MAX_CHECKLIST_TEXT_LENGTH = 500


@dataclass(frozen=True)
class ChecklistEntry:
    text: str
    completed: bool = False


@dataclass(frozen=True)
class StatusChange:
    """Outcome of a workflow decision; ``old == new`` means no-op."""

    old: str
    new: str
    closed_by_checklist: bool = False

    @property
    def changed(self) -> bool:
        return self.old != self.new


# ═════════════════════════════════════════════════════════════════════════════
# STATUS LABELS
# ═════════════════════════════════════════════════════════════════════════════

def compact_label(label: str) -> str:
    """'In Progress' → 'InProgress' (dashboard keys)."""
    return "".join(label.split())


def resolve_label_set(name: str | None) -> dict:
    """Return the label table for a configured preset name."""
    if not name:
        return dict(STATUS_LABEL_SETS["default"])
    try:
        return dict(STATUS_LABEL_SETS[name])
    except KeyError:
        raise ValueError(
            f"Unknown status label set '{name}'. Known: {sorted(STATUS_LABEL_SETS)}"
        ) from None


def parse_status(value, labels: dict | None = None) -> str:
    """
    Translate a status from the API boundary into its internal code.

    Accepts the internal code (``in_progress``), the display label
    (``In Progress``) or its compact form (``InProgress``), case-insensitively.

    Raises:
        ValidationError: missing or not a member of the status enumeration.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("status is required", details={"status": "required"})
    if not isinstance(value, str):
        raise ValidationError("status must be a string", details={"status": "invalid"})

    labels = labels or STATUS_LABEL_SETS["default"]
    key = compact_label(value).lower()
    for code in BUG_STATUSES:
        candidates = {
            compact_label(code).lower(),
            code.replace("_", "").lower(),
            compact_label(labels.get(code, code)).lower(),
        }
        if key in candidates:
            return code

    allowed = [labels.get(code, code) for code in BUG_STATUSES]
    raise ValidationError(
        f"Invalid status '{value}'. Allowed: {allowed}",
        details={"status": f"must be one of {allowed}"},
    )


# ═════════════════════════════════════════════════════════════════════════════
# FIELD NORMALISATION
# ═════════════════════════════════════════════════════════════════════════════

def _clean_text(value, field: str, *, required: bool, max_length: int | None = None) -> str:
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "invalid"})
    text = value.strip()
    if required and not text:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if max_length and len(text) > max_length:
        raise ValidationError(
            f"{field} must be ≤ {max_length} characters",
            details={field: f"max {max_length} characters"},
        )
    return text


def _choice(value, field: str, allowed: tuple) -> str:
    if isinstance(value, str):
        wanted = value.strip().lower()
        for option in allowed:
            if option.lower() == wanted:
                return option
    raise ValidationError(
        f"Invalid {field} value '{value}'. Allowed: {list(allowed)}",
        details={field: f"must be one of {list(allowed)}"},
    )


def parse_priority(value) -> str:
    return _choice(value, "priority", BUG_PRIORITIES)


def parse_severity(value) -> str:
    return _choice(value, "severity", BUG_SEVERITIES)


def parse_due_date(value):
    """ISO date / datetime string → aware UTC datetime, or None when empty."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(
                f"Invalid due_date '{value}'. Use ISO 8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS).",
                details={"due_date": "invalid date"},
            ) from None
    else:
        raise ValidationError("due_date must be a string", details={"due_date": "invalid"})
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_assignee_ids(values, *, required: bool) -> list[int]:
    """Validate the assignee id list; order-insensitive, duplicates dropped."""
    if values is None:
        values = []
    if not isinstance(values, list):
        raise ValidationError(
            "assigned_to must be an array of user IDs",
            details={"assigned_to": "must be an array"},
        )
    out = []
    for index, value in enumerate(values):
        if isinstance(value, bool):
            value = None
        try:
            out.append(int(value))
        except (TypeError, ValueError):
            raise ValidationError(
                f"assigned_to[{index}] is not a valid user id",
                details={"assigned_to": f"invalid id at index {index}"},
            ) from None
    out = list(dict.fromkeys(out))
    if required and not out:
        raise ValidationError(
            "At least one developer must be assigned",
            details={"assigned_to": "required"},
        )
    return out


def parse_attachments(values) -> list[str]:
    """Keep non-empty text references, trimmed."""
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(
            "attachments must be an array of file references",
            details={"attachments": "must be an array"},
        )
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def parse_checklist(values, *, keep_completed: bool, required: bool = False) -> list[ChecklistEntry]:
    """
    Parse checklist input into ChecklistEntry values.

    Each entry is either a non-empty string or an object with a non-empty
    ``text`` and an optional boolean ``completed``. Anything else is rejected;
    fields are never silently defaulted from malformed input.

    Args:
        values: Raw list from the request payload.
        keep_completed: False at creation time, where every item starts open.
        required: None is rejected instead of meaning "no checklist".
    """
    if values is None:
        if required:
            raise ValidationError(
                "checklist is required", details={"checklist": "required"},
            )
        return []
    if not isinstance(values, list):
        raise ValidationError(
            "checklist must be an array", details={"checklist": "must be an array"},
        )

    entries = []
    for index, raw in enumerate(values):
        completed = False
        if isinstance(raw, str):
            text = raw
        elif isinstance(raw, dict):
            text = raw.get("text")
            if not isinstance(text, str):
                raise ValidationError(
                    f"checklist[{index}].text is required",
                    details={"checklist": f"missing text at index {index}"},
                )
            if "completed" in raw:
                if not isinstance(raw["completed"], bool):
                    raise ValidationError(
                        f"checklist[{index}].completed must be a boolean",
                        details={"checklist": f"invalid completed flag at index {index}"},
                    )
                completed = raw["completed"]
        else:
            raise ValidationError(
                f"checklist[{index}] must be a string or an object with 'text'",
                details={"checklist": f"malformed entry at index {index}"},
            )

        text = text.strip()
        if not text:
            raise ValidationError(
                f"checklist[{index}].text must not be empty",
                details={"checklist": f"empty text at index {index}"},
            )
        if len(text) > MAX_CHECKLIST_TEXT_LENGTH:
            raise ValidationError(
                f"checklist[{index}].text must be ≤ {MAX_CHECKLIST_TEXT_LENGTH} characters",
                details={"checklist": f"text too long at index {index}"},
            )
        entries.append(ChecklistEntry(text=text, completed=completed and keep_completed))
    return entries


def checklist_complete(items) -> bool:
    """True when every item is completed (vacuously true for no items)."""
    return all(item.completed for item in items)


def derive_status(items) -> str:
    """Status implied by checklist completion alone."""
    items = list(items)
    done = sum(1 for item in items if item.completed)
    if items and done == len(items):
        return STATUS_CLOSED
    if done:
        return STATUS_IN_PROGRESS
    return STATUS_OPEN


# ═════════════════════════════════════════════════════════════════════════════
# OPERATIONS
# ═════════════════════════════════════════════════════════════════════════════

def normalize_new_bug(data: dict, principal: Principal, *, require_assignee: bool = True) -> dict:
    """
    Validate and normalise a create-bug payload.

    Returns a dict of model-ready values; ``assignee_ids`` still needs to be
    resolved to User rows by the caller.

    Raises:
        PermissionDenied: principal is not a tester.
        ValidationError: any field fails its rule.
    """
    check_permission(principal, None, ACTION_CREATE, reason="Only testers can create bugs")

    return {
        "title": _clean_text(data.get("title"), "title", required=True, max_length=MAX_TITLE_LENGTH),
        "description": _clean_text(data.get("description"), "description", required=True),
        "priority": _choice(data.get("priority"), "priority", BUG_PRIORITIES),
        "severity": _choice(data.get("severity"), "severity", BUG_SEVERITIES),
        "module": _clean_text(data.get("module"), "module", required=False, max_length=100),
        "due_date": parse_due_date(data.get("due_date")),
        "assignee_ids": parse_assignee_ids(data.get("assigned_to"), required=require_assignee),
        "checklist": parse_checklist(data.get("checklist"), keep_completed=False),
        "attachments": parse_attachments(data.get("attachments")),
        "status": STATUS_OPEN,
        "created_by_id": principal.user_id,
    }


_UPDATE_PARSERS = {
    "title": lambda v, _ctx: _clean_text(v, "title", required=True, max_length=MAX_TITLE_LENGTH),
    "description": lambda v, _ctx: _clean_text(v, "description", required=True),
    "priority": lambda v, _ctx: _choice(v, "priority", BUG_PRIORITIES),
    "severity": lambda v, _ctx: _choice(v, "severity", BUG_SEVERITIES),
    "module": lambda v, _ctx: _clean_text(v, "module", required=False, max_length=100),
    "due_date": lambda v, _ctx: parse_due_date(v),
    "status": lambda v, ctx: parse_status(v, ctx["labels"]),
    "checklist": lambda v, _ctx: parse_checklist(v, keep_completed=True, required=True),
    "attachments": lambda v, _ctx: parse_attachments(v),
    "assigned_to": lambda v, ctx: parse_assignee_ids(v, required=ctx["require_assignee"]),
}

UPDATABLE_FIELDS = tuple(_UPDATE_PARSERS)


def normalize_bug_update(
    data: dict,
    *,
    labels: dict | None = None,
    require_assignee: bool = True,
) -> dict:
    """
    Validate the fields present in a general-update payload.

    Unknown keys are ignored. Status is enum-checked but not run through the
    transition rules: a general update is a full field replace.
    """
    ctx = {"labels": labels, "require_assignee": require_assignee}
    return {
        field: parser(data[field], ctx)
        for field, parser in _UPDATE_PARSERS.items()
        if field in data
    }


def plan_status_update(bug, requested, principal: Principal, labels: dict | None = None) -> StatusChange:
    """
    Decide a direct status change.

    Raises:
        PermissionDenied: actor is neither admin nor an assigned developer;
            non-developer moving to in_progress; non-admin leaving closed.
        ValidationError: unknown status; closing with open checklist items.
    """
    check_permission(principal, bug, ACTION_STATUS, reason="Not authorized to change this bug's status")

    new_status = parse_status(requested, labels)
    is_developer = is_assigned_developer(principal, bug)

    if new_status == STATUS_IN_PROGRESS and not is_developer:
        raise PermissionDenied(
            principal, ACTION_STATUS,
            "Only assigned developers can move a bug to In Progress",
        )

    if bug.status == STATUS_CLOSED and new_status != STATUS_CLOSED and not principal.is_admin:
        raise PermissionDenied(
            principal, ACTION_STATUS, "Only an admin can reopen a closed bug",
        )

    if new_status == STATUS_CLOSED and not checklist_complete(bug.checklist):
        pending = [item.text for item in bug.checklist if not item.completed]
        raise ValidationError(
            "Cannot close bug unless all checklist items are completed",
            details={"checklist": f"{len(pending)} item(s) incomplete", "pending": pending},
        )

    logger.debug("Bug %s status %s → %s by user %s",
                 bug.id, bug.status, new_status, principal.user_id)
    return StatusChange(old=bug.status, new=new_status)


def plan_checklist_update(bug, values, principal: Principal) -> tuple[list[ChecklistEntry], StatusChange]:
    """
    Decide a checklist replacement and the status it implies.

    The returned entries replace the whole checklist. While the bug is in a
    terminal status its status is left untouched.

    Raises:
        PermissionDenied: actor is neither admin nor an assigned developer.
        ValidationError: malformed checklist payload.
    """
    check_permission(principal, bug, ACTION_CHECKLIST, reason="You are not assigned to this bug")

    entries = parse_checklist(values, keep_completed=True, required=True)
    if bug.status in TERMINAL_STATUSES:
        return entries, StatusChange(old=bug.status, new=bug.status)

    new_status = derive_status(entries)
    return entries, StatusChange(
        old=bug.status,
        new=new_status,
        closed_by_checklist=new_status == STATUS_CLOSED,
    )
