"""
Bug Tracker — Role-Based Access Control (RBAC) policy.

One decision point for every bug operation: ``is_allowed(principal, bug,
action)``. Handlers and services never compare role strings themselves.

Each role maps actions to a *reach*:
    any       — allowed on every bug
    own       — allowed on bugs the principal reported
    assigned  — allowed on bugs the principal is assigned to

Usage:
    from bugtracker.services.permission import check_permission, PermissionDenied

    # Raises PermissionDenied if not allowed
    check_permission(principal, bug, ACTION_STATUS)

    # Boolean check
    if is_allowed(principal, bug, ACTION_VIEW):
        ...
"""

from dataclasses import dataclass

from bugtracker.models.auth import ROLE_ADMIN, ROLE_DEVELOPER, ROLE_TESTER


ACTION_CREATE = "bug_create"
ACTION_VIEW = "bug_view"
ACTION_EDIT = "bug_edit"
ACTION_DELETE = "bug_delete"
ACTION_STATUS = "bug_status"
ACTION_CHECKLIST = "bug_checklist"
ACTION_DASHBOARD_ADMIN = "dashboard_admin"
ACTION_USERS_LIST = "users_list"

REACH_ANY = "any"
REACH_OWN = "own"
REACH_ASSIGNED = "assigned"

PERMISSION_MATRIX = {
    ROLE_ADMIN: {
        ACTION_VIEW: REACH_ANY,
        ACTION_EDIT: REACH_ANY,
        ACTION_DELETE: REACH_ANY,
        ACTION_STATUS: REACH_ANY,
        ACTION_CHECKLIST: REACH_ANY,
        ACTION_DASHBOARD_ADMIN: REACH_ANY,
        ACTION_USERS_LIST: REACH_ANY,
    },
    ROLE_TESTER: {
        ACTION_CREATE: REACH_ANY,
        ACTION_VIEW: REACH_OWN,
        ACTION_EDIT: REACH_OWN,
        ACTION_DELETE: REACH_OWN,
        ACTION_USERS_LIST: REACH_ANY,
    },
    ROLE_DEVELOPER: {
        ACTION_VIEW: REACH_ASSIGNED,
        ACTION_STATUS: REACH_ASSIGNED,
        ACTION_CHECKLIST: REACH_ASSIGNED,
    },
}


@dataclass(frozen=True)
class Principal:
    """The acting user as the workflow sees it."""

    user_id: int
    role: str

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(user_id=user.id, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class PermissionDenied(Exception):
    """Raised when a principal lacks the role or relationship an action needs."""

    def __init__(self, principal: Principal, action: str, reason: str | None = None):
        msg = reason or f"User {principal.user_id} ({principal.role}) is not allowed to '{action}'"
        super().__init__(msg)
        self.user_id = principal.user_id
        self.role = principal.role
        self.action = action


def is_reporter(principal: Principal, bug) -> bool:
    """True if the principal is the tester who reported the bug."""
    return principal.role == ROLE_TESTER and bug.created_by_id == principal.user_id


def is_assigned_developer(principal: Principal, bug) -> bool:
    """True if the principal is a developer in the bug's assignee set."""
    return principal.role == ROLE_DEVELOPER and principal.user_id in bug.assignee_ids


def is_allowed(
    principal: Principal,
    bug,
    action: str,
    *,
    reporter_can_delete: bool = True,
) -> bool:
    """
    Decide whether a principal may perform an action on a bug.

    Args:
        principal: Acting user.
        bug: Target Bug, or None for collection-level actions (create, lists).
        action: One of the ACTION_* constants.
        reporter_can_delete: Deployment switch letting reporters hard-delete
            bugs they created.

    Returns:
        True if the role grants the action with a reach that covers the bug.
    """
    reach = PERMISSION_MATRIX.get(principal.role, {}).get(action)
    if reach is None:
        return False

    if action == ACTION_DELETE and principal.role == ROLE_TESTER and not reporter_can_delete:
        return False

    if reach == REACH_ANY:
        return True
    if bug is None:
        return False
    if reach == REACH_OWN:
        return is_reporter(principal, bug)
    if reach == REACH_ASSIGNED:
        return is_assigned_developer(principal, bug)
    return False


def check_permission(
    principal: Principal,
    bug,
    action: str,
    *,
    reporter_can_delete: bool = True,
    reason: str | None = None,
) -> None:
    """
    Assert the principal may perform the action; raise PermissionDenied if not.

    Raises:
        PermissionDenied: If the role or relationship does not grant it.
    """
    if not is_allowed(principal, bug, action, reporter_can_delete=reporter_can_delete):
        raise PermissionDenied(principal, action, reason)


def get_allowed_actions(principal: Principal, bug, *, reporter_can_delete: bool = True) -> list[str]:
    """Actions the principal may perform on a bug (used for UI affordances)."""
    return sorted(
        action for action in PERMISSION_MATRIX.get(principal.role, {})
        if is_allowed(principal, bug, action, reporter_can_delete=reporter_can_delete)
    )
