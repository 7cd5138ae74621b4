"""
Service-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere. Authorization failures use
``PermissionDenied`` from ``bugtracker.services.permission``.

Usage:
    from bugtracker.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Bug", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Bug", "User").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a workflow rule.

    Covers bad enum values, empty required fields, malformed checklist
    entries and closing a bug with incomplete checklist items.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write would clobber state the caller did not see.

    Used for stale optimistic-lock versions and duplicate unique values.
    Maps to HTTP 409.

    Args:
        resource: Model name.
        message: Human-readable explanation.
        details: Optional structured payload (e.g. expected/current version).
    """

    def __init__(self, resource: str, message: str, details: dict | None = None) -> None:
        self.resource = resource
        self.details = details or {}
        super().__init__(message)


class StaleVersionError(ConflictError):
    """The caller's ``version`` token no longer matches the stored row."""

    def __init__(self, resource: str, resource_id: int, expected, current) -> None:
        super().__init__(
            resource,
            f"{resource} id={resource_id} was modified by someone else "
            f"(expected version {expected}, current {current})",
            details={"expected_version": expected, "current_version": current},
        )
        self.resource_id = resource_id
