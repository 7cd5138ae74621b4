"""
Bug Tracker
Bug domain models.

Models:
    - Bug:              the tracked defect, with status workflow + checklist
    - BugChecklistItem: ordered verification step owned by a bug
    - BugHistory:       field-level change audit trail for bugs

Architecture ref:
    User (tester) ──1:N──▶ Bug ◀──N:M── User (developer)   [bug_assignees]
    Bug ──1:N──▶ BugChecklistItem
    Bug ──1:N──▶ BugHistory

Status lifecycle: open → in_progress → closed
                   ▲                     │
                   └──── admin only ─────┘
"""

from datetime import datetime, timezone

from flask import current_app

from bugtracker.models import db


# ── Constants ────────────────────────────────────────────────────────────

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED = "closed"

# Ordered: dashboards and label tables iterate in this order.
BUG_STATUSES = (STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_CLOSED)

# Statuses the checklist never derives away from.
TERMINAL_STATUSES = frozenset({STATUS_CLOSED})

BUG_PRIORITIES = ("Low", "Medium", "High")

BUG_SEVERITIES = ("Minor", "Major", "Critical")

# ── Display label tables ─────────────────────────────────────────────────
STATUS_LABEL_SETS = {
    "default": {
        STATUS_OPEN: "Open",
        STATUS_IN_PROGRESS: "In Progress",
        STATUS_CLOSED: "Closed",
    },
    "resolution": {
        STATUS_OPEN: "Pending",
        STATUS_IN_PROGRESS: "In Progress",
        STATUS_CLOSED: "Resolved",
    },
}


def status_label(code):
    """Display label for a status code under the active label table."""
    try:
        labels = current_app.config.get("BUG_STATUS_LABELS") or STATUS_LABEL_SETS["default"]
    except RuntimeError:
        # Outside app context
        labels = STATUS_LABEL_SETS["default"]
    return labels.get(code, code)


bug_assignees = db.Table(
    "bug_assignees",
    db.Column(
        "bug_id", db.Integer,
        db.ForeignKey("bugs.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column(
        "user_id", db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    ),
)


# ═════════════════════════════════════════════════════════════════════════════
# BUG
# ═════════════════════════════════════════════════════════════════════════════

class Bug(db.Model):
    """
    Bug reported by a tester and worked by one or more assigned developers.

    ``version`` is the optimistic-lock token: SQLAlchemy bumps it on every
    UPDATE and refuses to flush a row whose version moved underneath it.
    """

    __tablename__ = "bugs"

    id = db.Column(db.Integer, primary_key=True)

    # ── Identification
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    module = db.Column(db.String(100), default="", comment="Functional area / component")

    # ── Classification
    priority = db.Column(db.String(10), default="Medium", comment="Low | Medium | High")
    severity = db.Column(db.String(10), default="Minor", comment="Minor | Major | Critical")
    status = db.Column(
        db.String(20), default=STATUS_OPEN, nullable=False, index=True,
        comment="open | in_progress | closed",
    )
    closed_by_checklist = db.Column(
        db.Boolean, default=False,
        comment="True when the last close came from checklist completion",
    )
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reopen_count = db.Column(db.Integer, default=0, comment="Number of times reopened")

    # ── Planning
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    attachments = db.Column(db.JSON, default=list, comment="Opaque file references")

    # ── People
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    last_updated_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # ── Optimistic lock
    version = db.Column(db.Integer, nullable=False, default=1)

    # ── Relationships
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    last_updated_by = db.relationship("User", foreign_keys=[last_updated_by_id])
    assignees = db.relationship(
        "User", secondary=bug_assignees, lazy="select",
        order_by="User.id",
    )
    checklist = db.relationship(
        "BugChecklistItem", backref="bug", lazy="select",
        cascade="all, delete-orphan",
        order_by="BugChecklistItem.position",
    )
    history = db.relationship(
        "BugHistory", backref="bug", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="BugHistory.changed_at.desc()",
    )

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def assignee_ids(self):
        return {u.id for u in self.assignees}

    @property
    def checklist_progress(self):
        """Completed / total checklist items."""
        total = len(self.checklist)
        done = sum(1 for item in self.checklist if item.completed)
        return {"completed": done, "total": total}

    def to_summary(self):
        """Projection used by dashboard recent-bug lists."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "status_label": status_label(self.status),
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "module": self.module,
            "priority": self.priority,
            "severity": self.severity,
            "status": self.status,
            "status_label": status_label(self.status),
            "closed_by_checklist": bool(self.closed_by_checklist),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "reopen_count": self.reopen_count or 0,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "attachments": list(self.attachments or []),
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "last_updated_by_id": self.last_updated_by_id,
            "assigned_to": [u.to_summary() for u in self.assignees],
            "checklist": [item.to_dict() for item in self.checklist],
            "progress": self.checklist_progress,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Bug {self.id}: [{self.status}] {self.title[:30]}>"


# ═════════════════════════════════════════════════════════════════════════════
# BUG CHECKLIST ITEM
# ═════════════════════════════════════════════════════════════════════════════

class BugChecklistItem(db.Model):
    """Verification step on a bug. No lifecycle outside its parent."""

    __tablename__ = "bug_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    bug_id = db.Column(
        db.Integer, db.ForeignKey("bugs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    text = db.Column(db.String(500), nullable=False)
    completed = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self):
        return {
            "text": self.text,
            "completed": bool(self.completed),
        }

    def __repr__(self):
        return f"<BugChecklistItem bug#{self.bug_id} #{self.position} done={self.completed}>"


# ═════════════════════════════════════════════════════════════════════════════
# BUG HISTORY
# ═════════════════════════════════════════════════════════════════════════════

class BugHistory(db.Model):
    """
    Field-level change audit trail for bugs.

    Populated by the bug service on every create/update/transition.
    """

    __tablename__ = "bug_history"

    id = db.Column(db.Integer, primary_key=True)
    bug_id = db.Column(
        db.Integer, db.ForeignKey("bugs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    field = db.Column(db.String(50), nullable=False, comment="Changed field name")
    old_value = db.Column(db.Text, default="", comment="Previous value")
    new_value = db.Column(db.Text, default="", comment="New value")
    changed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Who made the change",
    )
    changed_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "bug_id": self.bug_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<BugHistory {self.id}: bug#{self.bug_id} {self.field}>"
