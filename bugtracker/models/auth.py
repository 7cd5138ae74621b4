"""
Auth Models — users and their workflow role.

Login, password handling and session refresh live outside this service;
a User row only records who a principal is and which role they act in.
"""

from datetime import datetime, timezone

from bugtracker.models import db


# ── Roles ────────────────────────────────────────────────────────────────
ROLE_ADMIN = "admin"
ROLE_TESTER = "tester"
ROLE_DEVELOPER = "developer"

USER_ROLES = {ROLE_ADMIN, ROLE_TESTER, ROLE_DEVELOPER}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    role = db.Column(
        db.String(20), nullable=False, default=ROLE_DEVELOPER,
        comment="admin | tester | developer",
    )
    profile_image_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_summary(self):
        """Compact shape embedded in bug payloads."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "profile_image_url": self.profile_image_url,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "profile_image_url": self.profile_image_url,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
