"""create_bug_tables

Create `users`, `bugs`, `bug_assignees`, `bug_checklist_items` and
`bug_history`.

Revision ID: 0001a7c3b9e2
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001a7c3b9e2"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="developer"),
            sa.Column("profile_image_url", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "bugs" not in existing_tables:
        op.create_table(
            "bugs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("module", sa.String(length=100), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=True),
            sa.Column("severity", sa.String(length=10), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("closed_by_checklist", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("reopen_count", sa.Integer(), nullable=True, server_default="0"),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("last_updated_by_id", sa.Integer(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["last_updated_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_bugs_status", "bugs", ["status"])
        op.create_index("ix_bugs_created_by_id", "bugs", ["created_by_id"])

    if "bug_assignees" not in existing_tables:
        op.create_table(
            "bug_assignees",
            sa.Column("bug_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["bug_id"], ["bugs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("bug_id", "user_id"),
        )

    if "bug_checklist_items" not in existing_tables:
        op.create_table(
            "bug_checklist_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("bug_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("text", sa.String(length=500), nullable=False),
            sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(["bug_id"], ["bugs.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_bug_checklist_items_bug_id", "bug_checklist_items", ["bug_id"])

    if "bug_history" not in existing_tables:
        op.create_table(
            "bug_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("bug_id", sa.Integer(), nullable=False),
            sa.Column("field", sa.String(length=50), nullable=False),
            sa.Column("old_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("changed_by", sa.Integer(), nullable=True),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["bug_id"], ["bugs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["changed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_bug_history_bug_id", "bug_history", ["bug_id"])


def downgrade():
    existing_tables = set(sa_inspect(op.get_bind()).get_table_names())

    for table in ("bug_history", "bug_checklist_items", "bug_assignees", "bugs", "users"):
        if table in existing_tables:
            op.drop_table(table)
