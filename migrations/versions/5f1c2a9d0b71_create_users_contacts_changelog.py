"""create users, contacts and changelog tables

Revision ID: 5f1c2a9d0b71
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5f1c2a9d0b71'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, contacts and changelog."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("username", sa.String(64), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", sa.String(16), nullable=False, server_default="user"),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("employee_number", sa.String(64), nullable=True),
            sa.Column("position", sa.String(128), nullable=True),
            sa.Column("avatar", sa.Text(), nullable=True),
            sa.Column("terms_accepted_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("role IN ('user', 'admin', 'superadmin')", name="ck_users_role"),
        )
        op.create_index("idx_users_name", "users", ["name"])

    if "contacts" not in existing_tables:
        op.create_table(
            "contacts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("first_name", sa.Text(), nullable=False),
            sa.Column("middle_name", sa.Text(), nullable=True),
            sa.Column("last_name", sa.Text(), nullable=False),
            sa.Column("birthday", sa.Date(), nullable=True),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("company", sa.Text(), nullable=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("idx_contacts_user_id", "contacts", ["user_id"])
        op.create_index("idx_contacts_last_name", "contacts", ["last_name"])
        op.create_index("idx_contacts_updated_at", "contacts", ["updated_at"])

    if "changelog" not in existing_tables:
        op.create_table(
            "changelog",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("timestamp", sa.DateTime(), nullable=False),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("user_name", sa.String(200), nullable=True),
            sa.Column("user_role", sa.String(16), nullable=True),
            sa.Column("action", sa.String(16), nullable=False),
            sa.Column("entity", sa.String(16), nullable=False),
            sa.Column("entity_id", sa.String(64), nullable=True),
            sa.Column("entity_name", sa.String(255), nullable=True),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("details", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )
        op.create_index("idx_changelog_timestamp", "changelog", ["timestamp"])
        op.create_index("idx_changelog_user_id", "changelog", ["user_id"])
        op.create_index("idx_changelog_entity", "changelog", ["entity", "entity_id"])


def downgrade() -> None:
    """Drop tables in reverse order."""
    op.drop_table("changelog")
    op.drop_table("contacts")
    op.drop_table("users")
