"""baseline: users + shared_files

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18

- users: account identity for uploaders
- shared_files: file metadata, share token, download policy
"""

from alembic import op
import sqlalchemy as sa


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(bind, table: str) -> bool:
    insp = sa.inspect(bind)
    return insp.has_table(table)


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("hashed_password", sa.String(255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _has_table(bind, "shared_files"):
        op.create_table(
            "shared_files",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("original_name", sa.String(255), nullable=False),
            sa.Column("internal_name", sa.String(64), nullable=False, unique=True),
            sa.Column("size_bytes", sa.BigInteger(), nullable=False),
            sa.Column("mime_type", sa.String(255), nullable=False),
            sa.Column("share_token", sa.String(64), nullable=False),
            sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("password", sa.String(255), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("download_count >= 0", name="ck_shared_files_download_count_nonneg"),
        )
        op.create_index("ix_shared_files_id", "shared_files", ["id"])
        op.create_index("ix_shared_files_owner_id", "shared_files", ["owner_id"])
        op.create_index("ix_shared_files_share_token", "shared_files", ["share_token"], unique=True)


def downgrade() -> None:
    bind = op.get_bind()
    if _has_table(bind, "shared_files"):
        op.drop_index("ix_shared_files_share_token", table_name="shared_files")
        op.drop_index("ix_shared_files_owner_id", table_name="shared_files")
        op.drop_index("ix_shared_files_id", table_name="shared_files")
        op.drop_table("shared_files")
    if _has_table(bind, "users"):
        op.drop_index("ix_users_email", table_name="users")
        op.drop_index("ix_users_id", table_name="users")
        op.drop_table("users")
