"""Create journal tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates users, global_users, servers, submissions, files, comments,
       categories and the author / reviewer / category join tables.
How:   Every table carries created_at, updated_at and a nullable deleted_at
       for soft deletion. Approval is stored as a short string.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(32), nullable=False),
        sa.Column("last_name", sa.String(32), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("organization", sa.String(128), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_deleted_at", "users", ["deleted_at"])

    op.create_table(
        "global_users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("capabilities", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_global_users"),
        sa.UniqueConstraint("user_id", name="uq_global_users_user_id"),
    )
    op.create_index("ix_global_users_deleted_at", "global_users", ["deleted_at"])

    op.create_table(
        "servers",
        sa.Column("group_number", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("url", sa.String(255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("group_number", name="pk_servers"),
    )
    op.create_index("ix_servers_token", "servers", ["token"])
    op.create_index("ix_servers_deleted_at", "servers", ["deleted_at"])

    op.create_table(
        "categories",
        sa.Column("tag", sa.String(32), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("tag", name="pk_categories"),
    )
    op.create_index("ix_categories_deleted_at", "categories", ["deleted_at"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("license", sa.String(64), nullable=True),
        sa.Column("approval", sa.String(16), nullable=False, server_default="unset"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_submissions"),
    )
    op.create_index("idx_submissions_created_at", "submissions", ["created_at"])
    op.create_index("ix_submissions_deleted_at", "submissions", ["deleted_at"])

    for table in ("authors_submission", "reviewers_submission"):
        op.create_table(
            table,
            sa.Column("submission_id", sa.Integer(), sa.ForeignKey("submissions.id"), nullable=False),
            sa.Column("global_user_id", sa.String(64), sa.ForeignKey("global_users.id"), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("submission_id", "global_user_id", name=f"pk_{table}"),
        )

    op.create_table(
        "categories_submission",
        sa.Column("submission_id", sa.Integer(), sa.ForeignKey("submissions.id"), nullable=False),
        sa.Column("category_tag", sa.String(32), sa.ForeignKey("categories.tag"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("submission_id", "category_tag", name="pk_categories_submission"),
    )

    op.create_table(
        "files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("submission_id", sa.Integer(), sa.ForeignKey("submissions.id"), nullable=False),
        sa.Column("path", sa.String(1024), nullable=False),
        sa.Column("sidecar_path", sa.String(1024), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_files"),
    )
    op.create_index("idx_files_submission_path", "files", ["submission_id", "path"])
    op.create_index("idx_files_submission_sidecar", "files", ["submission_id", "sidecar_path"])
    op.create_index("ix_files_deleted_at", "files", ["deleted_at"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("file_id", sa.Integer(), sa.ForeignKey("files.id"), nullable=False),
        sa.Column("author_id", sa.String(64), sa.ForeignKey("global_users.id"), nullable=False),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("comments.id"), nullable=True),
        sa.Column("base64_value", sa.Text(), nullable=False),
        sa.Column("start_line", sa.Integer(), nullable=False),
        sa.Column("end_line", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_comments"),
    )
    op.create_index("ix_comments_file_id", "comments", ["file_id"])
    op.create_index("ix_comments_deleted_at", "comments", ["deleted_at"])


def downgrade() -> None:
    op.drop_table("comments")
    op.drop_table("files")
    op.drop_table("categories_submission")
    op.drop_table("reviewers_submission")
    op.drop_table("authors_submission")
    op.drop_table("submissions")
    op.drop_table("categories")
    op.drop_table("servers")
    op.drop_table("global_users")
    op.drop_table("users")
