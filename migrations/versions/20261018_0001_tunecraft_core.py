"""tunecraft core schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP"))


def _flag(name: str, default: bool = False) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.true() if default else sa.false())


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_credits_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _flag("is_pro"),
        _timestamp("pro_expires_at", nullable=True),
        sa.Column("subscription_plan", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(length=32), nullable=False, server_default="inactive"),
        sa.Column("login_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("lock_until", nullable=True),
        _flag("is_active", default=True),
        _timestamp("deactivated_at", nullable=True),
        _timestamp("last_login_at", nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("credit_balance >= 0", name="ck_users_credit_balance_non_negative"),
        sa.CheckConstraint("lifetime_credits_used >= 0", name="ck_users_lifetime_credits_non_negative"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#ff6b35"),
        sa.Column("icon", sa.String(length=50), nullable=False, server_default="music"),
        _flag("is_default"),
        _flag("is_trashed"),
        _timestamp("trashed_at", nullable=True),
        _flag("is_shared"),
        sa.Column("share_token", sa.String(length=64), nullable=True),
        _flag("share_is_public"),
        _flag("share_allow_comments"),
        _flag("share_allow_downloads"),
        _timestamp("share_expires_at", nullable=True),
        sa.Column("stats_total_jobs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stats_completed_jobs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stats_total_duration", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("stats_credits_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("stats_last_activity_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_token", name="uq_workspaces_share_token"),
    )
    op.create_index(
        "ix_workspaces_owner_trashed_created_at",
        "workspaces",
        ["owner_id", "is_trashed", "created_at"],
        unique=False,
    )
    op.create_index("ix_workspaces_owner_default", "workspaces", ["owner_id", "is_default"], unique=False)

    op.create_table(
        "workspace_collaborators",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="viewer"),
        _flag("can_create_jobs"),
        _flag("can_edit_jobs"),
        _flag("can_delete_jobs"),
        _flag("can_manage_workspace"),
        _flag("can_invite_users"),
        sa.Column("invited_by_id", sa.String(length=36), nullable=True),
        _timestamp("invited_at"),
        _timestamp("joined_at", nullable=True),
        _timestamp("last_accessed_at", nullable=True),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invited_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_collaborators_workspace_user"),
    )
    op.create_index("ix_workspace_collaborators_user", "workspace_collaborators", ["user_id"], unique=False)

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False, server_default="Untitled"),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("style_tags", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("model_version", sa.String(length=16), nullable=True),
        _flag("is_instrumental"),
        sa.Column("source_audio_url", sa.String(length=1024), nullable=True),
        sa.Column("source_audio_id", sa.String(length=128), nullable=True),
        sa.Column("params_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("provider_task_id", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("credits_reserved", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("audio_url", sa.String(length=1024), nullable=True),
        sa.Column("remote_audio_url", sa.String(length=1024), nullable=True),
        sa.Column("local_audio_path", sa.String(length=512), nullable=True),
        sa.Column("video_url", sa.String(length=1024), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("lyrics_text", sa.Text(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("result_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("error_code", sa.String(length=50), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("parent_job_id", sa.String(length=36), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _flag("is_favorite"),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_job_id"], ["jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_task_id", name="uq_jobs_provider_task_id"),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_jobs_progress_range"),
        sa.CheckConstraint("credits_reserved >= 0", name="ck_jobs_credits_non_negative"),
    )
    op.create_index("ix_jobs_owner_created_at", "jobs", ["owner_id", "created_at"], unique=False)
    op.create_index("ix_jobs_owner_status", "jobs", ["owner_id", "status"], unique=False)
    op.create_index("ix_jobs_workspace_created_at", "jobs", ["workspace_id", "created_at"], unique=False)
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"], unique=False)

    op.create_table(
        "job_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False, server_default="info"),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "sequence", name="uq_job_logs_job_sequence"),
    )
    op.create_index("ix_job_logs_job_sequence", "job_logs", ["job_id", "sequence"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("entry_type", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=False),
        sa.Column("reason", sa.String(length=120), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", "entry_type", name="uq_credit_transactions_key_type"),
    )
    op.create_index(
        "ix_credit_transactions_user_created_at",
        "credit_transactions",
        ["user_id", "created_at"],
        unique=False,
    )
    op.create_index("ix_credit_transactions_job", "credit_transactions", ["job_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_credit_transactions_job", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_created_at", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_index("ix_job_logs_job_sequence", table_name="job_logs")
    op.drop_table("job_logs")

    op.drop_index("ix_jobs_status_created_at", table_name="jobs")
    op.drop_index("ix_jobs_workspace_created_at", table_name="jobs")
    op.drop_index("ix_jobs_owner_status", table_name="jobs")
    op.drop_index("ix_jobs_owner_created_at", table_name="jobs")
    op.drop_table("jobs")

    op.drop_index("ix_workspace_collaborators_user", table_name="workspace_collaborators")
    op.drop_table("workspace_collaborators")

    op.drop_index("ix_workspaces_owner_default", table_name="workspaces")
    op.drop_index("ix_workspaces_owner_trashed_created_at", table_name="workspaces")
    op.drop_table("workspaces")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
