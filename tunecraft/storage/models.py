"""SQLAlchemy ORM models for users, workspaces, generation jobs and the credit ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tunecraft.storage.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    credit_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_pro: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pro_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_plan: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="inactive")
    login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lock_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_users_credit_balance_non_negative"),
        CheckConstraint("lifetime_credits_used >= 0", name="ck_users_lifetime_credits_non_negative"),
    )


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#ff6b35")
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="music")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_trashed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trashed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_shared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    share_is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_allow_comments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_allow_downloads: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stats_total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_completed_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_total_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    stats_credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    collaborators: Mapped[list[WorkspaceCollaborator]] = relationship(
        "WorkspaceCollaborator",
        back_populates="workspace",
        cascade="all, delete-orphan",
        order_by="WorkspaceCollaborator.invited_at",
    )

    __table_args__ = (
        Index("ix_workspaces_owner_trashed_created_at", "owner_id", "is_trashed", "created_at"),
        Index("ix_workspaces_owner_default", "owner_id", "is_default"),
    )


class WorkspaceCollaborator(Base):
    __tablename__ = "workspace_collaborators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="viewer")
    can_create_jobs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_edit_jobs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete_jobs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_manage_workspace: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_invite_users: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invited_by_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    invited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    joined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    workspace: Mapped[Workspace] = relationship("Workspace", back_populates="collaborators")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_collaborators_workspace_user"),
        Index("ix_workspace_collaborators_user", "user_id"),
    )


class Job(Base):
    """One generation request: music, lyrics, audio post-processing or video."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    workspace_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="Untitled")
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    style_tags: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    model_version: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    is_instrumental: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_audio_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    source_audio_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    params_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    provider_task_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    audio_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    remote_audio_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    local_audio_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    lyrics_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    error_message: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_job_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    logs: Mapped[list[JobLog]] = relationship(
        "JobLog",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="JobLog.sequence",
    )

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_jobs_progress_range"),
        CheckConstraint("credits_reserved >= 0", name="ck_jobs_credits_non_negative"),
        Index("ix_jobs_owner_created_at", "owner_id", "created_at"),
        Index("ix_jobs_owner_status", "owner_id", "status"),
        Index("ix_jobs_workspace_created_at", "workspace_id", "created_at"),
        Index("ix_jobs_status_created_at", "status", "created_at"),
    )


class JobLog(Base):
    __tablename__ = "job_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="info")
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    job: Mapped[Job] = relationship("Job", back_populates="logs")

    __table_args__ = (
        UniqueConstraint("job_id", "sequence", name="uq_job_logs_job_sequence"),
        Index("ix_job_logs_job_sequence", "job_id", "sequence"),
    )


class CreditTransaction(Base):
    """Append-only credit journal; the unique key makes reserve and refund at-most-once per job."""

    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    entry_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", "entry_type", name="uq_credit_transactions_key_type"),
        Index("ix_credit_transactions_user_created_at", "user_id", "created_at"),
        Index("ix_credit_transactions_job", "job_id"),
    )
