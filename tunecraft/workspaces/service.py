"""Workspace aggregate: membership, default selection, trash, sharing and cached stats."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import re
from typing import Dict, FrozenSet, List, Optional
import uuid

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.orm import Session

from tunecraft.core.config import get_settings
from tunecraft.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from tunecraft.core.logger import get_logger
from tunecraft.jobs.states import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED
from tunecraft.storage.models import Job, JobLog, User, Workspace, WorkspaceCollaborator
from tunecraft.storage.security import generate_share_token


logger = get_logger("tunecraft.workspaces")

CAP_CREATE_JOBS = "create_jobs"
CAP_EDIT_JOBS = "edit_jobs"
CAP_DELETE_JOBS = "delete_jobs"
CAP_MANAGE_WORKSPACE = "manage_workspace"
CAP_INVITE_USERS = "invite_users"

CAPABILITIES = (
    CAP_CREATE_JOBS,
    CAP_EDIT_JOBS,
    CAP_DELETE_JOBS,
    CAP_MANAGE_WORKSPACE,
    CAP_INVITE_USERS,
)

ROLE_VIEWER = "viewer"
ROLE_EDITOR = "editor"
ROLE_ADMIN = "admin"

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    ROLE_VIEWER: frozenset(),
    ROLE_EDITOR: frozenset({CAP_CREATE_JOBS, CAP_EDIT_JOBS}),
    ROLE_ADMIN: frozenset(CAPABILITIES),
}

DEFAULT_COLOR = "#ff6b35"
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class WorkspaceStats:
    total_jobs: int
    completed_jobs: int
    total_duration: float
    credits_used: int
    last_activity_at: Optional[datetime]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clean_name(name: Optional[str]) -> str:
    cleaned = " ".join(str(name or "").split())
    if not cleaned:
        raise ValidationError("Workspace name is required")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f"Workspace name cannot exceed {MAX_NAME_LENGTH} characters")
    return cleaned


def _clean_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    cleaned = description.strip()
    if len(cleaned) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    return cleaned or None


def _clean_color(color: Optional[str]) -> str:
    if color is None or not color.strip():
        return DEFAULT_COLOR
    cleaned = color.strip()
    if not _HEX_COLOR.match(cleaned):
        raise ValidationError("Color must be a valid hex color", details={"color": color})
    return cleaned.lower()


def _ensure_name_available(
    session: Session,
    *,
    owner_id: str,
    name: str,
    exclude_id: Optional[str] = None,
) -> None:
    statement = select(Workspace.id).where(
        Workspace.owner_id == owner_id,
        Workspace.is_trashed.is_(False),
        func.lower(Workspace.name) == name.lower(),
    )
    if exclude_id is not None:
        statement = statement.where(Workspace.id != exclude_id)
    if session.scalar(statement) is not None:
        raise ConflictError("Workspace with this name already exists", details={"name": name})


def permissions_for_role(role: str) -> FrozenSet[str]:
    normalized = str(role or "").strip().lower()
    if normalized not in ROLE_PERMISSIONS:
        raise ValidationError("Invalid collaborator role", details={"role": role})
    return ROLE_PERMISSIONS[normalized]


def apply_role(collaborator: WorkspaceCollaborator, role: str) -> None:
    """Set the role and recompute every permission flag from the fixed role table."""

    permissions = permissions_for_role(role)
    collaborator.role = role.strip().lower()
    collaborator.can_create_jobs = CAP_CREATE_JOBS in permissions
    collaborator.can_edit_jobs = CAP_EDIT_JOBS in permissions
    collaborator.can_delete_jobs = CAP_DELETE_JOBS in permissions
    collaborator.can_manage_workspace = CAP_MANAGE_WORKSPACE in permissions
    collaborator.can_invite_users = CAP_INVITE_USERS in permissions


def _collaborator_flag(collaborator: WorkspaceCollaborator, capability: str) -> bool:
    flags = {
        CAP_CREATE_JOBS: collaborator.can_create_jobs,
        CAP_EDIT_JOBS: collaborator.can_edit_jobs,
        CAP_DELETE_JOBS: collaborator.can_delete_jobs,
        CAP_MANAGE_WORKSPACE: collaborator.can_manage_workspace,
        CAP_INVITE_USERS: collaborator.can_invite_users,
    }
    return bool(flags.get(capability, False))


def find_collaborator(workspace: Workspace, user_id: str) -> Optional[WorkspaceCollaborator]:
    for collaborator in workspace.collaborators:
        if collaborator.user_id == user_id:
            return collaborator
    return None


def has_permission(workspace: Workspace, user_id: str, capability: str) -> bool:
    """Owner has every capability; collaborators are checked against their role flags."""

    if capability not in CAPABILITIES:
        raise ValidationError("Unknown workspace capability", details={"capability": capability})
    if workspace.owner_id == user_id:
        return True
    collaborator = find_collaborator(workspace, user_id)
    if collaborator is None:
        return False
    return _collaborator_flag(collaborator, capability)


def can_access(workspace: Workspace, user_id: str) -> bool:
    return workspace.owner_id == user_id or find_collaborator(workspace, user_id) is not None


def get_accessible_workspace(
    session: Session,
    *,
    workspace_id: str,
    user_id: str,
    capability: Optional[str] = None,
    include_trashed: bool = False,
) -> Workspace:
    workspace = session.get(Workspace, workspace_id)
    if workspace is None or (workspace.is_trashed and not include_trashed) or not can_access(workspace, user_id):
        raise NotFoundError("Workspace not found", details={"workspace_id": workspace_id})
    if capability is not None and not has_permission(workspace, user_id, capability):
        raise PermissionDeniedError(
            "You do not have permission to perform this action in this workspace",
            details={"workspace_id": workspace_id, "capability": capability},
        )
    return workspace


def get_owned_workspace(
    session: Session,
    *,
    workspace_id: str,
    owner_id: str,
    include_trashed: bool = True,
) -> Workspace:
    workspace = session.get(Workspace, workspace_id)
    if workspace is None or workspace.owner_id != owner_id or (workspace.is_trashed and not include_trashed):
        raise NotFoundError("Workspace not found", details={"workspace_id": workspace_id})
    return workspace


def _clear_other_defaults(session: Session, *, owner_id: str, workspace_id: str) -> None:
    session.execute(
        update(Workspace)
        .where(Workspace.owner_id == owner_id)
        .values(is_default=case((Workspace.id == workspace_id, True), else_=False))
        .execution_options(synchronize_session="fetch")
    )


def create_workspace(
    session: Session,
    *,
    owner_id: str,
    name: str,
    description: Optional[str] = None,
    color: Optional[str] = None,
    icon: Optional[str] = None,
    is_default: bool = False,
    commit: bool = True,
) -> Workspace:
    cleaned_name = _clean_name(name)
    _ensure_name_available(session, owner_id=owner_id, name=cleaned_name)

    workspace = Workspace(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        name=cleaned_name,
        description=_clean_description(description),
        color=_clean_color(color),
        icon=(icon or "music").strip() or "music",
        is_default=False,
    )
    session.add(workspace)
    session.flush()
    if is_default:
        _clear_other_defaults(session, owner_id=owner_id, workspace_id=workspace.id)
    if commit:
        session.commit()
    session.refresh(workspace)

    logger.info("workspace_created", workspace_id=workspace.id, owner_id=owner_id, is_default=workspace.is_default)
    return workspace


def get_default_workspace(session: Session, owner_id: str) -> Optional[Workspace]:
    return session.scalar(
        select(Workspace).where(
            Workspace.owner_id == owner_id,
            Workspace.is_default.is_(True),
            Workspace.is_trashed.is_(False),
        )
    )


def ensure_default_workspace(session: Session, owner_id: str, *, commit: bool = True) -> Workspace:
    """Return the owner's default workspace, creating or promoting one when none exists."""

    workspace = get_default_workspace(session, owner_id)
    if workspace is not None:
        return workspace

    default_name = get_settings().default_workspace_name
    existing = session.scalar(
        select(Workspace).where(
            Workspace.owner_id == owner_id,
            Workspace.is_trashed.is_(False),
            func.lower(Workspace.name) == default_name.lower(),
        )
    )
    if existing is not None:
        return set_default_workspace(session, owner_id=owner_id, workspace_id=existing.id, commit=commit)

    return create_workspace(
        session,
        owner_id=owner_id,
        name=default_name,
        description="Default workspace for your music creations",
        is_default=True,
        commit=commit,
    )


def set_default_workspace(
    session: Session,
    *,
    owner_id: str,
    workspace_id: str,
    commit: bool = True,
) -> Workspace:
    """Flip the default flag for every workspace of the owner in one statement."""

    workspace = get_owned_workspace(session, workspace_id=workspace_id, owner_id=owner_id, include_trashed=False)
    _clear_other_defaults(session, owner_id=owner_id, workspace_id=workspace.id)
    workspace.updated_at = _now_utc()
    if commit:
        session.commit()
    else:
        session.flush()
    session.refresh(workspace)
    logger.info("workspace_default_set", workspace_id=workspace.id, owner_id=owner_id)
    return workspace


def list_workspaces_for_user(session: Session, user_id: str) -> List[Workspace]:
    collaborator_workspace_ids = select(WorkspaceCollaborator.workspace_id).where(
        WorkspaceCollaborator.user_id == user_id
    )
    statement = (
        select(Workspace)
        .where(
            Workspace.is_trashed.is_(False),
            or_(Workspace.owner_id == user_id, Workspace.id.in_(collaborator_workspace_ids)),
        )
        .order_by(Workspace.is_default.desc(), Workspace.created_at.desc())
    )
    return list(session.scalars(statement).all())


def list_trashed_workspaces(session: Session, owner_id: str) -> List[Workspace]:
    statement = (
        select(Workspace)
        .where(Workspace.owner_id == owner_id, Workspace.is_trashed.is_(True))
        .order_by(Workspace.trashed_at.desc())
    )
    return list(session.scalars(statement).all())


def update_workspace(
    session: Session,
    *,
    workspace_id: str,
    user_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
    icon: Optional[str] = None,
    is_default: Optional[bool] = None,
) -> Workspace:
    workspace = get_accessible_workspace(
        session,
        workspace_id=workspace_id,
        user_id=user_id,
        capability=CAP_MANAGE_WORKSPACE,
    )
    if name is not None:
        cleaned_name = _clean_name(name)
        _ensure_name_available(session, owner_id=workspace.owner_id, name=cleaned_name, exclude_id=workspace.id)
        workspace.name = cleaned_name
    if description is not None:
        workspace.description = _clean_description(description)
    if color is not None:
        workspace.color = _clean_color(color)
    if icon is not None:
        workspace.icon = icon.strip() or "music"
    workspace.updated_at = _now_utc()
    session.flush()

    if is_default:
        if workspace.owner_id != user_id:
            raise PermissionDeniedError("Only the owner can change the default workspace")
        _clear_other_defaults(session, owner_id=workspace.owner_id, workspace_id=workspace.id)

    session.commit()
    session.refresh(workspace)
    return workspace


def trash_workspace(session: Session, *, workspace_id: str, owner_id: str) -> Workspace:
    workspace = get_owned_workspace(session, workspace_id=workspace_id, owner_id=owner_id, include_trashed=False)
    if workspace.is_default:
        raise ValidationError("Cannot trash default workspace", details={"workspace_id": workspace_id})

    workspace.is_trashed = True
    workspace.trashed_at = _now_utc()
    workspace.updated_at = workspace.trashed_at
    session.commit()
    logger.info("workspace_trashed", workspace_id=workspace.id, owner_id=owner_id)
    return workspace


def restore_workspace(session: Session, *, workspace_id: str, owner_id: str) -> Workspace:
    workspace = get_owned_workspace(session, workspace_id=workspace_id, owner_id=owner_id)
    if not workspace.is_trashed:
        raise NotFoundError("Trashed workspace not found", details={"workspace_id": workspace_id})
    _ensure_name_available(session, owner_id=owner_id, name=workspace.name, exclude_id=workspace.id)

    workspace.is_trashed = False
    workspace.trashed_at = None
    workspace.updated_at = _now_utc()
    session.commit()
    logger.info("workspace_restored", workspace_id=workspace.id, owner_id=owner_id)
    return workspace


def permanent_delete_workspace(session: Session, *, workspace_id: str, owner_id: str) -> int:
    """Hard-delete the workspace and every job in it. Returns the number of deleted jobs."""

    workspace = get_owned_workspace(session, workspace_id=workspace_id, owner_id=owner_id)
    if workspace.is_default:
        raise ValidationError(
            "Cannot permanently delete default workspace",
            details={"workspace_id": workspace_id},
        )

    job_ids = select(Job.id).where(Job.workspace_id == workspace.id)
    session.execute(delete(JobLog).where(JobLog.job_id.in_(job_ids)))
    session.execute(
        update(Job)
        .where(Job.parent_job_id.in_(job_ids))
        .values(parent_job_id=None)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(
        delete(Job).where(Job.workspace_id == workspace.id).execution_options(synchronize_session=False)
    )
    deleted_jobs = int(result.rowcount or 0)
    session.delete(workspace)
    session.commit()
    session.expire_all()

    logger.info("workspace_deleted", workspace_id=workspace_id, owner_id=owner_id, deleted_jobs=deleted_jobs)
    return deleted_jobs


def recompute_stats(session: Session, workspace_id: str, *, commit: bool = True) -> WorkspaceStats:
    """Re-derive cached stats from the live jobs of the workspace."""

    row = session.execute(
        select(
            func.count(Job.id),
            func.coalesce(func.sum(case((Job.status == JOB_STATUS_COMPLETED, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Job.status == JOB_STATUS_COMPLETED, Job.duration), else_=0.0)), 0.0),
            func.coalesce(func.sum(case((Job.status != JOB_STATUS_FAILED, Job.credits_reserved), else_=0)), 0),
            func.max(Job.updated_at),
        ).where(Job.workspace_id == workspace_id)
    ).one()

    stats = WorkspaceStats(
        total_jobs=int(row[0] or 0),
        completed_jobs=int(row[1] or 0),
        total_duration=float(row[2] or 0.0),
        credits_used=int(row[3] or 0),
        last_activity_at=_normalize_dt(row[4]),
    )

    workspace = session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found", details={"workspace_id": workspace_id})
    workspace.stats_total_jobs = stats.total_jobs
    workspace.stats_completed_jobs = stats.completed_jobs
    workspace.stats_total_duration = stats.total_duration
    workspace.stats_credits_used = stats.credits_used
    workspace.stats_last_activity_at = stats.last_activity_at or workspace.stats_last_activity_at
    if commit:
        session.commit()
    else:
        session.flush()
    return stats


def add_job(session: Session, workspace: Workspace, job: Job, *, commit: bool = True) -> WorkspaceStats:
    job.workspace_id = workspace.id
    workspace.updated_at = _now_utc()
    session.flush()
    return recompute_stats(session, workspace.id, commit=commit)


def remove_job(session: Session, workspace: Workspace, job: Job, *, commit: bool = True) -> WorkspaceStats:
    if job.workspace_id == workspace.id:
        job.workspace_id = None
    workspace.updated_at = _now_utc()
    session.flush()
    return recompute_stats(session, workspace.id, commit=commit)


def list_workspace_jobs(session: Session, workspace_id: str, *, limit: int = 100) -> List[Job]:
    statement = (
        select(Job)
        .where(Job.workspace_id == workspace_id)
        .order_by(Job.created_at.desc())
        .limit(limit)
    )
    return list(session.scalars(statement).all())


def _find_user_by_identifier(session: Session, identifier: str) -> Optional[User]:
    cleaned = identifier.strip()
    if not cleaned:
        return None
    return session.scalar(
        select(User).where(
            User.is_active.is_(True),
            or_(func.lower(User.email) == cleaned.lower(), func.lower(User.username) == cleaned.lower()),
        )
    )


def add_collaborator(
    session: Session,
    *,
    workspace_id: str,
    actor_id: str,
    identifier: str,
    role: str = ROLE_VIEWER,
) -> WorkspaceCollaborator:
    workspace = get_accessible_workspace(
        session,
        workspace_id=workspace_id,
        user_id=actor_id,
        capability=CAP_INVITE_USERS,
    )
    permissions_for_role(role)

    invitee = _find_user_by_identifier(session, identifier)
    if invitee is None:
        raise NotFoundError("User not found", details={"identifier": identifier})
    if invitee.id == workspace.owner_id:
        raise ValidationError("Cannot invite the workspace owner as a collaborator")
    if find_collaborator(workspace, invitee.id) is not None:
        raise ConflictError("User is already a collaborator", details={"user_id": invitee.id})

    collaborator = WorkspaceCollaborator(
        id=str(uuid.uuid4()),
        workspace_id=workspace.id,
        user_id=invitee.id,
        invited_by_id=actor_id,
    )
    apply_role(collaborator, role)
    workspace.collaborators.append(collaborator)
    workspace.updated_at = _now_utc()
    session.commit()

    logger.info(
        "workspace_collaborator_added",
        workspace_id=workspace.id,
        collaborator_id=invitee.id,
        role=collaborator.role,
    )
    return collaborator


def update_collaborator_role(
    session: Session,
    *,
    workspace_id: str,
    actor_id: str,
    collaborator_user_id: str,
    role: str,
) -> WorkspaceCollaborator:
    workspace = get_accessible_workspace(
        session,
        workspace_id=workspace_id,
        user_id=actor_id,
        capability=CAP_MANAGE_WORKSPACE,
    )
    collaborator = find_collaborator(workspace, collaborator_user_id)
    if collaborator is None:
        raise NotFoundError("Collaborator not found", details={"user_id": collaborator_user_id})

    apply_role(collaborator, role)
    workspace.updated_at = _now_utc()
    session.commit()
    return collaborator


def remove_collaborator(
    session: Session,
    *,
    workspace_id: str,
    actor_id: str,
    collaborator_user_id: str,
) -> None:
    workspace = get_accessible_workspace(session, workspace_id=workspace_id, user_id=actor_id)
    if actor_id != collaborator_user_id and not has_permission(workspace, actor_id, CAP_MANAGE_WORKSPACE):
        raise PermissionDeniedError("You do not have permission to remove collaborators")

    collaborator = find_collaborator(workspace, collaborator_user_id)
    if collaborator is None:
        raise NotFoundError("Collaborator not found", details={"user_id": collaborator_user_id})

    workspace.collaborators.remove(collaborator)
    workspace.updated_at = _now_utc()
    session.commit()


def touch_collaborator_access(session: Session, workspace: Workspace, user_id: str) -> None:
    collaborator = find_collaborator(workspace, user_id)
    if collaborator is None:
        return
    now = _now_utc()
    if collaborator.joined_at is None:
        collaborator.joined_at = now
    collaborator.last_accessed_at = now
    session.commit()


def share_workspace(
    session: Session,
    *,
    workspace_id: str,
    owner_id: str,
    is_public: bool = False,
    allow_comments: bool = False,
    allow_downloads: bool = False,
    expires_in_days: Optional[int] = None,
) -> Workspace:
    workspace = get_owned_workspace(session, workspace_id=workspace_id, owner_id=owner_id, include_trashed=False)
    if expires_in_days is not None and expires_in_days <= 0:
        raise ValidationError("expires_in_days must be positive", details={"expires_in_days": expires_in_days})

    workspace.is_shared = True
    workspace.share_token = generate_share_token()
    workspace.share_is_public = is_public
    workspace.share_allow_comments = allow_comments
    workspace.share_allow_downloads = allow_downloads
    workspace.share_expires_at = _now_utc() + timedelta(days=expires_in_days) if expires_in_days else None
    workspace.updated_at = _now_utc()
    session.commit()

    logger.info("workspace_shared", workspace_id=workspace.id, is_public=is_public)
    return workspace


def unshare_workspace(session: Session, *, workspace_id: str, owner_id: str) -> Workspace:
    workspace = get_owned_workspace(session, workspace_id=workspace_id, owner_id=owner_id)
    workspace.is_shared = False
    workspace.share_token = None
    workspace.share_expires_at = None
    workspace.updated_at = _now_utc()
    session.commit()
    return workspace


def get_shared_workspace(session: Session, share_token: str) -> Workspace:
    workspace = session.scalar(
        select(Workspace).where(
            Workspace.share_token == share_token,
            Workspace.is_shared.is_(True),
            Workspace.is_trashed.is_(False),
        )
    )
    if workspace is None:
        raise NotFoundError("Shared workspace not found")
    expires_at = _normalize_dt(workspace.share_expires_at)
    if expires_at is not None and expires_at <= _now_utc():
        raise NotFoundError("Shared workspace link has expired")
    return workspace
