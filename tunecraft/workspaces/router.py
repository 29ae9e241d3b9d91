"""Workspace management routes: CRUD, trash, default, sharing and collaborators."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from tunecraft.auth.dependencies import require_auth_context
from tunecraft.auth.jwt import AuthContext
from tunecraft.core.config import get_settings
from tunecraft.jobs.router import job_item
from tunecraft.jobs.states import JOB_STATUS_COMPLETED
from tunecraft.schemas.jobs import JobItem
from tunecraft.schemas.workspace import (
    CollaboratorInviteRequest,
    CollaboratorItem,
    CollaboratorRoleUpdateRequest,
    SharedJobItem,
    SharedWorkspaceResponse,
    WorkspaceCreateRequest,
    WorkspaceDeleteResponse,
    WorkspaceItem,
    WorkspaceListResponse,
    WorkspaceShareRequest,
    WorkspaceShareResponse,
    WorkspaceStatsItem,
    WorkspaceUpdateRequest,
)
from tunecraft.storage.db import get_session
from tunecraft.storage.models import Workspace, WorkspaceCollaborator
from tunecraft.workspaces import service as workspace_service


router = APIRouter(prefix="/workspaces", tags=["workspaces"])

OWNER_ROLE = "owner"


def _stats(workspace: Workspace) -> WorkspaceStatsItem:
    return WorkspaceStatsItem(
        total_jobs=workspace.stats_total_jobs,
        completed_jobs=workspace.stats_completed_jobs,
        total_duration=workspace.stats_total_duration,
        credits_used=workspace.stats_credits_used,
        last_activity_at=workspace.stats_last_activity_at,
    )


def _collaborator_item(collaborator: WorkspaceCollaborator) -> CollaboratorItem:
    return CollaboratorItem(
        user_id=collaborator.user_id,
        role=collaborator.role,
        can_create_jobs=collaborator.can_create_jobs,
        can_edit_jobs=collaborator.can_edit_jobs,
        can_delete_jobs=collaborator.can_delete_jobs,
        can_manage_workspace=collaborator.can_manage_workspace,
        can_invite_users=collaborator.can_invite_users,
        invited_by_id=collaborator.invited_by_id,
        invited_at=collaborator.invited_at,
        joined_at=collaborator.joined_at,
    )


def _my_role(workspace: Workspace, user_id: str) -> str:
    if workspace.owner_id == user_id:
        return OWNER_ROLE
    collaborator = workspace_service.find_collaborator(workspace, user_id)
    return collaborator.role if collaborator else ""


def _workspace_item(workspace: Workspace, user_id: str) -> WorkspaceItem:
    return WorkspaceItem(
        id=workspace.id,
        owner_id=workspace.owner_id,
        name=workspace.name,
        description=workspace.description,
        color=workspace.color,
        icon=workspace.icon,
        is_default=workspace.is_default,
        is_trashed=workspace.is_trashed,
        trashed_at=workspace.trashed_at,
        is_shared=workspace.is_shared,
        my_role=_my_role(workspace, user_id),
        stats=_stats(workspace),
        collaborators=[_collaborator_item(item) for item in workspace.collaborators],
        created_at=workspace.created_at,
        updated_at=workspace.updated_at,
    )


def _share_url(share_token: str) -> str:
    return f"{get_settings().frontend_base_url.rstrip('/')}/shared/{share_token}"


@router.get("", response_model=WorkspaceListResponse)
def list_workspaces(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceListResponse:
    workspace_service.ensure_default_workspace(session, auth.user_id)
    workspaces = workspace_service.list_workspaces_for_user(session, auth.user_id)
    return WorkspaceListResponse(items=[_workspace_item(item, auth.user_id) for item in workspaces])


@router.post("", response_model=WorkspaceItem, status_code=status.HTTP_201_CREATED)
def create_workspace(
    payload: WorkspaceCreateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceItem:
    workspace = workspace_service.create_workspace(
        session,
        owner_id=auth.user_id,
        name=payload.name,
        description=payload.description,
        color=payload.color,
        icon=payload.icon,
        is_default=payload.is_default,
    )
    return _workspace_item(workspace, auth.user_id)


@router.get("/trash", response_model=WorkspaceListResponse)
def list_trash(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceListResponse:
    workspaces = workspace_service.list_trashed_workspaces(session, auth.user_id)
    return WorkspaceListResponse(items=[_workspace_item(item, auth.user_id) for item in workspaces])


@router.get("/shared/{share_token}", response_model=SharedWorkspaceResponse)
def view_shared_workspace(share_token: str, session: Session = Depends(get_session)) -> SharedWorkspaceResponse:
    workspace = workspace_service.get_shared_workspace(session, share_token)
    jobs = [
        job
        for job in workspace_service.list_workspace_jobs(session, workspace.id)
        if job.status == JOB_STATUS_COMPLETED
    ]
    return SharedWorkspaceResponse(
        id=workspace.id,
        name=workspace.name,
        description=workspace.description,
        color=workspace.color,
        icon=workspace.icon,
        allow_comments=workspace.share_allow_comments,
        allow_downloads=workspace.share_allow_downloads,
        stats=_stats(workspace),
        jobs=[
            SharedJobItem(
                id=job.id,
                title=job.title,
                kind=job.kind,
                status=job.status,
                audio_url=job.audio_url,
                video_url=job.video_url,
                image_url=job.image_url,
                duration=job.duration,
                created_at=job.created_at,
            )
            for job in jobs
        ],
    )


@router.get("/{workspace_id}", response_model=WorkspaceItem)
def get_workspace(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceItem:
    workspace = workspace_service.get_accessible_workspace(
        session,
        workspace_id=workspace_id,
        user_id=auth.user_id,
    )
    workspace_service.touch_collaborator_access(session, workspace, auth.user_id)
    return _workspace_item(workspace, auth.user_id)


@router.patch("/{workspace_id}", response_model=WorkspaceItem)
def update_workspace(
    workspace_id: str,
    payload: WorkspaceUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceItem:
    workspace = workspace_service.update_workspace(
        session,
        workspace_id=workspace_id,
        user_id=auth.user_id,
        name=payload.name,
        description=payload.description,
        color=payload.color,
        icon=payload.icon,
        is_default=payload.is_default,
    )
    return _workspace_item(workspace, auth.user_id)


@router.delete("/{workspace_id}", response_model=WorkspaceItem)
def trash_workspace(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceItem:
    workspace = workspace_service.trash_workspace(session, workspace_id=workspace_id, owner_id=auth.user_id)
    return _workspace_item(workspace, auth.user_id)


@router.post("/{workspace_id}/restore", response_model=WorkspaceItem)
def restore_workspace(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceItem:
    workspace = workspace_service.restore_workspace(session, workspace_id=workspace_id, owner_id=auth.user_id)
    return _workspace_item(workspace, auth.user_id)


@router.delete("/{workspace_id}/permanent", response_model=WorkspaceDeleteResponse)
def delete_workspace_permanently(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceDeleteResponse:
    deleted_jobs = workspace_service.permanent_delete_workspace(
        session,
        workspace_id=workspace_id,
        owner_id=auth.user_id,
    )
    return WorkspaceDeleteResponse(workspace_id=workspace_id, deleted_jobs=deleted_jobs)


@router.post("/{workspace_id}/default", response_model=WorkspaceItem)
def make_default(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceItem:
    workspace = workspace_service.set_default_workspace(session, owner_id=auth.user_id, workspace_id=workspace_id)
    return _workspace_item(workspace, auth.user_id)


@router.post("/{workspace_id}/share", response_model=WorkspaceShareResponse)
def share_workspace(
    workspace_id: str,
    payload: WorkspaceShareRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> WorkspaceShareResponse:
    workspace = workspace_service.share_workspace(
        session,
        workspace_id=workspace_id,
        owner_id=auth.user_id,
        is_public=payload.is_public,
        allow_comments=payload.allow_comments,
        allow_downloads=payload.allow_downloads,
        expires_in_days=payload.expires_in_days,
    )
    return WorkspaceShareResponse(
        workspace_id=workspace.id,
        share_token=workspace.share_token or "",
        share_url=_share_url(workspace.share_token or ""),
        is_public=workspace.share_is_public,
        allow_comments=workspace.share_allow_comments,
        allow_downloads=workspace.share_allow_downloads,
        expires_at=workspace.share_expires_at,
    )


@router.delete("/{workspace_id}/share", status_code=status.HTTP_204_NO_CONTENT)
def unshare_workspace(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> Response:
    workspace_service.unshare_workspace(session, workspace_id=workspace_id, owner_id=auth.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{workspace_id}/collaborators",
    response_model=CollaboratorItem,
    status_code=status.HTTP_201_CREATED,
)
def invite_collaborator(
    workspace_id: str,
    payload: CollaboratorInviteRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CollaboratorItem:
    collaborator = workspace_service.add_collaborator(
        session,
        workspace_id=workspace_id,
        actor_id=auth.user_id,
        identifier=payload.identifier,
        role=payload.role,
    )
    return _collaborator_item(collaborator)


@router.patch("/{workspace_id}/collaborators/{user_id}", response_model=CollaboratorItem)
def change_collaborator_role(
    workspace_id: str,
    user_id: str,
    payload: CollaboratorRoleUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CollaboratorItem:
    collaborator = workspace_service.update_collaborator_role(
        session,
        workspace_id=workspace_id,
        actor_id=auth.user_id,
        collaborator_user_id=user_id,
        role=payload.role,
    )
    return _collaborator_item(collaborator)


@router.delete("/{workspace_id}/collaborators/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_collaborator(
    workspace_id: str,
    user_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> Response:
    workspace_service.remove_collaborator(
        session,
        workspace_id=workspace_id,
        actor_id=auth.user_id,
        collaborator_user_id=user_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{workspace_id}/jobs", response_model=list[JobItem])
def workspace_jobs(
    workspace_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> list[JobItem]:
    workspace = workspace_service.get_accessible_workspace(
        session,
        workspace_id=workspace_id,
        user_id=auth.user_id,
    )
    return [job_item(job) for job in workspace_service.list_workspace_jobs(session, workspace.id, limit=limit)]
