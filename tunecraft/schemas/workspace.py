"""Pydantic schemas for workspace management API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class WorkspaceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")
    icon: Optional[str] = Field(default=None, max_length=50)
    is_default: bool = False


class WorkspaceUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")
    icon: Optional[str] = Field(default=None, max_length=50)
    is_default: Optional[bool] = None


class WorkspaceStatsItem(BaseModel):
    total_jobs: int
    completed_jobs: int
    total_duration: float
    credits_used: int
    last_activity_at: Optional[datetime]


class CollaboratorItem(BaseModel):
    user_id: str
    role: str
    can_create_jobs: bool
    can_edit_jobs: bool
    can_delete_jobs: bool
    can_manage_workspace: bool
    can_invite_users: bool
    invited_by_id: Optional[str]
    invited_at: datetime
    joined_at: Optional[datetime]


class WorkspaceItem(BaseModel):
    id: str
    owner_id: str
    name: str
    description: Optional[str]
    color: str
    icon: str
    is_default: bool
    is_trashed: bool
    trashed_at: Optional[datetime]
    is_shared: bool
    my_role: str
    stats: WorkspaceStatsItem
    collaborators: List[CollaboratorItem]
    created_at: datetime
    updated_at: datetime


class WorkspaceListResponse(BaseModel):
    items: List[WorkspaceItem]


class CollaboratorInviteRequest(BaseModel):
    identifier: str = Field(min_length=1, max_length=255)
    role: str = Field(default="viewer", pattern=r"^(viewer|editor|admin)$")


class CollaboratorRoleUpdateRequest(BaseModel):
    role: str = Field(pattern=r"^(viewer|editor|admin)$")


class WorkspaceShareRequest(BaseModel):
    is_public: bool = False
    allow_comments: bool = False
    allow_downloads: bool = False
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)


class WorkspaceShareResponse(BaseModel):
    workspace_id: str
    share_token: str
    share_url: str
    is_public: bool
    allow_comments: bool
    allow_downloads: bool
    expires_at: Optional[datetime]


class SharedJobItem(BaseModel):
    id: str
    title: str
    kind: str
    status: str
    audio_url: Optional[str]
    video_url: Optional[str]
    image_url: Optional[str]
    duration: float
    created_at: datetime


class SharedWorkspaceResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    color: str
    icon: str
    allow_comments: bool
    allow_downloads: bool
    stats: WorkspaceStatsItem
    jobs: List[SharedJobItem]


class WorkspaceDeleteResponse(BaseModel):
    success: bool = True
    workspace_id: str
    deleted_jobs: int
