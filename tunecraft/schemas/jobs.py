"""Pydantic schemas for job queries and updates."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobItem(BaseModel):
    id: str
    kind: str
    owner_id: str
    workspace_id: Optional[str]
    title: str
    prompt: Optional[str]
    style_tags: str
    model_version: Optional[str]
    is_instrumental: bool
    provider_task_id: Optional[str]
    status: str
    progress: int
    credits_reserved: int
    audio_url: Optional[str]
    remote_audio_url: Optional[str]
    video_url: Optional[str]
    image_url: Optional[str]
    lyrics_text: Optional[str]
    duration: float
    file_size: int
    error_message: Optional[str]
    error_code: Optional[str]
    retry_count: int
    parent_job_id: Optional[str]
    version: int
    is_favorite: bool
    notes: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    items: List[JobItem]
    total: int
    page: int
    limit: int
    pages: int


class JobUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    is_favorite: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class JobLogItem(BaseModel):
    sequence: int
    level: str
    message: str
    details: Dict[str, Any]
    created_at: datetime


class JobLogListResponse(BaseModel):
    job_id: str
    items: List[JobLogItem]


class JobStatsResponse(BaseModel):
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    active_jobs: int
    total_duration: float
    credits_used: int
    favorites: int
    credit_balance: int


class JobRefreshResponse(BaseModel):
    job: JobItem
    outcome: Optional[str] = None
