"""Job query and management routes."""

from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response

from tunecraft.auth.dependencies import require_auth_context
from tunecraft.auth.jwt import AuthContext
from tunecraft.generation.router import get_orchestrator
from tunecraft.generation.service import GenerationOrchestrator
from tunecraft.jobs.dependencies import get_job_store
from tunecraft.jobs.polling import JobReconciliationService
from tunecraft.jobs.store import JobFilters, JobStore
from tunecraft.providers import GenerationProvider, get_generation_provider
from tunecraft.schemas.generation import GenerationResponse
from tunecraft.schemas.jobs import (
    JobItem,
    JobListResponse,
    JobLogItem,
    JobLogListResponse,
    JobRefreshResponse,
    JobStatsResponse,
    JobUpdateRequest,
)
from tunecraft.storage.models import Job


router = APIRouter(prefix="/jobs", tags=["jobs"])


def job_item(job: Job) -> JobItem:
    return JobItem(
        id=job.id,
        kind=job.kind,
        owner_id=job.owner_id,
        workspace_id=job.workspace_id,
        title=job.title,
        prompt=job.prompt,
        style_tags=job.style_tags,
        model_version=job.model_version,
        is_instrumental=job.is_instrumental,
        provider_task_id=job.provider_task_id,
        status=job.status,
        progress=job.progress,
        credits_reserved=job.credits_reserved,
        audio_url=job.audio_url,
        remote_audio_url=job.remote_audio_url,
        video_url=job.video_url,
        image_url=job.image_url,
        lyrics_text=job.lyrics_text,
        duration=job.duration,
        file_size=job.file_size,
        error_message=job.error_message,
        error_code=job.error_code,
        retry_count=job.retry_count,
        parent_job_id=job.parent_job_id,
        version=job.version,
        is_favorite=job.is_favorite,
        notes=job.notes,
        completed_at=job.completed_at,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.get("", response_model=JobListResponse)
def list_jobs(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    kind: Optional[str] = Query(default=None),
    workspace_id: Optional[str] = Query(default=None),
    favorite: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
) -> JobListResponse:
    result = store.find_by_owner(
        auth.user_id,
        filters=JobFilters(
            status=status_filter,
            kind=kind,
            workspace_id=workspace_id,
            is_favorite=favorite,
            search=search,
        ),
        page=page,
        limit=limit,
    )
    return JobListResponse(
        items=[job_item(job) for job in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/stats", response_model=JobStatsResponse)
def job_stats(
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
) -> JobStatsResponse:
    stats = store.owner_stats(auth.user_id)
    return JobStatsResponse(
        total_jobs=stats.total_jobs,
        completed_jobs=stats.completed_jobs,
        failed_jobs=stats.failed_jobs,
        active_jobs=stats.active_jobs,
        total_duration=stats.total_duration,
        credits_used=stats.credits_used,
        favorites=stats.favorites,
        credit_balance=store.ledger.get_balance(auth.user_id),
    )


@router.get("/{job_id}", response_model=JobItem)
def get_job(
    job_id: str,
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
) -> JobItem:
    return job_item(store.get_for_user(job_id, auth.user_id))


@router.patch("/{job_id}", response_model=JobItem)
def update_job(
    job_id: str,
    payload: JobUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
) -> JobItem:
    job = store.update_metadata(
        job_id,
        auth.user_id,
        title=payload.title,
        is_favorite=payload.is_favorite,
        notes=payload.notes,
    )
    return job_item(job)


@router.post("/{job_id}/refresh", response_model=JobRefreshResponse)
def refresh_job(
    job_id: str,
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> JobRefreshResponse:
    job = store.get_for_user(job_id, auth.user_id)
    refreshed, result = JobReconciliationService(store, provider).refresh(job)
    return JobRefreshResponse(job=job_item(refreshed), outcome=result.outcome if result else None)


@router.post("/{job_id}/retry", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def retry_job(
    job_id: str,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    result = orchestrator.retry(job_id=job_id, user_id=auth.user_id)
    return GenerationResponse(
        job_id=result.job_id,
        provider_task_id=result.provider_task_id,
        status=result.status,
        credits_used=result.credits_used,
        workspace_id=result.workspace_id,
    )


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_job(
    job_id: str,
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
) -> Response:
    store.delete_job(job_id, auth.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{job_id}/logs", response_model=JobLogListResponse)
def job_logs(
    job_id: str,
    auth: AuthContext = Depends(require_auth_context),
    store: JobStore = Depends(get_job_store),
) -> JobLogListResponse:
    job = store.get_for_user(job_id, auth.user_id)
    return JobLogListResponse(
        job_id=job.id,
        items=[
            JobLogItem(
                sequence=entry.sequence,
                level=entry.level,
                message=entry.message,
                details=json.loads(entry.details_json or "{}"),
                created_at=entry.created_at,
            )
            for entry in store.list_logs(job.id)
        ],
    )
