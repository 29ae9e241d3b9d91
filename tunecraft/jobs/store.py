"""Job persistence and the single state-transition path for provider outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import math
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.orm import Session

from tunecraft.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from tunecraft.core.logger import get_logger
from tunecraft.core.metrics import record_asset_download_failure, record_job_finished
from tunecraft.jobs.assets import AssetDownloadError, AssetFetcher
from tunecraft.jobs.states import (
    ACTIVE_JOB_STATUSES,
    ALL_JOB_STATUSES,
    JOB_KINDS,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_GENERATING,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    KIND_LYRICS,
    KIND_TIMESTAMPED_LYRICS,
    KIND_VIDEO,
    LOG_LEVELS,
    MAX_JOB_LOG_ENTRIES,
    MAX_JOB_RETRIES,
    TERMINAL_JOB_STATUSES,
)
from tunecraft.ledger.service import CreditReceipt, Ledger
from tunecraft.providers.base import UNKNOWN_ERROR_MESSAGE, ProviderAsset
from tunecraft.storage.models import Job, JobLog, Workspace
from tunecraft.workspaces import service as workspace_service


logger = get_logger("tunecraft.jobs")

APPLY_COMPLETED = "completed"
APPLY_FAILED = "failed"
APPLY_PROGRESS = "progress"
APPLY_UNKNOWN_TASK = "unknown_task"
APPLY_ALREADY_TERMINAL = "already_terminal"

_TEXT_ONLY_KINDS = {KIND_LYRICS, KIND_TIMESTAMPED_LYRICS}


@dataclass(frozen=True)
class CallbackOutcome:
    """Canonical provider outcome for one task, from a webhook entry or a status poll."""

    task_id: str
    status: str
    assets: Tuple[ProviderAsset, ...] = ()
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    progress: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass(frozen=True)
class ApplyResult:
    outcome: str
    task_id: str
    job_id: Optional[str] = None
    status: Optional[str] = None
    refunded: bool = False
    asset_cached: bool = False

    @property
    def applied(self) -> bool:
        return self.outcome in {APPLY_COMPLETED, APPLY_FAILED, APPLY_PROGRESS}


@dataclass(frozen=True)
class JobPage:
    items: List[Job]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return int(math.ceil(self.total / self.limit))


@dataclass(frozen=True)
class JobFilters:
    status: Optional[str] = None
    kind: Optional[str] = None
    workspace_id: Optional[str] = None
    is_favorite: Optional[bool] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class OwnerJobStats:
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    active_jobs: int
    total_duration: float
    credits_used: int
    favorites: int


def _json_dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    if len(cleaned) > limit:
        return cleaned[: limit - 3] + "..."
    return cleaned


def _asset_payload(asset: ProviderAsset) -> Dict[str, Any]:
    return {
        "id": asset.provider_id,
        "audio_url": asset.audio_url,
        "video_url": asset.video_url,
        "image_url": asset.image_url,
        "title": asset.title,
        "tags": asset.tags,
        "duration": asset.duration,
    }


class JobStore:
    """Job lifecycle for one database session.

    ``apply_callback`` is the only path into ``completed`` or ``failed``; it is keyed
    on the provider task id and guarded by a conditional update on non-terminal status.
    """

    def __init__(
        self,
        session: Session,
        *,
        ledger: Optional[Ledger] = None,
        asset_fetcher: Optional[AssetFetcher] = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or Ledger(session)
        self.asset_fetcher = asset_fetcher

    def create(
        self,
        *,
        owner_id: str,
        kind: str,
        credits_reserved: int,
        workspace_id: Optional[str] = None,
        job_id: Optional[str] = None,
        title: Optional[str] = None,
        prompt: Optional[str] = None,
        style_tags: Optional[str] = None,
        model_version: Optional[str] = None,
        is_instrumental: bool = False,
        source_audio_url: Optional[str] = None,
        source_audio_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        parent_job_id: Optional[str] = None,
        version: int = 1,
        retry_count: int = 0,
    ) -> Job:
        if kind not in JOB_KINDS:
            raise ValidationError("Unsupported job kind", details={"kind": kind})

        job = Job(
            id=job_id or str(uuid.uuid4()),
            kind=kind,
            owner_id=owner_id,
            workspace_id=workspace_id,
            title=_clip(title, 200) or "Untitled",
            prompt=prompt,
            style_tags=_clip(style_tags, 500) or "",
            model_version=model_version,
            is_instrumental=is_instrumental,
            source_audio_url=source_audio_url,
            source_audio_id=source_audio_id,
            params_json=_json_dumps(params or {}),
            status=JOB_STATUS_PENDING,
            progress=0,
            credits_reserved=credits_reserved,
            parent_job_id=parent_job_id,
            version=version,
            retry_count=retry_count,
        )
        self.session.add(job)
        self.session.flush()
        self.append_log(job.id, "info", "Job created", {"kind": kind, "credits_reserved": credits_reserved})
        self.session.commit()
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self.session.get(Job, job_id)

    def get_by_task_id(self, task_id: str, *, refresh: bool = False) -> Optional[Job]:
        statement = select(Job).where(Job.provider_task_id == task_id)
        if refresh:
            statement = statement.execution_options(populate_existing=True)
        return self.session.scalar(statement)

    def _reload(self, job_id: str) -> Job:
        job = self.session.scalar(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )
        if job is None:  # pragma: no cover
            raise NotFoundError("Job not found", details={"job_id": job_id})
        return job

    def attach_provider_task(self, job: Job, task_id: str, *, status: str = JOB_STATUS_GENERATING) -> Job:
        if job.status in TERMINAL_JOB_STATUSES:
            raise ValidationError("Cannot attach a provider task to a finished job", details={"job_id": job.id})
        job.provider_task_id = task_id
        job.status = JOB_STATUS_PROCESSING if status == JOB_STATUS_PROCESSING else JOB_STATUS_GENERATING
        job.progress = max(job.progress or 0, 10)
        job.updated_at = _now_utc()
        self.append_log(job.id, "info", "Submitted to provider", {"provider_task_id": task_id})
        self.session.commit()
        return job

    def mark_submit_failed(self, job: Job, *, error_message: str, error_code: str = "provider_submit_failed") -> Job:
        """Fail a job whose submission never reached the provider and refund its reservation."""

        result = self.session.execute(
            update(Job)
            .where(Job.id == job.id, Job.status.not_in(TERMINAL_JOB_STATUSES))
            .values(
                status=JOB_STATUS_FAILED,
                error_message=_clip(error_message, 500),
                error_code=error_code,
                updated_at=_now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            return self._reload(job.id)

        self.append_log(job.id, "error", "Provider submission failed", {"error": _clip(error_message, 240)})
        self._commit_with_refund(job, reason=error_code)
        record_job_finished(kind=job.kind, status=JOB_STATUS_FAILED)
        job = self._reload(job.id)
        self._recompute_workspace(job)
        return job

    def apply_callback(self, task_id: str, outcome: CallbackOutcome) -> ApplyResult:
        if outcome.status == JOB_STATUS_COMPLETED:
            return self._apply_success(task_id, outcome)
        if outcome.status == JOB_STATUS_FAILED:
            return self._apply_failure(task_id, outcome)
        return self._apply_progress(task_id, outcome)

    def _skip(self, task_id: str, outcome: CallbackOutcome) -> ApplyResult:
        self.session.rollback()
        job = self.get_by_task_id(task_id, refresh=True)
        if job is None:
            logger.warning("job_callback_unknown_task", provider_task_id=task_id, status=outcome.status)
            return ApplyResult(outcome=APPLY_UNKNOWN_TASK, task_id=task_id)
        logger.info(
            "job_callback_ignored",
            provider_task_id=task_id,
            job_id=job.id,
            job_status=job.status,
            outcome_status=outcome.status,
        )
        return ApplyResult(outcome=APPLY_ALREADY_TERMINAL, task_id=task_id, job_id=job.id, status=job.status)

    def _commit_with_refund(self, job: Job, *, reason: str) -> Optional[CreditReceipt]:
        """Commit the pending ``failed`` transition together with its refund.

        On any error both are rolled back, the job stays non-terminal and the next
        delivery or poll for the task retries the whole transition.
        """

        try:
            receipt = self.ledger.refund(
                job.owner_id,
                job.credits_reserved,
                job.id,
                job_id=job.id,
                reason=reason,
                commit=False,
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return receipt

    def _apply_success(self, task_id: str, outcome: CallbackOutcome) -> ApplyResult:
        primary = outcome.assets[0] if outcome.assets else ProviderAsset()
        now = _now_utc()
        values: Dict[str, Any] = {
            "status": JOB_STATUS_COMPLETED,
            "progress": 100,
            "completed_at": now,
            "updated_at": now,
            "error_message": None,
            "error_code": None,
            "audio_url": primary.audio_url,
            "remote_audio_url": primary.audio_url,
            "video_url": primary.video_url,
            "image_url": primary.image_url,
            "duration": primary.duration,
            "result_json": _json_dumps({"assets": [_asset_payload(asset) for asset in outcome.assets]}),
        }
        if primary.lyrics:
            values["lyrics_text"] = primary.lyrics
        if primary.title:
            values["title"] = case((Job.title == "Untitled", _clip(primary.title, 200)), else_=Job.title)

        result = self.session.execute(
            update(Job)
            .where(Job.provider_task_id == task_id, Job.status.not_in(TERMINAL_JOB_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return self._skip(task_id, outcome)
        self.session.commit()

        job = self.get_by_task_id(task_id, refresh=True)
        if job is None:  # pragma: no cover
            return ApplyResult(outcome=APPLY_UNKNOWN_TASK, task_id=task_id)

        self.append_log(job.id, "info", "Generation completed", {"assets": len(outcome.assets)})
        self.session.commit()
        asset_cached = self._cache_asset(job)
        self.ledger.capture(job.owner_id, job.credits_reserved, job.id, job_id=job.id)
        record_job_finished(kind=job.kind, status=JOB_STATUS_COMPLETED)
        self._recompute_workspace(job)

        logger.info(
            "job_completed",
            job_id=job.id,
            provider_task_id=task_id,
            kind=job.kind,
            asset_cached=asset_cached,
        )
        return ApplyResult(
            outcome=APPLY_COMPLETED,
            task_id=task_id,
            job_id=job.id,
            status=JOB_STATUS_COMPLETED,
            asset_cached=asset_cached,
        )

    def _cache_asset(self, job: Job) -> bool:
        if self.asset_fetcher is None or job.kind in _TEXT_ONLY_KINDS:
            return False
        if job.kind == KIND_VIDEO:
            remote_url, extension = job.video_url, ".mp4"
        else:
            remote_url, extension = job.remote_audio_url, ".mp3"
        if not remote_url:
            return False

        try:
            stored = self.asset_fetcher.fetch(job_id=job.id, remote_url=remote_url, default_extension=extension)
        except AssetDownloadError as exc:
            record_asset_download_failure(kind=job.kind)
            logger.warning("job_asset_download_failed", job_id=job.id, remote_url=remote_url, error=str(exc))
            self.append_log(
                job.id,
                "warning",
                "Asset download failed, keeping remote URL",
                {"remote_url": remote_url, "error": _clip(str(exc), 240)},
            )
            self.session.commit()
            return False

        if job.kind == KIND_VIDEO:
            job.video_url = stored.public_url
        else:
            job.audio_url = stored.public_url
        job.local_audio_path = stored.local_path
        job.file_size = stored.size_bytes
        job.updated_at = _now_utc()
        self.append_log(job.id, "info", "Asset cached locally", {"file": stored.filename, "size": stored.size_bytes})
        self.session.commit()
        return True

    def _apply_failure(self, task_id: str, outcome: CallbackOutcome) -> ApplyResult:
        error_message = _clip(outcome.error_message, 500) or UNKNOWN_ERROR_MESSAGE
        result = self.session.execute(
            update(Job)
            .where(Job.provider_task_id == task_id, Job.status.not_in(TERMINAL_JOB_STATUSES))
            .values(
                status=JOB_STATUS_FAILED,
                error_message=error_message,
                error_code=_clip(outcome.error_code, 50) or "provider_failed",
                updated_at=_now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return self._skip(task_id, outcome)

        job = self.get_by_task_id(task_id, refresh=True)
        if job is None:  # pragma: no cover
            self.session.rollback()
            return ApplyResult(outcome=APPLY_UNKNOWN_TASK, task_id=task_id)

        self.append_log(job.id, "error", "Generation failed", {"error": error_message})
        receipt = self._commit_with_refund(job, reason="generation_failed")
        record_job_finished(kind=job.kind, status=JOB_STATUS_FAILED)
        self._recompute_workspace(job)

        logger.info(
            "job_failed",
            job_id=job.id,
            provider_task_id=task_id,
            error_message=error_message,
            refunded=receipt is not None,
        )
        return ApplyResult(
            outcome=APPLY_FAILED,
            task_id=task_id,
            job_id=job.id,
            status=JOB_STATUS_FAILED,
            refunded=receipt is not None,
        )

    def _apply_progress(self, task_id: str, outcome: CallbackOutcome) -> ApplyResult:
        values: Dict[str, Any] = {"updated_at": _now_utc()}
        if outcome.status != JOB_STATUS_PENDING:
            values["status"] = JOB_STATUS_PROCESSING
        if outcome.progress is not None:
            progress = max(0, min(int(outcome.progress), 99))
            values["progress"] = case((Job.progress < progress, progress), else_=Job.progress)

        result = self.session.execute(
            update(Job)
            .where(Job.provider_task_id == task_id, Job.status.not_in(TERMINAL_JOB_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return self._skip(task_id, outcome)
        self.session.commit()

        job = self.get_by_task_id(task_id, refresh=True)
        return ApplyResult(
            outcome=APPLY_PROGRESS,
            task_id=task_id,
            job_id=job.id if job else None,
            status=job.status if job else None,
        )

    def _recompute_workspace(self, job: Job) -> None:
        if not job.workspace_id:
            return
        if self.session.get(Workspace, job.workspace_id) is None:
            return
        workspace_service.recompute_stats(self.session, job.workspace_id)

    def append_log(
        self,
        job_id: str,
        level: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JobLog:
        """Add a log entry and evict the oldest entries beyond the per-job cap. Does not commit."""

        normalized_level = level if level in LOG_LEVELS else "info"
        last_sequence = self.session.scalar(
            select(func.max(JobLog.sequence)).where(JobLog.job_id == job_id)
        )
        sequence = int(last_sequence or 0) + 1
        entry = JobLog(
            id=str(uuid.uuid4()),
            job_id=job_id,
            sequence=sequence,
            level=normalized_level,
            message=_clip(message, 500) or "",
            details_json=_json_dumps(details or {}),
        )
        self.session.add(entry)
        self.session.flush()

        oldest_kept = sequence - MAX_JOB_LOG_ENTRIES + 1
        if oldest_kept > 1:
            self.session.execute(
                delete(JobLog)
                .where(JobLog.job_id == job_id, JobLog.sequence < oldest_kept)
                .execution_options(synchronize_session=False)
            )
        return entry

    def list_logs(self, job_id: str) -> List[JobLog]:
        statement = select(JobLog).where(JobLog.job_id == job_id).order_by(JobLog.sequence.asc())
        return list(self.session.scalars(statement).all())

    def _accessible_job(self, job_id: str, user_id: str, capability: Optional[str] = None) -> Job:
        job = self.session.get(Job, job_id)
        if job is None:
            raise NotFoundError("Job not found", details={"job_id": job_id})
        if job.owner_id == user_id:
            return job

        workspace = self.session.get(Workspace, job.workspace_id) if job.workspace_id else None
        if workspace is None or not workspace_service.can_access(workspace, user_id):
            raise NotFoundError("Job not found", details={"job_id": job_id})
        if capability is not None and not workspace_service.has_permission(workspace, user_id, capability):
            raise PermissionDeniedError(
                "You do not have permission to modify this job",
                details={"job_id": job_id, "capability": capability},
            )
        return job

    def get_for_user(self, job_id: str, user_id: str) -> Job:
        return self._accessible_job(job_id, user_id)

    def find_source_job(self, reference: str, user_id: str) -> Optional[Job]:
        """Match a job id or provider task id among jobs the user can see."""

        job = self.session.scalar(
            select(Job)
            .where(or_(Job.id == reference, Job.provider_task_id == reference))
            .order_by(Job.created_at.asc())
            .limit(1)
        )
        if job is None or job.owner_id == user_id:
            return job
        workspace = self.session.get(Workspace, job.workspace_id) if job.workspace_id else None
        if workspace is None or not workspace_service.can_access(workspace, user_id):
            return None
        return job

    def find_by_owner(
        self,
        owner_id: str,
        *,
        filters: Optional[JobFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        filters = filters or JobFilters()
        page = max(1, page)
        limit = max(1, min(limit, 100))

        conditions = [Job.owner_id == owner_id]
        if filters.status:
            if filters.status not in ALL_JOB_STATUSES:
                raise ValidationError("Unknown job status filter", details={"status": filters.status})
            conditions.append(Job.status == filters.status)
        if filters.kind:
            if filters.kind not in JOB_KINDS:
                raise ValidationError("Unknown job kind filter", details={"kind": filters.kind})
            conditions.append(Job.kind == filters.kind)
        if filters.workspace_id:
            conditions.append(Job.workspace_id == filters.workspace_id)
        if filters.is_favorite is not None:
            conditions.append(Job.is_favorite.is_(filters.is_favorite))
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(Job.title).like(pattern),
                    func.lower(Job.prompt).like(pattern),
                    func.lower(Job.style_tags).like(pattern),
                )
            )

        total = int(self.session.scalar(select(func.count(Job.id)).where(*conditions)) or 0)
        statement = (
            select(Job)
            .where(*conditions)
            .order_by(Job.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(self.session.scalars(statement).all())
        return JobPage(items=items, total=total, page=page, limit=limit)

    def update_metadata(
        self,
        job_id: str,
        user_id: str,
        *,
        title: Optional[str] = None,
        is_favorite: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> Job:
        job = self._accessible_job(job_id, user_id, capability=workspace_service.CAP_EDIT_JOBS)
        if title is not None:
            cleaned = _clip(title, 200)
            if not cleaned:
                raise ValidationError("Title cannot be empty")
            job.title = cleaned
        if is_favorite is not None:
            job.is_favorite = is_favorite
        if notes is not None:
            job.notes = _clip(notes, 1000)
        job.updated_at = _now_utc()
        self.session.commit()
        return job

    def delete_job(self, job_id: str, user_id: str) -> None:
        job = self._accessible_job(job_id, user_id, capability=workspace_service.CAP_DELETE_JOBS)
        workspace = self.session.get(Workspace, job.workspace_id) if job.workspace_id else None

        self.session.execute(delete(JobLog).where(JobLog.job_id == job.id))
        self.session.execute(
            update(Job)
            .where(Job.parent_job_id == job.id)
            .values(parent_job_id=None)
            .execution_options(synchronize_session=False)
        )
        if workspace is not None:
            workspace_service.remove_job(self.session, workspace, job, commit=False)
        self.session.delete(job)
        self.session.commit()
        logger.info("job_deleted", job_id=job_id, user_id=user_id)

    def prepare_retry(self, job_id: str, user_id: str) -> Job:
        """Validate that a failed job may be retried and return it."""

        job = self._accessible_job(job_id, user_id, capability=workspace_service.CAP_CREATE_JOBS)
        if job.status != JOB_STATUS_FAILED:
            raise ValidationError("Only failed jobs can be retried", details={"job_id": job.id, "status": job.status})
        if job.retry_count >= MAX_JOB_RETRIES:
            raise ValidationError(
                "Maximum retry attempts reached",
                details={"job_id": job.id, "max_retries": MAX_JOB_RETRIES},
            )
        # Each attempt is retried at most once, so the chain length bounds the total.
        existing_retry = self.session.scalar(
            select(Job.id).where(
                Job.parent_job_id == job.id,
                Job.retry_count == job.retry_count + 1,
            )
        )
        if existing_retry is not None:
            raise ValidationError(
                "Job has already been retried",
                details={"job_id": job.id, "retry_job_id": existing_retry},
            )
        return job

    def owner_stats(self, owner_id: str) -> OwnerJobStats:
        row = self.session.execute(
            select(
                func.count(Job.id),
                func.coalesce(func.sum(case((Job.status == JOB_STATUS_COMPLETED, 1), else_=0)), 0),
                func.coalesce(func.sum(case((Job.status == JOB_STATUS_FAILED, 1), else_=0)), 0),
                func.coalesce(func.sum(case((Job.status.in_(ACTIVE_JOB_STATUSES), 1), else_=0)), 0),
                func.coalesce(func.sum(case((Job.status == JOB_STATUS_COMPLETED, Job.duration), else_=0.0)), 0.0),
                func.coalesce(func.sum(case((Job.status != JOB_STATUS_FAILED, Job.credits_reserved), else_=0)), 0),
                func.coalesce(func.sum(case((Job.is_favorite.is_(True), 1), else_=0)), 0),
            ).where(Job.owner_id == owner_id)
        ).one()
        return OwnerJobStats(
            total_jobs=int(row[0] or 0),
            completed_jobs=int(row[1] or 0),
            failed_jobs=int(row[2] or 0),
            active_jobs=int(row[3] or 0),
            total_duration=float(row[4] or 0.0),
            credits_used=int(row[5] or 0),
            favorites=int(row[6] or 0),
        )
