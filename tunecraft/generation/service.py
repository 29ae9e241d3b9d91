"""Generation orchestration: validate, price, reserve, submit and track."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Dict, Mapping, Optional, Tuple
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tunecraft.core.errors import NotFoundError, ProviderError, ValidationError
from tunecraft.core.logger import get_logger
from tunecraft.core.metrics import record_job_submitted
from tunecraft.generation.pricing import credit_cost
from tunecraft.jobs.states import (
    KIND_BOOST,
    KIND_COVER,
    KIND_EXTEND,
    KIND_GENERATE,
    KIND_INSTRUMENTAL,
    KIND_LYRICS,
    KIND_SEPARATE,
    KIND_TIMESTAMPED_LYRICS,
    KIND_VIDEO,
    KIND_VOCALS,
    KIND_WAV,
    canonicalize_kind,
)
from tunecraft.jobs.store import JobStore
from tunecraft.ledger.service import Ledger
from tunecraft.providers.base import GenerationProvider
from tunecraft.storage.models import Job, User, Workspace
from tunecraft.workspaces import service as workspace_service


logger = get_logger("tunecraft.generation")

# Each inner tuple is an "any of" group; every group must be satisfied.
REQUIRED_FIELDS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    KIND_GENERATE: (("prompt",),),
    KIND_EXTEND: (("audio_id",),),
    KIND_COVER: (("audio_url",),),
    KIND_LYRICS: (("prompt",),),
    KIND_TIMESTAMPED_LYRICS: (("audio_id", "audio_url"),),
    KIND_WAV: (("audio_id", "audio_url"),),
    KIND_SEPARATE: (("audio_id", "audio_url"),),
    KIND_BOOST: (("audio_url",), ("prompt",)),
    KIND_INSTRUMENTAL: (("audio_url",), ("prompt",)),
    KIND_VOCALS: (("audio_url",), ("prompt",)),
    KIND_VIDEO: (("audio_id", "audio_url"),),
}

MAX_PROMPT_LENGTH = 3000

DERIVATIVE_KINDS = frozenset({KIND_EXTEND, KIND_COVER})


@dataclass(frozen=True)
class GenerationResult:
    job_id: str
    provider_task_id: str
    status: str
    credits_used: int
    workspace_id: Optional[str]


def _clean_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        cleaned[key] = value
    return cleaned


def validate_params(kind: str, params: Mapping[str, Any]) -> None:
    missing = [
        " or ".join(group)
        for group in REQUIRED_FIELDS[kind]
        if not any(params.get(field) not in (None, "") for field in group)
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields for {kind}: {', '.join(missing)}",
            details={"kind": kind, "missing": missing},
        )
    prompt = params.get("prompt")
    if isinstance(prompt, str) and len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt cannot exceed {MAX_PROMPT_LENGTH} characters",
            details={"kind": kind, "length": len(prompt)},
        )


class GenerationOrchestrator:
    """Runs one generation request end to end without waiting for provider completion."""

    def __init__(
        self,
        session: Session,
        *,
        provider: GenerationProvider,
        store: JobStore,
        ledger: Optional[Ledger] = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.store = store
        self.ledger = ledger or store.ledger

    def _require_active_user(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    def resolve_workspace(self, user_id: str, workspace_id: Optional[str]) -> Workspace:
        if workspace_id:
            return workspace_service.get_accessible_workspace(
                self.session,
                workspace_id=workspace_id,
                user_id=user_id,
                capability=workspace_service.CAP_CREATE_JOBS,
            )
        return workspace_service.ensure_default_workspace(self.session, user_id)

    def resolve_source_job(
        self,
        user_id: str,
        source_job_id: Optional[str],
        audio_id: Optional[str],
    ) -> Optional[Job]:
        """Find the job an extend or cover derives from.

        An explicit ``parent_job_id`` must be accessible to the caller. Otherwise
        ``audio_id`` links to a parent only when it names one of the caller's jobs;
        a bare provider clip id leaves the new job without a parent.
        """

        if source_job_id:
            return self.store.get_for_user(str(source_job_id), user_id)
        if audio_id:
            return self.store.find_source_job(str(audio_id), user_id)
        return None

    def submit(
        self,
        *,
        user_id: str,
        kind: str,
        params: Mapping[str, Any],
        workspace_id: Optional[str] = None,
        parent_job_id: Optional[str] = None,
        version: int = 1,
        retry_count: int = 0,
    ) -> GenerationResult:
        try:
            kind = canonicalize_kind(kind)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"kind": kind}) from exc

        cleaned = _clean_params(params)
        source_job_id = cleaned.pop("parent_job_id", None)
        validate_params(kind, cleaned)
        self._require_active_user(user_id)
        if kind in DERIVATIVE_KINDS and parent_job_id is None:
            source = self.resolve_source_job(user_id, source_job_id, cleaned.get("audio_id"))
            if source is not None:
                parent_job_id, version = source.id, source.version + 1
        workspace = self.resolve_workspace(user_id, workspace_id)
        cost = credit_cost(kind, model_version=cleaned.get("model_version"))

        job_id = str(uuid.uuid4())
        self.ledger.reserve(user_id, cost, job_id, job_id=job_id)

        try:
            job = self.store.create(
                job_id=job_id,
                owner_id=user_id,
                kind=kind,
                credits_reserved=cost,
                workspace_id=workspace.id,
                title=cleaned.get("title"),
                prompt=cleaned.get("prompt"),
                style_tags=cleaned.get("style"),
                model_version=cleaned.get("model_version"),
                is_instrumental=bool(cleaned.get("instrumental", False)),
                source_audio_url=cleaned.get("audio_url"),
                source_audio_id=cleaned.get("audio_id"),
                params=cleaned,
                parent_job_id=parent_job_id,
                version=version,
                retry_count=retry_count,
            )
        except SQLAlchemyError:
            self.session.rollback()
            self.ledger.refund(user_id, cost, job_id, job_id=job_id, reason="job_create_failed")
            raise

        try:
            submission = self.provider.submit(kind, cleaned)
        except ProviderError as exc:
            logger.warning(
                "generation_submit_failed",
                job_id=job.id,
                kind=kind,
                error=exc.message,
                http_status=exc.http_status,
            )
            self.store.mark_submit_failed(job, error_message=exc.message)
            raise

        self.store.attach_provider_task(job, submission.provider_task_id, status=submission.initial_status)
        workspace_service.add_job(self.session, workspace, job)
        record_job_submitted(kind=kind)

        logger.info(
            "generation_submitted",
            job_id=job.id,
            kind=kind,
            provider_task_id=submission.provider_task_id,
            credits=cost,
            workspace_id=workspace.id,
        )
        return GenerationResult(
            job_id=job.id,
            provider_task_id=submission.provider_task_id,
            status=job.status,
            credits_used=cost,
            workspace_id=workspace.id,
        )

    def retry(self, *, job_id: str, user_id: str) -> GenerationResult:
        """Resubmit a failed job as a new child job with its own reservation."""

        parent: Job = self.store.prepare_retry(job_id, user_id)
        try:
            params = json.loads(parent.params_json or "{}")
        except ValueError:
            params = {}
        if not isinstance(params, dict):
            params = {}

        workspace_id = parent.workspace_id
        if workspace_id and self.session.get(Workspace, workspace_id) is None:
            workspace_id = None

        return self.submit(
            user_id=user_id,
            kind=parent.kind,
            params=params,
            workspace_id=workspace_id,
            parent_job_id=parent.id,
            version=parent.version + 1,
            retry_count=parent.retry_count + 1,
        )
