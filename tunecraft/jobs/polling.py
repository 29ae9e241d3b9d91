"""Manual status refresh that converges with webhook delivery on ``JobStore.apply_callback``."""

from __future__ import annotations

from tunecraft.core.errors import ValidationError
from tunecraft.core.logger import get_logger
from tunecraft.jobs.states import TERMINAL_JOB_STATUSES
from tunecraft.jobs.store import ApplyResult, CallbackOutcome, JobStore
from tunecraft.providers.base import GenerationProvider, ProviderStatusReport
from tunecraft.storage.models import Job


logger = get_logger("tunecraft.jobs.polling")


def outcome_from_report(report: ProviderStatusReport) -> CallbackOutcome:
    return CallbackOutcome(
        task_id=report.task_id,
        status=report.status,
        assets=report.assets,
        error_message=report.error_message,
        error_code="provider_failed" if report.error_message else None,
        progress=report.progress,
        raw=report.raw,
    )


class JobReconciliationService:
    def __init__(self, store: JobStore, provider: GenerationProvider) -> None:
        self.store = store
        self.provider = provider

    def refresh(self, job: Job) -> tuple[Job, ApplyResult | None]:
        """Poll the provider for a job and feed the result through the shared transition path.

        Terminal jobs are returned untouched; ``ProviderError`` from the poll propagates.
        """

        if job.status in TERMINAL_JOB_STATUSES:
            return job, None
        if not job.provider_task_id:
            raise ValidationError("Job has not been submitted to the provider yet", details={"job_id": job.id})

        report = self.provider.get_status(job.kind, job.provider_task_id)
        result = self.store.apply_callback(job.provider_task_id, outcome_from_report(report))
        logger.info(
            "job_refreshed",
            job_id=job.id,
            provider_task_id=job.provider_task_id,
            provider_status=report.status,
            outcome=result.outcome,
        )
        refreshed = self.store.get_by_task_id(job.provider_task_id, refresh=True) or job
        return refreshed, result
