"""Provider callback endpoint; always acknowledges receipt."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from tunecraft.core.logger import get_logger
from tunecraft.core.metrics import record_webhook_entry
from tunecraft.jobs.dependencies import get_job_store
from tunecraft.jobs.store import JobStore
from tunecraft.schemas.webhooks import ProviderWebhookResponse
from tunecraft.storage.db import get_session
from tunecraft.webhooks.reconciler import UnusablePayloadError, normalize_callback, reconcile


router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger("tunecraft.webhooks.router")

QUARANTINE_SNIPPET_LIMIT = 2000


def _quarantine(payload_bytes: bytes, reason: str) -> ProviderWebhookResponse:
    snippet = payload_bytes[:QUARANTINE_SNIPPET_LIMIT].decode("utf-8", errors="replace")
    record_webhook_entry(outcome="quarantined")
    logger.warning("webhook_payload_quarantined", reason=reason, size=len(payload_bytes), body=snippet)
    return ProviderWebhookResponse(
        success=True,
        message="Callback received",
        quarantined=True,
        reason=reason,
    )


@router.post("/provider", response_model=ProviderWebhookResponse)
async def provider_webhook(
    request: Request,
    session: Session = Depends(get_session),
    store: JobStore = Depends(get_job_store),
) -> ProviderWebhookResponse:
    payload_bytes = await request.body()
    try:
        body: Any = json.loads(payload_bytes.decode("utf-8")) if payload_bytes else None
    except (UnicodeDecodeError, json.JSONDecodeError):
        return _quarantine(payload_bytes, "invalid_json")

    try:
        normalized = normalize_callback(body)
    except UnusablePayloadError as exc:
        return _quarantine(payload_bytes, str(exc))

    report = await run_in_threadpool(reconcile, session, store, normalized)
    return ProviderWebhookResponse(
        success=True,
        message="Callback received and processed",
        shape=normalized.shape,
        **report.as_dict(),
    )
