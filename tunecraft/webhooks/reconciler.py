"""Normalize provider callback payloads and apply each outcome in isolation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from tunecraft.core.logger import get_logger
from tunecraft.core.metrics import record_webhook_entry
from tunecraft.core.observability import capture_exception
from tunecraft.jobs.states import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PROCESSING,
)
from tunecraft.jobs.store import APPLY_ALREADY_TERMINAL, APPLY_UNKNOWN_TASK, CallbackOutcome, JobStore
from tunecraft.providers.base import UNKNOWN_ERROR_MESSAGE, ProviderAsset, normalize_provider_status


logger = get_logger("tunecraft.webhooks")

SHAPE_OBJECT = "object"
SHAPE_LIST = "list"
SHAPE_NESTED_LIST = "nested_list"
SHAPE_NESTED_OBJECT = "nested_object"
SHAPE_ENVELOPE_ONLY = "envelope_only"

OUTCOME_ERROR = "error"
OUTCOME_REJECTED = "rejected"

_CALLBACK_TYPE_STATUS = {
    "complete": JOB_STATUS_COMPLETED,
    "error": JOB_STATUS_FAILED,
    "text": JOB_STATUS_PROCESSING,
    "first": JOB_STATUS_PROCESSING,
}
_CALLBACK_TYPE_PROGRESS = {
    "text": 50,
    "first": 75,
}
_ENVELOPE_KEYS = {"callbackType", "callback_type", "task_id", "taskId", "data"}


class UnusablePayloadError(ValueError):
    """Raised when a callback body matches none of the known payload shapes."""


def _stringify(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class CallbackEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: Optional[int] = None
    msg: Optional[str] = None
    data: Any = None

    @field_validator("code", mode="before")
    @classmethod
    def _coerce_code(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return value


class CallbackEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    task_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("task_id", "taskId"))
    status: Optional[str] = None
    error_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("error_message", "errorMessage", "error"),
    )
    error_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("error_code", "errorCode"))

    @field_validator("id", "task_id", "error_code", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        return _stringify(value)


@dataclass(frozen=True)
class RejectedEntry:
    index: int
    reason: str


@dataclass(frozen=True)
class NormalizedCallback:
    shape: str
    code: Optional[int]
    message: Optional[str]
    callback_type: Optional[str]
    envelope_task_id: Optional[str]
    outcomes: Tuple[CallbackOutcome, ...]
    rejected: Tuple[RejectedEntry, ...]

    @property
    def provider_failed(self) -> bool:
        return self.code is not None and self.code != 200


@dataclass(frozen=True)
class ReconcileReport:
    received: int
    applied: int
    ignored: int
    unknown: int
    errors: int
    rejected: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "received": self.received,
            "applied": self.applied,
            "ignored": self.ignored,
            "unknown": self.unknown,
            "errors": self.errors,
            "rejected": self.rejected,
        }


def _text(value: Any) -> Optional[str]:
    value = _stringify(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _looks_like_envelope(data: Mapping[str, Any]) -> bool:
    """A nested envelope carries an inner ``data`` plus callback metadata, not media fields."""

    return "data" in data and set(data.keys()) <= _ENVELOPE_KEYS | {"code", "msg"}


def _classify(data: Any) -> Tuple[str, List[Any], Optional[str], Optional[str]]:
    """Return (shape, raw entries, callback type, envelope task id) for a ``data`` value."""

    if isinstance(data, list):
        return SHAPE_LIST, list(data), None, None
    if not isinstance(data, Mapping):
        raise UnusablePayloadError("data_not_object_or_array")

    if _looks_like_envelope(data):
        callback_type = _text(data.get("callbackType") or data.get("callback_type"))
        envelope_task_id = _text(data.get("task_id") or data.get("taskId"))
        inner = data.get("data")
        if isinstance(inner, list):
            return SHAPE_NESTED_LIST, list(inner), callback_type, envelope_task_id
        if isinstance(inner, Mapping):
            return SHAPE_NESTED_OBJECT, [inner], callback_type, envelope_task_id
        if inner is None:
            return SHAPE_ENVELOPE_ONLY, [], callback_type, envelope_task_id
        raise UnusablePayloadError("nested_data_not_object_or_array")

    return SHAPE_OBJECT, [data], None, None


def _entry_status(
    entry: CallbackEntry,
    asset: ProviderAsset,
    *,
    callback_type: Optional[str],
) -> Tuple[str, Optional[int]]:
    if entry.status:
        status = normalize_provider_status(entry.status)
        return status, None
    normalized_type = (callback_type or "").strip().lower()
    if normalized_type in _CALLBACK_TYPE_STATUS:
        return _CALLBACK_TYPE_STATUS[normalized_type], _CALLBACK_TYPE_PROGRESS.get(normalized_type)
    if entry.error_message:
        return JOB_STATUS_FAILED, None
    if asset.has_media:
        return JOB_STATUS_COMPLETED, None
    return JOB_STATUS_PROCESSING, None


def normalize_callback(body: Any) -> NormalizedCallback:
    """Turn a raw callback body into per-task outcomes plus rejected entries.

    Raises ``UnusablePayloadError`` when nothing in the body can be attributed to a task.
    """

    if not isinstance(body, Mapping):
        raise UnusablePayloadError("body_not_object")
    try:
        envelope = CallbackEnvelope.model_validate(dict(body))
    except ValidationError as exc:
        raise UnusablePayloadError("envelope_invalid") from exc

    provider_failed = envelope.code is not None and envelope.code != 200
    if envelope.data is None:
        if not provider_failed:
            raise UnusablePayloadError("data_missing")
        shape, raw_entries, callback_type, envelope_task_id = SHAPE_ENVELOPE_ONLY, [], None, None
    else:
        shape, raw_entries, callback_type, envelope_task_id = _classify(envelope.data)

    if provider_failed:
        failure_message = _text(envelope.msg) or UNKNOWN_ERROR_MESSAGE
    else:
        failure_message = None

    merged: Dict[str, Dict[str, Any]] = {}
    rejected: List[RejectedEntry] = []
    for index, raw in enumerate(raw_entries):
        if not isinstance(raw, Mapping):
            rejected.append(RejectedEntry(index=index, reason="entry_not_object"))
            continue
        try:
            entry = CallbackEntry.model_validate(dict(raw))
        except ValidationError:
            rejected.append(RejectedEntry(index=index, reason="entry_invalid"))
            continue

        task_id = _text(entry.task_id) or envelope_task_id or _text(entry.id)
        if not task_id:
            rejected.append(RejectedEntry(index=index, reason="entry_missing_task_id"))
            continue

        asset = ProviderAsset.from_payload(raw)
        if provider_failed:
            status, progress = JOB_STATUS_FAILED, None
        else:
            status, progress = _entry_status(entry, asset, callback_type=callback_type)

        error_message = None
        if status == JOB_STATUS_FAILED:
            error_message = failure_message or _text(entry.error_message) or UNKNOWN_ERROR_MESSAGE

        bucket = merged.get(task_id)
        if bucket is None:
            merged[task_id] = {
                "status": status,
                "progress": progress,
                "assets": [asset] if asset.has_media else [],
                "error_message": error_message,
                "error_code": entry.error_code,
                "raw": [dict(raw)],
            }
            continue
        if asset.has_media:
            bucket["assets"].append(asset)
        bucket["raw"].append(dict(raw))
        if status == JOB_STATUS_FAILED and bucket["status"] != JOB_STATUS_FAILED:
            bucket["status"] = JOB_STATUS_FAILED
            bucket["error_message"] = error_message

    if not raw_entries and envelope_task_id:
        if provider_failed:
            merged[envelope_task_id] = {
                "status": JOB_STATUS_FAILED,
                "progress": None,
                "assets": [],
                "error_message": failure_message,
                "error_code": None,
                "raw": [],
            }
        else:
            status = _CALLBACK_TYPE_STATUS.get((callback_type or "").lower(), JOB_STATUS_PROCESSING)
            merged[envelope_task_id] = {
                "status": status,
                "progress": _CALLBACK_TYPE_PROGRESS.get((callback_type or "").lower()),
                "assets": [],
                "error_message": UNKNOWN_ERROR_MESSAGE if status == JOB_STATUS_FAILED else None,
                "error_code": None,
                "raw": [],
            }

    if not merged and not rejected:
        raise UnusablePayloadError("no_entries")

    outcomes = tuple(
        CallbackOutcome(
            task_id=task_id,
            status=bucket["status"],
            assets=tuple(bucket["assets"]),
            error_message=bucket["error_message"],
            error_code=bucket["error_code"] or ("provider_callback_error" if provider_failed else None),
            progress=bucket["progress"],
            raw={"entries": bucket["raw"], "callback_type": callback_type},
        )
        for task_id, bucket in merged.items()
    )
    return NormalizedCallback(
        shape=shape,
        code=envelope.code,
        message=envelope.msg,
        callback_type=callback_type,
        envelope_task_id=envelope_task_id,
        outcomes=outcomes,
        rejected=tuple(rejected),
    )


def reconcile(session: Session, store: JobStore, normalized: NormalizedCallback) -> ReconcileReport:
    """Apply each outcome with its own error boundary; one bad entry never aborts the batch."""

    applied = ignored = unknown = errors = 0
    for outcome in normalized.outcomes:
        try:
            result = store.apply_callback(outcome.task_id, outcome)
        except Exception as exc:
            session.rollback()
            errors += 1
            record_webhook_entry(outcome=OUTCOME_ERROR)
            capture_exception(exc)
            logger.error(
                "webhook_entry_failed",
                provider_task_id=outcome.task_id,
                status=outcome.status,
                error=str(exc),
            )
            continue

        record_webhook_entry(outcome=result.outcome)
        if result.outcome == APPLY_UNKNOWN_TASK:
            unknown += 1
        elif result.outcome == APPLY_ALREADY_TERMINAL:
            ignored += 1
        else:
            applied += 1

    for rejected in normalized.rejected:
        record_webhook_entry(outcome=OUTCOME_REJECTED)
        logger.warning("webhook_entry_rejected", index=rejected.index, reason=rejected.reason)

    report = ReconcileReport(
        received=len(normalized.outcomes) + len(normalized.rejected),
        applied=applied,
        ignored=ignored,
        unknown=unknown,
        errors=errors,
        rejected=len(normalized.rejected),
    )
    logger.info("webhook_reconciled", shape=normalized.shape, code=normalized.code, **report.as_dict())
    return report
