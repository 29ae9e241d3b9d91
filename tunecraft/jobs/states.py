"""Canonical job kinds and statuses."""

from __future__ import annotations

from typing import Tuple


JOB_STATUS_PENDING = "pending"
JOB_STATUS_GENERATING = "generating"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"

TERMINAL_JOB_STATUSES: Tuple[str, ...] = (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
)
ACTIVE_JOB_STATUSES: Tuple[str, ...] = (
    JOB_STATUS_PENDING,
    JOB_STATUS_GENERATING,
    JOB_STATUS_PROCESSING,
)
ALL_JOB_STATUSES: Tuple[str, ...] = ACTIVE_JOB_STATUSES + TERMINAL_JOB_STATUSES

KIND_GENERATE = "generate"
KIND_EXTEND = "extend"
KIND_COVER = "cover"
KIND_LYRICS = "lyrics"
KIND_TIMESTAMPED_LYRICS = "timestamped-lyrics"
KIND_WAV = "wav"
KIND_SEPARATE = "separate"
KIND_BOOST = "boost"
KIND_INSTRUMENTAL = "instrumental"
KIND_VOCALS = "vocals"
KIND_VIDEO = "video"

JOB_KINDS: Tuple[str, ...] = (
    KIND_GENERATE,
    KIND_EXTEND,
    KIND_COVER,
    KIND_LYRICS,
    KIND_TIMESTAMPED_LYRICS,
    KIND_WAV,
    KIND_SEPARATE,
    KIND_BOOST,
    KIND_INSTRUMENTAL,
    KIND_VOCALS,
    KIND_VIDEO,
)

LOG_LEVELS: Tuple[str, ...] = ("info", "warning", "error")

MAX_JOB_LOG_ENTRIES = 50
MAX_JOB_RETRIES = 5


def canonicalize_kind(kind: str | None) -> str:
    normalized = str(kind or "").strip().lower().replace("_", "-")
    if normalized not in JOB_KINDS:
        raise ValueError(f"Unsupported job kind: {kind}")
    return normalized
