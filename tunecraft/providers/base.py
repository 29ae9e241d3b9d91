"""Provider contracts and vocabulary normalization for generation backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from tunecraft.jobs.states import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
)


DEFAULT_PROVIDER_MODEL = "V3_5"
UNKNOWN_ERROR_MESSAGE = "unknown error"

_MODEL_VERSION_MAP = {
    "v3": "V3",
    "v3_5": "V3_5",
    "v3.5": "V3_5",
    "v4": "V4",
    "v4_5": "V4_5",
    "v4.5": "V4_5",
    "chirp-v3": "V3",
    "chirp-v3-5": "V3_5",
    "chirp-v4": "V4",
}

_SUCCESS_STATUSES = {"SUCCESS", "COMPLETED", "COMPLETE"}
_PENDING_STATUSES = {"PENDING", "QUEUED", "SUBMITTED"}
_PARTIAL_STATUSES = {"TEXT_SUCCESS", "FIRST_SUCCESS", "PROCESSING", "RUNNING", "GENERATING", "STREAMING"}


def normalize_model_version(version: Optional[str]) -> str:
    """Map user-facing model names onto provider model identifiers; unknown falls back to V3_5."""

    key = str(version or "").strip().lower()
    return _MODEL_VERSION_MAP.get(key, DEFAULT_PROVIDER_MODEL)


def normalize_provider_status(raw_status: Optional[str]) -> str:
    status = str(raw_status or "").strip().upper()
    if not status:
        return JOB_STATUS_PROCESSING
    if status in _SUCCESS_STATUSES:
        return JOB_STATUS_COMPLETED
    if "FAIL" in status or "ERROR" in status:
        return JOB_STATUS_FAILED
    if status in _PENDING_STATUSES:
        return JOB_STATUS_PENDING
    if status in _PARTIAL_STATUSES:
        return JOB_STATUS_PROCESSING
    return JOB_STATUS_PROCESSING


def _first_text(entry: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return max(float(value), 0.0)
    if isinstance(value, str):
        try:
            return max(float(value.strip()), 0.0)
        except ValueError:
            return 0.0
    return 0.0


@dataclass(frozen=True)
class ProviderAsset:
    provider_id: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    image_url: Optional[str] = None
    title: Optional[str] = None
    tags: Optional[str] = None
    lyrics: Optional[str] = None
    duration: float = 0.0

    @classmethod
    def from_payload(cls, entry: Mapping[str, Any]) -> "ProviderAsset":
        return cls(
            provider_id=_first_text(entry, "id", "audioId", "audio_id"),
            audio_url=_first_text(
                entry,
                "audio_url",
                "audioUrl",
                "source_audio_url",
                "sourceAudioUrl",
                "stream_audio_url",
                "streamAudioUrl",
            ),
            video_url=_first_text(entry, "video_url", "videoUrl"),
            image_url=_first_text(entry, "image_url", "imageUrl", "source_image_url", "sourceImageUrl"),
            title=_first_text(entry, "title"),
            tags=_first_text(entry, "tags", "style"),
            lyrics=_first_text(entry, "lyrics", "text", "prompt"),
            duration=_as_float(entry.get("duration")),
        )

    @property
    def has_media(self) -> bool:
        return bool(self.audio_url or self.video_url or self.lyrics)


@dataclass(frozen=True)
class ProviderSubmission:
    provider_task_id: str
    initial_status: str = JOB_STATUS_PENDING


@dataclass(frozen=True)
class ProviderStatusReport:
    task_id: str
    status: str
    assets: Tuple[ProviderAsset, ...] = ()
    error_message: Optional[str] = None
    progress: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class GenerationProvider(Protocol):
    provider_name: str

    def submit(self, kind: str, params: Mapping[str, Any]) -> ProviderSubmission:
        raise NotImplementedError

    def get_status(self, kind: str, task_id: str) -> ProviderStatusReport:
        raise NotImplementedError

    def get_credits(self) -> int:
        raise NotImplementedError
