"""Deterministic mock generation provider for local/dev usage."""

from __future__ import annotations

import hashlib
import itertools
import json
from typing import Any, Mapping, Optional

from tunecraft.core.errors import ProviderError
from tunecraft.jobs.states import JOB_STATUS_COMPLETED, KIND_LYRICS, KIND_VIDEO, canonicalize_kind
from tunecraft.providers.base import (
    GenerationProvider,
    ProviderAsset,
    ProviderStatusReport,
    ProviderSubmission,
)


class MockGenerationProvider(GenerationProvider):
    """Accepts every submission and reports every task as finished.

    ``fail_with`` makes ``submit`` raise, which lets callers exercise the
    refund-on-submit-failure path without a network.
    """

    provider_name = "mock"

    def __init__(
        self,
        *,
        credits: int = 10_000,
        fail_with: Optional[str] = None,
        asset_base_url: str = "https://cdn.mock.tunecraft.invalid",
    ) -> None:
        self._credits = credits
        self._fail_with = fail_with
        self._asset_base_url = asset_base_url.rstrip("/")
        self._sequence = itertools.count(1)
        self.submissions: list[tuple[str, dict[str, Any]]] = []

    def submit(self, kind: str, params: Mapping[str, Any]) -> ProviderSubmission:
        kind = canonicalize_kind(kind)
        if self._fail_with:
            raise ProviderError(self._fail_with, http_status=503)

        seed_source = f"{kind}:{json.dumps(dict(params), sort_keys=True, default=str)}".encode("utf-8")
        seed = hashlib.sha1(seed_source).hexdigest()[:12]
        task_id = f"mock-{kind}-{next(self._sequence):06d}-{seed}"
        self.submissions.append((kind, dict(params)))
        return ProviderSubmission(provider_task_id=task_id)

    def get_status(self, kind: str, task_id: str) -> ProviderStatusReport:
        kind = canonicalize_kind(kind)
        if kind == KIND_LYRICS:
            asset = ProviderAsset(provider_id=task_id, title="Mock lyrics", lyrics="[Verse]\nla la la")
        elif kind == KIND_VIDEO:
            asset = ProviderAsset(provider_id=task_id, video_url=f"{self._asset_base_url}/{task_id}.mp4", duration=30.0)
        else:
            asset = ProviderAsset(
                provider_id=task_id,
                audio_url=f"{self._asset_base_url}/{task_id}.mp3",
                image_url=f"{self._asset_base_url}/{task_id}.jpg",
                duration=120.0,
            )
        return ProviderStatusReport(
            task_id=task_id,
            status=JOB_STATUS_COMPLETED,
            assets=(asset,),
            raw={"taskId": task_id, "status": "SUCCESS"},
        )

    def get_credits(self) -> int:
        return self._credits
