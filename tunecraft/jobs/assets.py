"""Download finished provider assets and serve them from local storage."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from tunecraft.core.config import get_settings


class AssetDownloadError(RuntimeError):
    """Raised when a remote asset cannot be cached locally."""


@dataclass(frozen=True)
class StoredAsset:
    filename: str
    local_path: str
    public_url: str
    size_bytes: int
    sha256: str


_CONTENT_TYPE_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "video/mp4": ".mp4",
}
_KNOWN_EXTENSIONS = {".mp3", ".wav", ".mp4", ".m4a", ".flac"}


def asset_storage_root() -> Path:
    settings = get_settings()
    configured = Path(settings.asset_storage_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


def public_asset_url(filename: str) -> str:
    settings = get_settings()
    base = settings.app_public_base_url.strip().rstrip("/")
    return f"{base}/generated-music/{filename}"


def _resolve_extension(remote_url: str, content_type: Optional[str], default: str) -> str:
    normalized_type = (content_type or "").split(";", 1)[0].strip().lower()
    if normalized_type in _CONTENT_TYPE_EXTENSIONS:
        return _CONTENT_TYPE_EXTENSIONS[normalized_type]
    suffix = Path(urlparse(remote_url).path).suffix.lower()
    if suffix in _KNOWN_EXTENSIONS:
        return suffix
    return default


class AssetFetcher:
    """Fetches a remote asset into ``<asset_storage_path>/<job_id><ext>``."""

    def __init__(
        self,
        *,
        storage_root: Optional[Path] = None,
        timeout_seconds: Optional[int] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        settings = get_settings()
        self._storage_root = storage_root
        self._timeout_seconds = max(1, timeout_seconds or settings.asset_download_timeout_seconds)
        self._client = client

    @property
    def storage_root(self) -> Path:
        return self._storage_root or asset_storage_root()

    def _get(self, client: httpx.Client, url: str) -> httpx.Response:
        return client.get(url, timeout=self._timeout_seconds, follow_redirects=True)

    def fetch(self, *, job_id: str, remote_url: str, default_extension: str = ".mp3") -> StoredAsset:
        if not remote_url.strip():
            raise AssetDownloadError("asset_remote_url_missing")

        try:
            if self._client is not None:
                response = self._get(self._client, remote_url)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = self._get(client, remote_url)
        except httpx.HTTPError as exc:
            raise AssetDownloadError(f"asset_download_transport_error url={remote_url}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise AssetDownloadError(f"asset_download_failed status={response.status_code}")

        content = response.content
        if not content:
            raise AssetDownloadError("asset_download_empty_body")

        extension = _resolve_extension(remote_url, response.headers.get("content-type"), default_extension)
        filename = f"{job_id}{extension}"
        root = self.storage_root
        try:
            root.mkdir(parents=True, exist_ok=True)
            full_path = root / filename
            full_path.write_bytes(content)
        except OSError as exc:
            raise AssetDownloadError(f"asset_write_failed path={root / filename}") from exc

        return StoredAsset(
            filename=filename,
            local_path=str(full_path),
            public_url=public_asset_url(filename),
            size_bytes=len(content),
            sha256=hashlib.sha256(content).hexdigest(),
        )
