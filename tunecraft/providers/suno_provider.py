"""Suno-compatible HTTP generation provider."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from tunecraft.core.errors import ProviderError
from tunecraft.core.logger import get_logger
from tunecraft.jobs.states import (
    JOB_STATUS_FAILED,
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
from tunecraft.providers.base import (
    UNKNOWN_ERROR_MESSAGE,
    GenerationProvider,
    ProviderAsset,
    ProviderStatusReport,
    ProviderSubmission,
    normalize_model_version,
    normalize_provider_status,
)


logger = get_logger("tunecraft.providers.suno")

SUBMIT_PATHS: Dict[str, str] = {
    KIND_GENERATE: "/v1/generate",
    KIND_EXTEND: "/v1/generate/extend",
    KIND_COVER: "/v1/generate/upload-cover",
    KIND_LYRICS: "/v1/lyrics",
    KIND_TIMESTAMPED_LYRICS: "/v1/generate/get-timestamped-lyrics",
    KIND_WAV: "/v1/wav/generate",
    KIND_SEPARATE: "/v1/vocal-removal/generate",
    KIND_BOOST: "/v1/style/generate",
    KIND_INSTRUMENTAL: "/v1/generate/add-instrumental",
    KIND_VOCALS: "/v1/generate/add-vocals",
    KIND_VIDEO: "/v1/mp4/generate",
}

DEFAULT_STATUS_PATH = "/v1/generate/record-info"
STATUS_PATHS: Dict[str, str] = {
    KIND_LYRICS: "/v1/lyrics/record-info",
    KIND_WAV: "/v1/wav/record-info",
    KIND_SEPARATE: "/v1/vocal-removal/record-info",
    KIND_VIDEO: "/v1/mp4/record-info",
}
CREDITS_PATH = "/v1/get-credits"


def _compact(body: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


def _generate_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "prompt": params.get("prompt"),
        "style": params.get("style"),
        "title": params.get("title") or "",
        "customMode": params.get("custom_mode", True) is not False,
        "instrumental": bool(params.get("instrumental", False)),
        "model": normalize_model_version(params.get("model_version")),
        "negativeTags": params.get("negative_tags") or "",
        "vocalGender": params.get("vocal_gender") or "m",
        "styleWeight": params.get("style_weight", 0.65),
        "weirdnessConstraint": params.get("weirdness_constraint", 0.65),
        "audioWeight": params.get("audio_weight", 0.65),
    }


def _extend_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "audioId": params.get("audio_id"),
        "prompt": params.get("prompt") or "",
        "style": params.get("style"),
        "title": params.get("title"),
        "continueAt": params.get("continue_at") or 0,
        "model": normalize_model_version(params.get("model_version")),
        "defaultParamFlag": bool(params.get("prompt") or params.get("style")),
    }


def _cover_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "uploadUrl": params.get("audio_url"),
        "audioId": params.get("audio_id"),
        "prompt": params.get("prompt"),
        "style": params.get("style") or "",
        "title": params.get("title"),
        "customMode": params.get("custom_mode", True) is not False,
        "instrumental": bool(params.get("instrumental", False)),
        "model": normalize_model_version(params.get("model_version")),
    }


def _lyrics_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "prompt": params.get("prompt"),
        "style": params.get("style"),
        "theme": params.get("theme"),
    }


def _audio_source_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "audioId": params.get("audio_id"),
        "audioUrl": params.get("audio_url"),
    }


def _boost_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "audioUrl": params.get("audio_url"),
        "content": params.get("prompt"),
        "intensity": params.get("intensity"),
    }


def _instrumental_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "uploadUrl": params.get("audio_url"),
        "prompt": params.get("prompt"),
        "tags": params.get("style"),
        "blendRatio": params.get("blend_ratio"),
    }


def _vocals_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "uploadUrl": params.get("audio_url"),
        "prompt": params.get("prompt"),
        "vocalStyle": params.get("voice_style"),
        "blendRatio": params.get("blend_ratio"),
    }


def _video_body(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "audioId": params.get("audio_id"),
        "audioUrl": params.get("audio_url"),
        "videoStyle": params.get("video_style"),
        "theme": params.get("theme"),
        "durationSeconds": params.get("duration_seconds"),
        "resolution": params.get("resolution"),
    }


BODY_BUILDERS: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
    KIND_GENERATE: _generate_body,
    KIND_EXTEND: _extend_body,
    KIND_COVER: _cover_body,
    KIND_LYRICS: _lyrics_body,
    KIND_TIMESTAMPED_LYRICS: _audio_source_body,
    KIND_WAV: _audio_source_body,
    KIND_SEPARATE: _audio_source_body,
    KIND_BOOST: _boost_body,
    KIND_INSTRUMENTAL: _instrumental_body,
    KIND_VOCALS: _vocals_body,
    KIND_VIDEO: _video_body,
}


def build_submit_body(kind: str, params: Mapping[str, Any], *, callback_url: str) -> Dict[str, Any]:
    body = BODY_BUILDERS[kind](params)
    body["callBackUrl"] = params.get("callback_url") or callback_url or None
    return _compact(body)


def _extract_records(data: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    response = data.get("response")
    containers: List[Any] = []
    if isinstance(response, Mapping):
        containers.extend([response.get("sunoData"), response.get("data")])
    containers.extend([data.get("sunoData"), data.get("data")])
    for candidate in containers:
        if isinstance(candidate, list):
            return [item for item in candidate if isinstance(item, Mapping)]
        if isinstance(candidate, Mapping):
            return [candidate]
    if isinstance(response, Mapping) and (response.get("videoUrl") or response.get("audioUrl")):
        return [response]
    return []


class SunoApiProvider(GenerationProvider):
    provider_name = "suno"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        callback_url: str = "",
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._callback_url = callback_url.strip()
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "tunecraft-backend/1.0",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _send(self, client: httpx.Client, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return client.request(method, url, headers=self._headers(), timeout=self._timeout_seconds, **kwargs)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self._api_key:
            raise ProviderError("provider_api_key_missing")

        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                response = self._send(self._client, method, url, **kwargs)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = self._send(client, method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("provider_request_timeout", method=method, path=path)
            raise ProviderError(f"provider_timeout path={path}", timed_out=True) from exc
        except httpx.HTTPError as exc:
            logger.warning("provider_request_transport_error", method=method, path=path, error=str(exc))
            raise ProviderError(f"provider_transport_error path={path}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code < 200 or response.status_code >= 300:
            detail = ""
            if isinstance(body, Mapping):
                detail = str(body.get("msg") or body.get("message") or body.get("error") or "")
            if not detail:
                detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            logger.warning("provider_request_failed", method=method, path=path, status_code=response.status_code)
            raise ProviderError(
                f"provider_request_failed status={response.status_code} detail={detail}",
                http_status=response.status_code,
            )

        if not isinstance(body, Mapping):
            raise ProviderError("provider_invalid_json_response", http_status=response.status_code)

        code = body.get("code")
        if code != 200:
            message = str(body.get("msg") or "provider_request_rejected")
            logger.warning("provider_request_rejected", method=method, path=path, provider_code=code, msg=message)
            raise ProviderError(message, http_status=response.status_code)

        return body.get("data")

    def submit(self, kind: str, params: Mapping[str, Any]) -> ProviderSubmission:
        kind = canonicalize_kind(kind)
        body = build_submit_body(kind, params, callback_url=self._callback_url)
        data = self._request("POST", SUBMIT_PATHS[kind], json=body)

        task_id: Optional[str] = None
        if isinstance(data, Mapping):
            raw_task_id = data.get("taskId") or data.get("task_id") or data.get("id")
            task_id = str(raw_task_id).strip() if raw_task_id else None
        elif isinstance(data, str) and data.strip():
            task_id = data.strip()
        if not task_id:
            raise ProviderError("provider_missing_task_id")

        logger.info("provider_task_submitted", kind=kind, provider_task_id=task_id)
        return ProviderSubmission(provider_task_id=task_id)

    def get_status(self, kind: str, task_id: str) -> ProviderStatusReport:
        kind = canonicalize_kind(kind)
        path = STATUS_PATHS.get(kind, DEFAULT_STATUS_PATH)
        data = self._request("GET", path, params={"taskId": task_id})
        if not isinstance(data, Mapping):
            raise ProviderError("provider_invalid_status_payload")

        response = data.get("response") if isinstance(data.get("response"), Mapping) else {}
        raw_status = data.get("status") or response.get("status") or data.get("successFlag")
        status = normalize_provider_status(str(raw_status) if raw_status is not None else None)
        error_message = data.get("errorMessage") or response.get("errorMessage")
        if status == JOB_STATUS_FAILED and not error_message:
            error_message = UNKNOWN_ERROR_MESSAGE

        assets = tuple(ProviderAsset.from_payload(record) for record in _extract_records(data))
        return ProviderStatusReport(
            task_id=str(data.get("taskId") or task_id),
            status=status,
            assets=assets,
            error_message=str(error_message) if error_message else None,
            raw=dict(data),
        )

    def get_credits(self) -> int:
        data = self._request("GET", CREDITS_PATH)
        if isinstance(data, Mapping):
            credits = data.get("credits", 0)
        else:
            credits = data
        try:
            return int(credits or 0)
        except (TypeError, ValueError) as exc:
            raise ProviderError("provider_invalid_credits_payload") from exc
