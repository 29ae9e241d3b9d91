from __future__ import annotations

from pathlib import Path
import uuid

from fastapi.testclient import TestClient
import httpx
import pytest

import tunecraft.api.main as api_main
from tunecraft.jobs.assets import AssetFetcher
from tunecraft.jobs.dependencies import get_asset_fetcher
from tunecraft.providers import MockGenerationProvider, get_generation_provider
from tunecraft.storage.db import get_session


AUDIO_BYTES = b"ID3-webhook-audio"
PUBLIC_BASE_URL = "https://api.tunecraft.test"


@pytest.fixture
def client(session_factory, isolated_settings: Path):
    def _override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def _audio_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=AUDIO_BYTES, headers={"content-type": "audio/mpeg"})

    provider = MockGenerationProvider()
    api_main.app.dependency_overrides[get_session] = _override_get_session
    api_main.app.dependency_overrides[get_generation_provider] = lambda: provider
    api_main.app.dependency_overrides[get_asset_fetcher] = lambda: AssetFetcher(
        storage_root=isolated_settings,
        client=httpx.Client(transport=httpx.MockTransport(_audio_handler)),
    )
    try:
        yield TestClient(api_main.app)
    finally:
        api_main.app.dependency_overrides.clear()


def _register(client: TestClient) -> dict[str, str]:
    suffix = uuid.uuid4().hex[:8]
    response = client.post(
        "/auth/register",
        json={"username": f"producer_{suffix}", "email": f"producer-{suffix}@example.com", "password": "secret-123"},
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _generate(client: TestClient, headers: dict[str, str]) -> dict:
    response = client.post("/music/generate", json={"prompt": "warm analog synths"}, headers=headers)
    assert response.status_code == 201
    return response.json()


def _balance(client: TestClient, headers: dict[str, str]) -> int:
    return client.get("/account/credits", headers=headers).json()["credit_balance"]


def test_failure_callback_refunds_once_across_duplicates(client: TestClient) -> None:
    headers = _register(client)
    generated = _generate(client, headers)
    assert _balance(client, headers) == 20

    callback = {
        "code": 501,
        "msg": "Audio generation failed",
        "data": {"callbackType": "error", "task_id": generated["provider_task_id"], "data": None},
    }
    first = client.post("/webhooks/provider", json=callback)
    second = client.post("/webhooks/provider", json=callback)

    assert first.status_code == 200
    assert first.json()["applied"] == 1
    assert second.status_code == 200
    assert second.json()["ignored"] == 1
    assert _balance(client, headers) == 30

    job = client.get(f"/jobs/{generated['job_id']}", headers=headers).json()
    assert job["status"] == "failed"
    assert job["error_message"] == "Audio generation failed"

    entry_types = [item["entry_type"] for item in client.get("/account/credits", headers=headers).json()["transactions"]]
    assert sorted(entry_types) == ["grant", "refund", "reserve"]


def test_success_callback_completes_job_and_serves_cached_audio(client: TestClient) -> None:
    headers = _register(client)
    generated = _generate(client, headers)
    job_id = generated["job_id"]

    response = client.post(
        "/webhooks/provider",
        json={
            "code": 200,
            "msg": "All generated successfully.",
            "data": {
                "callbackType": "complete",
                "task_id": generated["provider_task_id"],
                "data": [
                    {
                        "id": "clip-1",
                        "audio_url": "https://cdn.provider.test/clip-1.mp3",
                        "image_url": "https://cdn.provider.test/clip-1.jpg",
                        "title": "Analog Dreams",
                        "duration": 150.2,
                    }
                ],
            },
        },
    )

    assert response.status_code == 200
    assert response.json()["shape"] == "nested_list"
    assert response.json()["applied"] == 1

    job = client.get(f"/jobs/{job_id}", headers=headers).json()
    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["title"] == "Analog Dreams"
    assert job["audio_url"] == f"{PUBLIC_BASE_URL}/generated-music/{job_id}.mp3"
    assert job["remote_audio_url"] == "https://cdn.provider.test/clip-1.mp3"

    asset = client.get(f"/generated-music/{job_id}.mp3")
    assert asset.status_code == 200
    assert asset.content == AUDIO_BYTES
    assert _balance(client, headers) == 20


def test_malformed_batch_is_acknowledged(client: TestClient) -> None:
    response = client.post(
        "/webhooks/provider",
        json={"code": 200, "data": ["junk", {"audioUrl": "https://cdn.provider.test/orphan.mp3"}]},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["rejected"] == 2
    assert payload["applied"] == 0


def test_invalid_json_is_quarantined_with_200(client: TestClient) -> None:
    response = client.post(
        "/webhooks/provider",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["quarantined"] is True
    assert payload["reason"] == "invalid_json"


def test_unusable_shape_is_quarantined_with_200(client: TestClient) -> None:
    response = client.post("/webhooks/provider", json={"code": 200, "data": "nothing useful"})

    assert response.status_code == 200
    assert response.json()["quarantined"] is True


def test_unknown_task_is_counted(client: TestClient) -> None:
    response = client.post(
        "/webhooks/provider",
        json={"code": 200, "data": {"taskId": "never-submitted", "status": "SUCCESS"}},
    )

    assert response.status_code == 200
    assert response.json()["unknown"] == 1
