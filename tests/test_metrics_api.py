from fastapi.testclient import TestClient

import tunecraft.api.main as api_main
from tunecraft.core.metrics import (
    record_credits,
    record_job_finished,
    record_job_submitted,
    record_webhook_entry,
    reset_metrics_for_tests,
)


def test_metrics_endpoint_returns_prometheus_payload(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)

    client = TestClient(api_main.app)
    version_response = client.get("/version")
    assert version_response.status_code == 200

    metrics_response = client.get("/metrics")
    assert metrics_response.status_code == 200
    assert metrics_response.headers["content-type"].startswith("text/plain")
    body = metrics_response.text
    assert "tunecraft_build_info" in body
    assert 'tunecraft_http_requests_total{method="GET",path="/version",status="200"}' in body
    assert "tunecraft_http_request_duration_seconds_sum" in body


def test_domain_counters_are_rendered(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)

    record_job_submitted(kind="generate")
    record_job_submitted(kind="generate")
    record_job_finished(kind="generate", status="failed")
    record_credits(operation="reserve", amount=10)
    record_webhook_entry(outcome="applied")

    body = TestClient(api_main.app).get("/metrics").text

    assert 'tunecraft_jobs_submitted_total{kind="generate"} 2' in body
    assert 'tunecraft_jobs_finished_total{kind="generate",status="failed"} 1' in body
    assert 'tunecraft_credits_total{operation="reserve"} 10' in body
    assert 'tunecraft_webhook_entries_total{outcome="applied"} 1' in body


def test_metrics_endpoint_disabled_returns_404(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", False)
    client = TestClient(api_main.app)
    response = client.get("/metrics")
    assert response.status_code == 404
