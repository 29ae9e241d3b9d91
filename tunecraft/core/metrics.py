"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_jobs_submitted_total: Dict[str, int] = defaultdict(int)
_jobs_finished_total: Dict[Tuple[str, str], int] = defaultdict(int)
_credits_total: Dict[str, int] = defaultdict(int)
_webhook_entries_total: Dict[str, int] = defaultdict(int)
_asset_download_failures_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_job_submitted(*, kind: str) -> None:
    with _lock:
        _jobs_submitted_total[_normalize_label(kind)] += 1


def record_job_finished(*, kind: str, status: str) -> None:
    with _lock:
        _jobs_finished_total[(_normalize_label(kind), _normalize_label(status))] += 1


def record_credits(*, operation: str, amount: int) -> None:
    if amount <= 0:
        return
    with _lock:
        _credits_total[_normalize_label(operation)] += int(amount)


def record_webhook_entry(*, outcome: str) -> None:
    with _lock:
        _webhook_entries_total[_normalize_label(outcome)] += 1


def record_asset_download_failure(*, kind: str) -> None:
    with _lock:
        _asset_download_failures_total[_normalize_label(kind)] += 1


def _counter_block(name: str, help_text: str, label: str, values: Iterable[Tuple[str, int]]) -> list[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    for label_value, value in values:
        lines.append(f'{name}{{{label}="{_escape_label(label_value)}"}} {value}')
    return lines


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        jobs_submitted_total = dict(_jobs_submitted_total)
        jobs_finished_total = dict(_jobs_finished_total)
        credits_total = dict(_credits_total)
        webhook_entries_total = dict(_webhook_entries_total)
        asset_download_failures_total = dict(_asset_download_failures_total)

    lines = [
        "# HELP tunecraft_build_info Build metadata.",
        "# TYPE tunecraft_build_info gauge",
        (
            f'tunecraft_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP tunecraft_process_uptime_seconds Process uptime in seconds.",
        "# TYPE tunecraft_process_uptime_seconds gauge",
        f"tunecraft_process_uptime_seconds {uptime:.6f}",
        "# HELP tunecraft_http_requests_total Total HTTP requests.",
        "# TYPE tunecraft_http_requests_total counter",
    ]

    for (method, path, status), value in sorted(http_total.items()):
        lines.append(
            (
                f'tunecraft_http_requests_total{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}",status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP tunecraft_http_request_duration_seconds Request duration summary.",
            "# TYPE tunecraft_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'tunecraft_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'tunecraft_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    lines.extend(
        _counter_block(
            "tunecraft_jobs_submitted_total",
            "Generation jobs accepted by the provider.",
            "kind",
            sorted(jobs_submitted_total.items()),
        )
    )

    lines.extend(
        [
            "# HELP tunecraft_jobs_finished_total Generation jobs reaching a terminal status.",
            "# TYPE tunecraft_jobs_finished_total counter",
        ]
    )
    for (kind, status), value in sorted(jobs_finished_total.items()):
        lines.append(
            f'tunecraft_jobs_finished_total{{kind="{_escape_label(kind)}",status="{_escape_label(status)}"}} {value}'
        )

    lines.extend(
        _counter_block(
            "tunecraft_credits_total",
            "Credits moved through the ledger by operation.",
            "operation",
            sorted(credits_total.items()),
        )
    )
    lines.extend(
        _counter_block(
            "tunecraft_webhook_entries_total",
            "Provider callback entries by reconciliation outcome.",
            "outcome",
            sorted(webhook_entries_total.items()),
        )
    )
    lines.extend(
        _counter_block(
            "tunecraft_asset_download_failures_total",
            "Asset downloads that fell back to the remote URL.",
            "kind",
            sorted(asset_download_failures_total.items()),
        )
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _jobs_submitted_total.clear()
        _jobs_finished_total.clear()
        _credits_total.clear()
        _webhook_entries_total.clear()
        _asset_download_failures_total.clear()
    _started_at = time.time()
