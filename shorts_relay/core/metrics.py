"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, List, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_pipeline_outcomes_total: Dict[Tuple[str, str], int] = defaultdict(int)
_delayed_publish_total: Dict[str, int] = defaultdict(int)
_cleanup_deleted_total: Dict[str, int] = defaultdict(int)
_scheduler_jobs_total: Dict[Tuple[str, str], int] = defaultdict(int)
_tick_failures_total: Dict[str, int] = defaultdict(int)


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


def record_pipeline_outcome(*, scope: str, reason: str) -> None:
    with _lock:
        _pipeline_outcomes_total[(_normalize_label(scope), _normalize_label(reason))] += 1


def record_delayed_publish(*, status: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _delayed_publish_total[_normalize_label(status)] += int(count)


def record_cleanup_deleted(*, trigger: str, count: int) -> None:
    if count <= 0:
        return
    with _lock:
        _cleanup_deleted_total[_normalize_label(trigger)] += int(count)


def record_scheduler_job(*, job: str, status: str) -> None:
    with _lock:
        _scheduler_jobs_total[(_normalize_label(job), _normalize_label(status))] += 1


def record_tick_failure(*, job: str) -> None:
    with _lock:
        _tick_failures_total[_normalize_label(job)] += 1


def _counter_block(
    name: str,
    help_text: str,
    label_names: Tuple[str, ...],
    values: Dict,
) -> List[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    for key, value in sorted(values.items()):
        label_values: Iterable[str] = key if isinstance(key, tuple) else (key,)
        labels = ",".join(
            f'{label}="{_escape_label(str(label_value))}"'
            for label, label_value in zip(label_names, label_values)
        )
        lines.append(f"{name}{{{labels}}} {value}")
    return lines


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        pipeline_outcomes = dict(_pipeline_outcomes_total)
        delayed_publish = dict(_delayed_publish_total)
        cleanup_deleted = dict(_cleanup_deleted_total)
        scheduler_jobs = dict(_scheduler_jobs_total)
        tick_failures = dict(_tick_failures_total)

    lines = [
        "# HELP shorts_relay_build_info Build metadata.",
        "# TYPE shorts_relay_build_info gauge",
        (
            f'shorts_relay_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP shorts_relay_process_uptime_seconds Process uptime in seconds.",
        "# TYPE shorts_relay_process_uptime_seconds gauge",
        f"shorts_relay_process_uptime_seconds {uptime:.6f}",
    ]

    lines.extend(
        _counter_block(
            "shorts_relay_http_requests_total",
            "Total HTTP requests.",
            ("method", "path", "status"),
            http_total,
        )
    )

    lines.extend(
        [
            "# HELP shorts_relay_http_request_duration_seconds Request duration summary.",
            "# TYPE shorts_relay_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'shorts_relay_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'shorts_relay_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    lines.extend(
        _counter_block(
            "shorts_relay_pipeline_outcomes_total",
            "Pipeline invocations by scope and outcome reason.",
            ("scope", "reason"),
            pipeline_outcomes,
        )
    )
    lines.extend(
        _counter_block(
            "shorts_relay_delayed_publish_total",
            "Delayed visibility transitions by status.",
            ("status",),
            delayed_publish,
        )
    )
    lines.extend(
        _counter_block(
            "shorts_relay_cleanup_deleted_total",
            "Uploaded items removed by retention cleanup.",
            ("trigger",),
            cleanup_deleted,
        )
    )
    lines.extend(
        _counter_block(
            "shorts_relay_scheduler_jobs_total",
            "Slot jobs dispatched by the trigger loop.",
            ("job", "status"),
            scheduler_jobs,
        )
    )
    lines.extend(
        _counter_block(
            "shorts_relay_tick_failures_total",
            "Scheduler jobs that raised.",
            ("job",),
            tick_failures,
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
        _pipeline_outcomes_total.clear()
        _delayed_publish_total.clear()
        _cleanup_deleted_total.clear()
        _scheduler_jobs_total.clear()
        _tick_failures_total.clear()
    _started_at = time.time()
