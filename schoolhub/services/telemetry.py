from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_request_samples: Deque[RequestSample] = deque(maxlen=10000)
_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)
_gauges: dict[str, float] = {}


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    # Track request latency and status for ops dashboards.
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture external call latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    # Store counters for lifecycle dashboards (purged, skipped, linked).
    _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    _gauges[name] = value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def gauges_snapshot() -> dict[str, float]:
    return dict(_gauges)


def external_call_stats(integration: str, window_s: int = 300) -> dict[str, float | int | None]:
    # Summarize recent calls to one integration for ops visibility.
    cutoff = time.time() - window_s
    samples = [s for s in _external_samples if s.integration == integration and s.ts >= cutoff]
    if not samples:
        return {"calls": 0, "failures": 0, "avg_latency_ms": None}
    failures = sum(1 for s in samples if not s.success)
    avg_latency = sum(s.latency_ms for s in samples) / len(samples)
    return {"calls": len(samples), "failures": failures, "avg_latency_ms": round(avg_latency, 2)}


def request_stats(window_s: int = 300) -> dict[str, float | int | None]:
    cutoff = time.time() - window_s
    samples = [s for s in _request_samples if s.ts >= cutoff]
    if not samples:
        return {"requests": 0, "errors": 0, "avg_latency_ms": None}
    errors = sum(1 for s in samples if s.status_code >= 500)
    avg_latency = sum(s.latency_ms for s in samples) / len(samples)
    return {"requests": len(samples), "errors": errors, "avg_latency_ms": round(avg_latency, 2)}


def reset_telemetry() -> None:
    # Tests reset in-process metrics to keep assertions independent.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
    _gauges.clear()
