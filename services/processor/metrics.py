# services/processor/metrics.py
"""Prometheus metrics and in-process counters of the *Processor*.

Two views of the same events:
1. **Prometheus** – module-level counters/histogram scraped from `/metrics`.
2. **MetricsTracker** – the numbers reported through the control channel
   (processed / failed, rolling average latency, errors by kind).

Both are updated by :meth:`MetricsTracker.record_success` /
:meth:`MetricsTracker.record_failure`, once per message.

> Start: call `start_metrics_server()` once at process start – it serves the
> `/metrics` endpoint on `PROCESSOR_METRICS_PORT` (default 9102).
"""
from __future__ import annotations

import contextlib
import datetime as _dt
import logging
import threading
from collections import deque

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from libs.config import get_settings
from libs.models import ErrorKind, ProcessingMetrics

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Metric objects (module-level singletons)
# ---------------------------------------------------------------------------
PROCESSED_OK = Counter(
    "swift_processed_ok_total",
    "Messages persisted and forwarded to the completed queue",
)
PROCESSED_FAIL = Counter(
    "swift_processed_fail_total",
    "Messages that ended on the dead-letter queue, by error kind",
    ["kind"],
)
DEAD_LETTER_SEND_FAIL = Counter(
    "swift_dead_letter_send_fail_total",
    "Dead-letter sends that failed (message only in the logs)",
)
RETRIES = Counter(
    "swift_retries_total",
    "Retried attempts, by pipeline stage",
    ["stage"],
)
IN_FLIGHT = Gauge(
    "swift_in_flight_messages",
    "Messages currently inside the pipeline",
)
QUEUE_DEPTH = Gauge(
    "swift_input_queue_depth",
    "Messages waiting on the input queue",
)
PROCESSING_TIME = Histogram(
    "swift_processing_seconds",
    "Time (s) spent on one message, end to end",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

ROLLING_WINDOW = 100


class MetricsTracker:
    """Thread-safe counters with a rolling latency average."""

    def __init__(self, window: int = ROLLING_WINDOW) -> None:
        self._lock = threading.Lock()
        self._latencies: deque[float] = deque(maxlen=window)
        self._processed = 0
        self._failed = 0
        self._errors: dict[str, int] = {}
        self._started_at = _dt.datetime.now(_dt.timezone.utc)
        self._last_updated: _dt.datetime | None = None

    def _observe(self, elapsed_ms: float) -> None:
        self._latencies.append(elapsed_ms)
        self._last_updated = _dt.datetime.now(_dt.timezone.utc)
        PROCESSING_TIME.observe(elapsed_ms / 1000)

    def record_success(self, elapsed_ms: float) -> None:
        with self._lock:
            self._processed += 1
            self._observe(elapsed_ms)
        PROCESSED_OK.inc()

    def record_failure(self, kind: ErrorKind, elapsed_ms: float) -> None:
        with self._lock:
            self._failed += 1
            self._errors[kind.value] = self._errors.get(kind.value, 0) + 1
            self._observe(elapsed_ms)
        PROCESSED_FAIL.labels(kind=kind.value).inc()

    @property
    def last_updated(self) -> _dt.datetime | None:
        return self._last_updated

    def snapshot(self) -> ProcessingMetrics:
        with self._lock:
            average = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
            return ProcessingMetrics(
                processed=self._processed,
                failed=self._failed,
                average_processing_ms=round(average, 3),
                errors_by_kind=dict(self._errors),
                started_at=self._started_at,
                last_updated=self._last_updated,
            )


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

def start_metrics_server(port: int | None = None) -> None:  # pragma: no cover – network
    """Starts the `/metrics` HTTP endpoint in a background thread."""
    port = port or get_settings().processor_metrics_port
    with contextlib.suppress(OSError):  # port already bound on re-import
        start_http_server(port)
        log.info("Prometheus metrics available on http://0.0.0.0:%s/metrics", port)
