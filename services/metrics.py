"""In-process counters and latency histograms for the message pipeline."""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from services.wa_format import wa_list

logger = logging.getLogger(__name__)

HISTOGRAM_WINDOW = 100


class MetricsCollector:
    """Thread-safe metrics collector with in-memory storage."""

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._lock = threading.RLock()
        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._window = max(1, int(histogram_window))

    @staticmethod
    def _make_key(name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """Record a value; only the most recent window of values is kept."""
        key = self._make_key(name, labels)
        with self._lock:
            values = self._histograms[key]
            values.append(value)
            if len(values) > self._window:
                del values[: len(values) - self._window]

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None) -> Generator[None, None, None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.histogram(f"{name}_duration_ms", elapsed_ms, labels)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        key = self._make_key(name, labels)
        with self._lock:
            return self._gauges.get(key)

    def _stats(self, values: list[float]) -> dict[str, float]:
        if not values:
            return {}
        ordered = sorted(values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p50": ordered[int(count * 0.5)],
            "p95": ordered[int(count * 0.95)] if count > 1 else ordered[-1],
        }

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, float]:
        key = self._make_key(name, labels)
        with self._lock:
            return self._stats(list(self._histograms.get(key, [])))

    def get_all_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {key: self._stats(list(values)) for key, values in self._histograms.items()},
                "collected_at": datetime.now(timezone.utc).isoformat(),
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


# Process-wide collector; components record into it through the helpers below.
metrics = MetricsCollector()


def record_dispatch(outcome: str, duration_ms: float) -> None:
    """Record one inbound message dispatch and how it ended."""
    labels = {"outcome": outcome}
    metrics.histogram("dispatch_duration_ms", duration_ms)
    metrics.increment("dispatches_total", labels=labels)


def record_send(transport: str, success: bool) -> None:
    metrics.increment("sends_total", labels={"transport": transport, "success": str(success).lower()})
    if not success:
        metrics.increment("send_failures_total", labels={"transport": transport})


def record_lookup_failure(strategy: str) -> None:
    metrics.increment("lookup_failures_total", labels={"strategy": strategy})


def record_error(component: str, error_type: str) -> None:
    metrics.increment("errors_total", labels={"component": component, "type": error_type})


def format_metrics_text(limit: int = 8) -> str:
    """Compact metrics summary for the built-in status command."""
    data = metrics.get_all_metrics()
    entries = [f"{name}: {value:.0f}" for name, value in sorted(data["counters"].items())[:limit]]
    entries.extend(f"{name}: {value:.0f}" for name, value in sorted(data["gauges"].items()))

    latency = data["histograms"].get("dispatch_duration_ms")
    if latency:
        entries.append(f"dispatch avg={latency['avg']:.1f}ms p95={latency['p95']:.1f}ms (n={latency['count']:.0f})")

    return "\n".join(["📊 *Métricas*", wa_list(entries) or "Sin datos todavía."])
