"""
chatmd Metrics — in-process metrics collector.

No external dependencies. Tracks what the streaming core does per request:

    stream.started / stream.completed / stream.aborted / stream.failed  (counters)
    stream.ttft_ms, stream.duration_ms                                  (histograms)
    stream.active                                                       (gauge)
    buffer.flushes, buffer.forced_flushes, buffer.write_failures        (counters)
    buffer.dropped_tails{format}                                        (counter)
    tools.executed{tool,status}, tools.rounds, tools.round_limit        (counters)
    tools.declined{tool}                                                (counter)

Usage:
    from chatmd.core.metrics import metrics

    metrics.inc("stream.started", labels={"format": "openai"})
    metrics.observe("stream.ttft_ms", 342.1)
    metrics.snapshot()  # -> dict
"""

from __future__ import annotations

import time
from collections import defaultdict


class MetricsCollector:
    """Counters, rolling-window histograms and gauges."""

    # Rolling window size for histograms
    HISTOGRAM_MAX_SAMPLES = 1000

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._gauges: dict[str, float] = defaultdict(float)
        self._started_at: float = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record one observation; the oldest sample drops once the window is full."""
        samples = self._histograms[self._key(name, labels)]
        samples.append(value)
        if len(samples) > self.HISTOGRAM_MAX_SAMPLES:
            samples.pop(0)

    def gauge_inc(self, name: str, value: float = 1.0) -> None:
        self._gauges[name] += value

    def gauge_dec(self, name: str, value: float = 1.0) -> None:
        self._gauges[name] -= value

    def gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    def snapshot(self) -> dict:
        """Counters, gauges and histogram summaries (count/min/max/p50/p95)."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }

        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()
        self._gauges.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        """e.g. "tools.executed{status=ok,tool=web_search}"."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton
metrics = MetricsCollector()
