"""Small in-process metrics for the poll loop.

A bounded latency Histogram plus a counters container; no exporters.
"""
from __future__ import annotations
import time
import statistics
from collections import deque
from typing import Any, Dict


class Histogram:
    def __init__(self, max_samples: int = 1024):
        self._buf = deque(maxlen=max_samples)

    def observe(self, value: float) -> None:
        self._buf.append(float(value))

    def __len__(self) -> int:
        return len(self._buf)

    def snapshot(self) -> Dict[str, float]:
        if not self._buf:
            return {"count": 0}
        data = sorted(self._buf)
        last = len(data) - 1
        return {
            "count": len(data),
            "p50": data[int(0.5 * last)],
            "p90": data[int(0.9 * last)],
            "p99": data[int(0.99 * last)],
            "max": data[-1],
            "mean": statistics.fmean(data),
        }


class PollMetrics:
    """Counters and cycle latency (ms) for ChainPulse."""

    COUNTERS = (
        "cycles_started",
        "cycles_ok",
        "cycles_failed",
        "cycles_skipped",
        "cycles_discarded",
        "pulses",
    )

    def __init__(self) -> None:
        self.started_monotonic = time.perf_counter()
        self.cycle_latency_ms = Histogram()
        self.counters: Dict[str, int] = {k: 0 for k in self.COUNTERS}
        self.last_error: str | None = None

    def inc(self, key: str, value: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + int(value)

    def record_error(self, err: BaseException) -> None:
        self.inc("cycles_failed")
        self.last_error = f"{type(err).__name__}: {err}"

    def snapshot(self) -> Dict[str, Any]:
        return {
            "uptime_sec": round(time.perf_counter() - self.started_monotonic, 3),
            "counters": dict(self.counters),
            "cycle_latency_ms": self.cycle_latency_ms.snapshot(),
            "last_error": self.last_error,
        }


__all__ = ["Histogram", "PollMetrics"]
