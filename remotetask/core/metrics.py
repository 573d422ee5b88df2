from __future__ import annotations

import asyncio
import math
import random
from dataclasses import dataclass, field
from typing import Any

from remotetask.core.models import RequestOutcome
from remotetask.logger import Logger, session_logger


def _percentile(sorted_values: list[int], p: float) -> float | None:
    """Linear-interpolated percentile of an ascending list."""

    if not sorted_values:
        return None
    if p <= 0:
        return float(sorted_values[0])
    if p >= 1:
        return float(sorted_values[-1])

    rank = (len(sorted_values) - 1) * p
    lower = int(math.floor(rank))
    upper = int(math.ceil(rank))
    if lower == upper:
        return float(sorted_values[lower])
    return float(sorted_values[lower] * (upper - rank) + sorted_values[upper] * (rank - lower))


class _Reservoir:
    """Bounded uniform sample of latency values for long runs."""

    def __init__(self, capacity: int, *, seed: int | None = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._rng = random.Random(seed)
        self._seen = 0
        self._values: list[int] = []

    def add(self, value: int) -> None:
        self._seen += 1
        if len(self._values) < self._capacity:
            self._values.append(value)
            return
        slot = self._rng.randrange(self._seen)
        if slot < self._capacity:
            self._values[slot] = value

    def sorted_values(self) -> list[int]:
        return sorted(self._values)


@dataclass
class _Bucket:
    sample: _Reservoir
    count: int = 0
    error_count: int = 0
    sum_ms: int = 0
    min_ms: int | None = None
    max_ms: int | None = None
    statuses: dict[str, int] = field(default_factory=dict)
    error_types: dict[str, int] = field(default_factory=dict)

    def observe(self, outcome: RequestOutcome) -> None:
        duration_ms = max(0, outcome.duration_ms)
        self.count += 1
        self.sum_ms += duration_ms
        if self.min_ms is None or duration_ms < self.min_ms:
            self.min_ms = duration_ms
        if self.max_ms is None or duration_ms > self.max_ms:
            self.max_ms = duration_ms
        self.sample.add(duration_ms)

        status = str(outcome.status_code) if outcome.status_code is not None else "none"
        self.statuses[status] = self.statuses.get(status, 0) + 1

        if not outcome.success:
            self.error_count += 1
            error_type = outcome.error_type or "unknown"
            self.error_types[error_type] = self.error_types.get(error_type, 0) + 1

    def report(self) -> dict[str, Any]:
        values = self.sample.sorted_values()
        return {
            "count": self.count,
            "error_count": self.error_count,
            "error_rate_pct": round(self.error_count / self.count * 100, 2) if self.count else 0.0,
            "error_types": dict(self.error_types),
            "statuses": dict(self.statuses),
            "min_ms": self.min_ms,
            "max_ms": self.max_ms,
            "mean_ms": (self.sum_ms / self.count) if self.count else None,
            "p50_ms": _percentile(values, 0.50),
            "p95_ms": _percentile(values, 0.95),
            "p99_ms": _percentile(values, 0.99),
            "sample_size": len(values),
        }


class LatencyMetrics:
    """Latency and error breakdown per request label (A, B)."""

    def __init__(self, *, sample_size: int = 5000, logger: Logger | None = None) -> None:
        self._logger = logger or session_logger
        self._lock = asyncio.Lock()
        self._sample_size = sample_size
        self._overall = _Bucket(sample=_Reservoir(sample_size))
        self._by_label: dict[str, _Bucket] = {}

    async def record(self, outcome: RequestOutcome) -> None:
        async with self._lock:
            self._overall.observe(outcome)
            bucket = self._by_label.get(outcome.label)
            if bucket is None:
                bucket = _Bucket(sample=_Reservoir(self._sample_size))
                self._by_label[outcome.label] = bucket
            bucket.observe(outcome)

        if not outcome.success:
            self._logger.debug(
                "metrics.error_recorded",
                label=outcome.label,
                error_type=outcome.error_type,
            )

    async def build_report(self) -> dict[str, Any]:
        async with self._lock:
            return {
                "overall": self._overall.report(),
                "by_label": {label: bucket.report() for label, bucket in self._by_label.items()},
            }
