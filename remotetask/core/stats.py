from __future__ import annotations

import asyncio

from remotetask.core.models import AggregateStats, RequestOutcome
from remotetask.logger import Logger, session_logger


class StatsAggregator:
    """Serialises concurrently completing outcomes into one set of counters.

    Only the most recent failure message is kept. When A and B fail at the
    same time, whichever records last decides ``last_error``.
    """

    def __init__(self, *, logger: Logger | None = None) -> None:
        self._logger = logger or session_logger
        self._lock = asyncio.Lock()
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._last_error: str | None = None

    async def record(self, outcome: RequestOutcome) -> None:
        async with self._lock:
            self._total += 1
            if outcome.success:
                self._successful += 1
            else:
                self._failed += 1
                self._last_error = outcome.message or f"{outcome.method} {outcome.url} failed"

    async def snapshot(self) -> AggregateStats:
        async with self._lock:
            return AggregateStats(
                total=self._total,
                successful=self._successful,
                failed=self._failed,
                last_error=self._last_error,
            )

    def log_summary(self, stats: AggregateStats) -> None:
        self._logger.info(
            "stats.final",
            total=stats.total,
            successful=stats.successful,
            failed=stats.failed,
        )
        if stats.last_error is not None:
            self._logger.error("stats.last_error", last_error=stats.last_error)
