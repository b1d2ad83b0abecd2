"""Query performance monitoring.

Records every query execution (latency, cache hit/miss, error) and builds an
on-demand report of cache effectiveness. A disabled monitor records nothing
and reports an empty snapshot.
"""

from __future__ import annotations

import logging

from cachepilot.config import MonitorConfig
from cachepilot.keys import KeyLike
from cachepilot.observability.logging import log_event
from cachepilot.prefetch.metrics import MetricsLedger, PerformanceReport

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """Tracks query outcomes across all keys."""

    def __init__(self, config: MonitorConfig | None = None) -> None:
        self._config = config or MonitorConfig()
        self._enabled = self._config.enabled
        self._ledger = MetricsLedger(
            slow_query_threshold_ms=self._config.slow_query_threshold_ms,
            report_limit=self._config.report_limit,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    @property
    def ledger(self) -> MetricsLedger:
        return self._ledger

    def record_query(
        self,
        key: KeyLike,
        response_time_ms: float,
        is_from_cache: bool,
        has_error: bool = False,
    ) -> None:
        """Record one query execution. Never raises."""
        if not self._enabled:
            return

        self._ledger.record(key, response_time_ms, is_from_cache, has_error)

        try:
            if has_error or response_time_ms > self._config.slow_query_threshold_ms:
                log_event(
                    logger,
                    "monitor.query.flagged",
                    level=logging.DEBUG,
                    key=str(key),
                    response_time_ms=response_time_ms,
                    has_error=has_error,
                )
        except Exception:  # nosec B110
            pass

    def generate_report(self) -> PerformanceReport:
        return self._ledger.get_report()

    def reset(self) -> None:
        self._ledger.reset()
