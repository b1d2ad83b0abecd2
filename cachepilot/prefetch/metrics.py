"""Per-resource usage metrics and the performance report built from them.

The ledger is pure state: no I/O, no awaits. ``record`` never raises, since
instrumentation must not affect the path it measures.

Usage:
    ledger = MetricsLedger()
    ledger.record(key, response_time_ms=120.0, is_cache_hit=False)
    report = ledger.get_report()
    report.overall_cache_hit_rate
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from cachepilot.errors import ResourceKeyError
from cachepilot.keys import KeyLike, ResourceKey

logger = logging.getLogger(__name__)

DEFAULT_SLOW_QUERY_MS = 1000.0
DEFAULT_REPORT_LIMIT = 5


@dataclass
class CacheMetrics:
    """Usage statistics for one resource key."""

    total_queries: int = 0
    miss_count: int = 0
    hit_rate: float = 0.0
    avg_response_time_ms: float = 0.0
    error_count: int = 0
    last_error_at: float | None = None
    last_updated: float = field(default_factory=time.time)

    @property
    def hit_count(self) -> int:
        return self.total_queries - self.miss_count

    @property
    def error_rate(self) -> float:
        """Errors as a percentage of queries."""
        if self.total_queries == 0:
            return 0.0
        return self.error_count / self.total_queries * 100

    def record(self, response_time_ms: float, is_cache_hit: bool, has_error: bool) -> None:
        """Fold one query outcome into the counters."""
        self.total_queries += 1
        if not is_cache_hit:
            self.miss_count += 1
        n = self.total_queries
        self.hit_rate = (n - self.miss_count) / n * 100
        self.avg_response_time_ms = (self.avg_response_time_ms * (n - 1) + response_time_ms) / n
        now = time.time()
        if has_error:
            self.error_count += 1
            self.last_error_at = now
        self.last_updated = now


@dataclass(frozen=True)
class SlowQuery:
    query_key: str
    avg_response_time_ms: float


@dataclass(frozen=True)
class ErrorProneQuery:
    query_key: str
    error_rate: float


@dataclass(frozen=True)
class PerformanceReport:
    """Snapshot of cache effectiveness across all keys."""

    overall_cache_hit_rate: float = 0.0
    slow_queries: list[SlowQuery] = field(default_factory=list)
    error_prone_queries: list[ErrorProneQuery] = field(default_factory=list)
    total_queries: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_cache_hit_rate": self.overall_cache_hit_rate,
            "slow_queries": [
                {"query_key": q.query_key, "avg_response_time_ms": q.avg_response_time_ms}
                for q in self.slow_queries
            ],
            "error_prone_queries": [
                {"query_key": q.query_key, "error_rate": q.error_rate}
                for q in self.error_prone_queries
            ],
            "total_queries": self.total_queries,
        }


class MetricsLedger:
    """Keyed accumulator of CacheMetrics.

    Entries are created lazily on the first recorded query for a key and are
    kept until ``reset()``.
    """

    def __init__(
        self,
        slow_query_threshold_ms: float = DEFAULT_SLOW_QUERY_MS,
        report_limit: int = DEFAULT_REPORT_LIMIT,
    ) -> None:
        self._entries: dict[ResourceKey, CacheMetrics] = {}
        self._slow_query_threshold_ms = slow_query_threshold_ms
        self._report_limit = report_limit

    def record(
        self,
        key: KeyLike,
        response_time_ms: float,
        is_cache_hit: bool,
        has_error: bool = False,
    ) -> None:
        """Record one query outcome. Never raises."""
        try:
            key = ResourceKey.coerce(key)
            response_time_ms = float(response_time_ms)
            metrics = self._entries.get(key)
            if metrics is None:
                metrics = CacheMetrics()
                self._entries[key] = metrics
            metrics.record(response_time_ms, bool(is_cache_hit), bool(has_error))
        except Exception as e:
            logger.debug("Dropped metrics sample for %r: %s", key, e)

    def get(self, key: KeyLike) -> CacheMetrics | None:
        return self._entries.get(ResourceKey.coerce(key))

    def keys(self) -> list[ResourceKey]:
        return list(self._entries)

    def items(self) -> Iterator[tuple[ResourceKey, CacheMetrics]]:
        return iter(list(self._entries.items()))

    def __contains__(self, key: object) -> bool:
        try:
            return ResourceKey.coerce(key) in self._entries  # type: ignore[arg-type]
        except ResourceKeyError:
            return False

    def __len__(self) -> int:
        return len(self._entries)

    def get_report(self) -> PerformanceReport:
        """Build the aggregate report.

        Returns:
            Overall hit rate (percent, 2dp), up to ``report_limit`` slow keys
            above the latency threshold and up to ``report_limit`` keys with
            errors, both sorted descending.
        """
        entries = list(self._entries.items())
        if not entries:
            return PerformanceReport()

        total_queries = sum(m.total_queries for _, m in entries)
        total_hits = sum(m.hit_count for _, m in entries)
        overall = total_hits / total_queries * 100 if total_queries else 0.0

        slow = sorted(
            (
                SlowQuery(key.serialize(), m.avg_response_time_ms)
                for key, m in entries
                if m.avg_response_time_ms > self._slow_query_threshold_ms
            ),
            key=lambda q: q.avg_response_time_ms,
            reverse=True,
        )[: self._report_limit]

        error_prone = sorted(
            (ErrorProneQuery(key.serialize(), m.error_rate) for key, m in entries if m.error_count > 0),
            key=lambda q: q.error_rate,
            reverse=True,
        )[: self._report_limit]

        return PerformanceReport(
            overall_cache_hit_rate=round(overall, 2),
            slow_queries=slow,
            error_prone_queries=error_prone,
            total_queries=total_queries,
        )

    def reset(self) -> None:
        self._entries.clear()
