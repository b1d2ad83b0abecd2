"""Adaptive cache strategy driven by observed usage.

Learns from recorded queries and recommends a per-key CacheStrategy by
perturbing the ``dynamic`` preset:

1. Hot family (access count > 10): fresh x1.5, GC x2, prefetch on.
2. Poor hit rate (< 60%): fresh x0.7, background sync on.
3. Slow responses (avg > 1000ms): fresh x1.3, GC x1.5.

The rules compound and are not clamped, so a key that is hot, missing and
slow ends up with ``stale_time_ms == dynamic * 1.5 * 0.7 * 1.3``.
"""

from __future__ import annotations

import logging
from collections import Counter

from cachepilot.config import AdaptiveConfig
from cachepilot.keys import KeyLike, ResourceKey
from cachepilot.prefetch.metrics import CacheMetrics, MetricsLedger, PerformanceReport
from cachepilot.prefetch.strategies import DYNAMIC, CacheStrategy

logger = logging.getLogger(__name__)

HOT_STALE_MULTIPLIER = 1.5
HOT_GC_MULTIPLIER = 2.0
LOW_HIT_STALE_MULTIPLIER = 0.7
SLOW_STALE_MULTIPLIER = 1.3
SLOW_GC_MULTIPLIER = 1.5


class AdaptiveStrategyEngine:
    """Recommends caching policy from per-key metrics and family frequency."""

    def __init__(
        self,
        config: AdaptiveConfig | None = None,
        ledger: MetricsLedger | None = None,
        base_strategy: CacheStrategy = DYNAMIC,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Heuristic thresholds. Defaults to AdaptiveConfig().
            ledger: Metrics store. A private ledger is created if omitted.
            base_strategy: Preset the rules start from.
        """
        self._config = config or AdaptiveConfig()
        self._ledger = ledger if ledger is not None else MetricsLedger()
        self._base = base_strategy
        self._access_frequency: Counter[str] = Counter()

    def record_query(
        self,
        key: KeyLike,
        response_time_ms: float,
        is_cache_hit: bool,
        has_error: bool = False,
    ) -> None:
        """Record a query outcome and bump its family's access count. Never raises."""
        self._ledger.record(key, response_time_ms, is_cache_hit, has_error)
        try:
            self._access_frequency[ResourceKey.coerce(key).family] += 1
        except Exception as e:
            logger.debug("Dropped access sample for %r: %s", key, e)

    def get_access_frequency(self, key_or_family: KeyLike) -> int:
        """Access count for a family name, or for the family of a key."""
        if isinstance(key_or_family, str):
            return self._access_frequency[key_or_family]
        family = ResourceKey.coerce(key_or_family).family
        return self._access_frequency[family]

    def get_metrics(self, key: KeyLike) -> CacheMetrics | None:
        return self._ledger.get(key)

    def get_optimized_strategy(self, key: KeyLike) -> CacheStrategy:
        """Recommend a strategy for ``key``.

        Reading a strategy does not count as an access.

        Raises:
            ResourceKeyError: If ``key`` is not a valid resource key.
        """
        key = ResourceKey.coerce(key)
        metrics = self._ledger.get(key)
        strategy = self._base

        if self._access_frequency[key.family] > self._config.high_frequency_threshold:
            strategy = strategy.replace(
                stale_time_ms=strategy.stale_time_ms * HOT_STALE_MULTIPLIER,
                gc_time_ms=strategy.gc_time_ms * HOT_GC_MULTIPLIER,
                prefetch=True,
            )

        if metrics is not None and metrics.hit_rate < self._config.low_hit_rate_percent:
            strategy = strategy.replace(
                stale_time_ms=strategy.stale_time_ms * LOW_HIT_STALE_MULTIPLIER,
                background_sync=True,
            )

        if metrics is not None and metrics.avg_response_time_ms > self._config.slow_response_ms:
            strategy = strategy.replace(
                stale_time_ms=strategy.stale_time_ms * SLOW_STALE_MULTIPLIER,
                gc_time_ms=strategy.gc_time_ms * SLOW_GC_MULTIPLIER,
            )

        return strategy

    def get_performance_report(self) -> PerformanceReport:
        return self._ledger.get_report()

    def reset(self) -> None:
        self._ledger.reset()
        self._access_frequency.clear()
