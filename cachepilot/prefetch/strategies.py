"""Cache strategy value objects and the static presets.

A strategy is recomputed on demand and never persisted. The presets differ
in freshness and GC windows and in whether background sync and prefetching
are on by default:

- realTime: submission status, notifications (30s fresh, 2min GC)
- dynamic:  lists and dashboards (2min fresh, 10min GC)
- stable:   detail records, statistics (10min fresh, 30min GC)
- static:   master data, settings (1h fresh, 24h GC)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Literal

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS

Priority = Literal[1, 2, 3]


@dataclass(frozen=True)
class CacheStrategy:
    """Recommended caching policy for one resource key.

    Attributes:
        priority: 1 (high) to 3 (low).
        stale_time_ms: Freshness window.
        gc_time_ms: Retention window for unobserved entries.
        background_sync: Whether to revalidate periodically while viewed.
        prefetch: Whether speculative fetching is worthwhile.
    """

    priority: Priority
    stale_time_ms: float
    gc_time_ms: float
    background_sync: bool
    prefetch: bool

    def replace(self, **changes: Any) -> CacheStrategy:
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


REAL_TIME = CacheStrategy(
    priority=1,
    stale_time_ms=30 * SECOND_MS,
    gc_time_ms=2 * MINUTE_MS,
    background_sync=True,
    prefetch=False,
)

DYNAMIC = CacheStrategy(
    priority=2,
    stale_time_ms=2 * MINUTE_MS,
    gc_time_ms=10 * MINUTE_MS,
    background_sync=True,
    prefetch=True,
)

STABLE = CacheStrategy(
    priority=2,
    stale_time_ms=10 * MINUTE_MS,
    gc_time_ms=30 * MINUTE_MS,
    background_sync=False,
    prefetch=True,
)

STATIC = CacheStrategy(
    priority=3,
    stale_time_ms=1 * HOUR_MS,
    gc_time_ms=24 * HOUR_MS,
    background_sync=False,
    prefetch=False,
)

CACHE_STRATEGIES: dict[str, CacheStrategy] = {
    "realTime": REAL_TIME,
    "dynamic": DYNAMIC,
    "stable": STABLE,
    "static": STATIC,
}
