"""Speculative prefetching of resources the user is likely to open next.

Every speculative fetch goes through one in-flight set (the prefetch queue):
a key is added before its fetch starts and discarded when the fetch settles,
so at most one speculative fetch per key runs at a time no matter how many
callers ask. The membership check and insert run with no ``await`` between
them, which makes the pair atomic on the event loop.

Speculative work never fails the caller: errors are logged with the key and
swallowed.

Usage:
    prefetcher = IntelligentPrefetcher(engine, catalog)
    await prefetcher.prefetch_details(visible_keys, scroll_position=0.2)
    await prefetcher.prefetch_next_page({"size": 20}, current_page=0)
    prefetcher.get_status()
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from cachepilot.catalog import QueryCatalog
from cachepilot.config import PrefetchConfig
from cachepilot.engine import QueryEngine
from cachepilot.errors import ResourceKeyError
from cachepilot.keys import KeyLike, ResourceKey, merge_filters
from cachepilot.observability.logging import log_event
from cachepilot.utils.async_utils import gather_settled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrefetchStatus:
    """Observability snapshot of the prefetch queue."""

    queue_size: int
    active_items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"queue_size": self.queue_size, "active_items": list(self.active_items)}


@dataclass
class PrefetchStats:
    """Counters for speculative fetches."""

    issued: int = 0
    succeeded: int = 0
    failed: int = 0
    deduplicated: int = 0


class IntelligentPrefetcher:
    """Issues deduplicated speculative fetches through the query engine."""

    def __init__(self, engine: QueryEngine, catalog: QueryCatalog) -> None:
        self._engine = engine
        self._catalog = catalog
        self._queue: set[str] = set()
        self.stats = PrefetchStats()

    async def prefetch_details(
        self,
        visible_keys: Sequence[KeyLike],
        scroll_position: float = 0.0,
    ) -> int:
        """Prefetch detail records still ahead of the user's scroll.

        Takes ``ceil(len(visible_keys) * (1 - scroll_position))`` keys from the
        front of the list (at least one for a non-empty list) and prefetches
        them one after another.

        Args:
            visible_keys: Keys currently rendered, in display order. Raw segment
                sequences are accepted; invalid ones are logged and skipped.
            scroll_position: Fraction scrolled, clamped to [0, 1].

        Returns:
            Number of prefetches issued (duplicates of in-flight keys are skipped).
        """
        if not visible_keys:
            return 0

        scroll = min(1.0, max(0.0, float(scroll_position)))
        priority_count = max(1, math.ceil(len(visible_keys) * (1 - scroll)))

        issued = 0
        for key in visible_keys[:priority_count]:
            if await self._prefetch_one(key, "detail"):
                issued += 1
        return issued

    async def prefetch_next_page(self, current_filters: Mapping[str, Any], current_page: int) -> bool:
        """Prefetch page ``current_page + 1`` of a list under the same filters.

        Whether to call this at all is the caller's decision.

        Returns:
            True if a prefetch was issued.
        """
        key = self._catalog.list_key(merge_filters(current_filters, page=current_page + 1))
        return await self._prefetch_one(key, "next_page")

    async def prefetch_related(self, group_key: KeyLike) -> int:
        """Prefetch every resource related to ``group_key`` concurrently.

        Members are deduplicated independently; one failing member does not
        cancel the others.

        Returns:
            Number of prefetches issued.
        """
        try:
            group_key = ResourceKey.coerce(group_key)
        except ResourceKeyError as e:
            logger.warning("Related prefetch skipped for invalid group %r: %s", group_key, e)
            return 0

        keys = self._catalog.related(group_key)
        if not keys:
            log_event(
                logger,
                "prefetch.related.empty",
                level=logging.DEBUG,
                group=group_key.serialize(),
            )
            return 0

        results = await gather_settled(self._prefetch_one(key, "related") for key in keys)
        return sum(1 for r in results if r is True)

    def is_queued(self, key: KeyLike) -> bool:
        return ResourceKey.coerce(key).serialize() in self._queue

    def get_status(self) -> PrefetchStatus:
        return PrefetchStatus(queue_size=len(self._queue), active_items=sorted(self._queue))

    async def _prefetch_one(self, key: KeyLike, kind: str) -> bool:
        """Prefetch one key unless it is already in flight.

        Returns:
            True if this call issued the fetch.
        """
        try:
            key = ResourceKey.coerce(key)
        except ResourceKeyError as e:
            self.stats.failed += 1
            log_event(
                logger,
                f"prefetch.{kind}.failed",
                level=logging.WARNING,
                message=f"Prefetch skipped for invalid key {key!r}: {e}",
                error_type=type(e).__name__,
            )
            return False

        serialized = key.serialize()
        if serialized in self._queue:
            self.stats.deduplicated += 1
            return False
        self._queue.add(serialized)
        self.stats.issued += 1

        try:
            options = self._catalog.resolve(key)
            await self._engine.prefetch(key, options.fetch)
            self.stats.succeeded += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failed += 1
            log_event(
                logger,
                f"prefetch.{kind}.failed",
                level=logging.WARNING,
                message=f"Prefetch failed for {serialized}: {e}",
                key=serialized,
                error_type=type(e).__name__,
            )
        finally:
            self._queue.discard(serialized)
        return True


class ListPrefetchSession:
    """Prefetch helper scoped to one list screen.

    Remembers which detail keys it already prefetched so scrolling back and
    forth does not repeat work, and only prefetches the next page when the
    user is near the end of the list.
    """

    def __init__(self, prefetcher: IntelligentPrefetcher, config: PrefetchConfig | None = None) -> None:
        self._prefetcher = prefetcher
        self._threshold = (config or PrefetchConfig()).next_page_scroll_threshold
        self._prefetched: set[ResourceKey] = set()

    async def prefetch_visible(
        self,
        visible_keys: Sequence[KeyLike],
        scroll_position: float | None = None,
    ) -> int:
        new_keys: list[KeyLike] = []
        for raw in visible_keys:
            try:
                key = ResourceKey.coerce(raw)
            except ResourceKeyError:
                # Left for the prefetcher to log
                new_keys.append(raw)
                continue
            if key not in self._prefetched:
                new_keys.append(key)
        if not new_keys:
            return 0
        issued = await self._prefetcher.prefetch_details(new_keys, scroll_position or 0.0)
        self._prefetched.update(k for k in new_keys if isinstance(k, ResourceKey))
        return issued

    async def prefetch_next_page_if_near_end(
        self,
        filters: Mapping[str, Any],
        current_page: int,
        scroll_position: float | None = None,
    ) -> bool:
        """Prefetch the next page when scroll is unknown or past the threshold."""
        if scroll_position is not None and scroll_position <= self._threshold:
            return False
        return await self._prefetcher.prefetch_next_page(filters, current_page)

    def reset(self) -> None:
        """Forget remembered keys (call on page change)."""
        self._prefetched.clear()
