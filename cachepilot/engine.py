"""Query execution engine interface and an in-memory reference engine.

The coordinator never stores results itself. It drives an engine that owns
per-key result storage, staleness and GC windows, and deduplicated in-flight
fetches. ``QueryEngine`` names the exact surface the coordinator consumes;
``InMemoryQueryEngine`` is a small asyncio implementation of it used to run
the coordinator end to end.

Usage:
    engine = InMemoryQueryEngine()
    data = await engine.fetch_query(key, fetch_fn)   # serves fresh entries from cache
    await engine.prefetch(key, fetch_fn)             # fills the cache, no result
    with engine.observe(key):                        # mark key as actively viewed
        await engine.invalidate(key, active_only=True)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from cachepilot.keys import ResourceKey
from cachepilot.observability.logging import log_event

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class QueryPolicy:
    """Staleness and GC windows applied to a key."""

    stale_time_ms: float
    gc_time_ms: float


DEFAULT_POLICY = QueryPolicy(stale_time_ms=0.0, gc_time_ms=5 * 60 * 1000.0)


@dataclass
class CachedEntry:
    """A stored query result with freshness metadata."""

    key: ResourceKey
    data: Any
    updated_at: float
    policy: QueryPolicy
    fetch_fn: Fetcher | None = None
    invalidated: bool = False
    inactive_since: float | None = None
    fetch_count: int = 1

    def is_stale(self, now: float) -> bool:
        if self.invalidated:
            return True
        return (now - self.updated_at) * 1000 >= self.policy.stale_time_ms

    def is_collectable(self, now: float) -> bool:
        if self.inactive_since is None:
            return False
        return (now - self.inactive_since) * 1000 >= self.policy.gc_time_ms


@dataclass(frozen=True)
class QueryEvent:
    """Outcome of one query execution, emitted when it settles."""

    key: ResourceKey
    latency_ms: float
    from_cache: bool
    error: BaseException | None = None

    @property
    def has_error(self) -> bool:
        return self.error is not None


QueryListener = Callable[[QueryEvent], None]


@runtime_checkable
class QueryEngine(Protocol):
    """The engine surface consumed by the coordinator."""

    async def prefetch(self, key: ResourceKey, fetch_fn: Fetcher) -> None: ...

    def get_cached_entry(self, key: ResourceKey) -> CachedEntry | None: ...

    async def invalidate(self, key: ResourceKey, *, active_only: bool = True) -> None: ...

    def set_policy(self, key: ResourceKey, *, stale_time_ms: float, gc_time_ms: float) -> None: ...


@dataclass
class EngineStats:
    """Counters for the reference engine."""

    fetches: int = 0
    fetch_errors: int = 0
    deduplicated: int = 0
    cache_hits: int = 0
    invalidations: int = 0
    refetches: int = 0
    collected: int = 0
    by_family: Counter[str] = field(default_factory=Counter)


class InMemoryQueryEngine:
    """Asyncio query engine with staleness, GC and fetch deduplication.

    Concurrent fetches of one key share a single task; a cancelled waiter
    does not cancel the shared fetch. Must be used from one event loop.
    """

    def __init__(
        self,
        default_policy: QueryPolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            default_policy: Windows used for keys without an explicit policy.
            clock: Monotonic clock in seconds. Injectable for tests.
        """
        self._default_policy = default_policy
        self._clock = clock
        self._entries: dict[ResourceKey, CachedEntry] = {}
        self._policies: dict[ResourceKey, QueryPolicy] = {}
        self._inflight: dict[ResourceKey, asyncio.Task[Any]] = {}
        self._observers: Counter[ResourceKey] = Counter()
        self._listeners: list[QueryListener] = []
        self.stats = EngineStats()

    # Policy

    def get_policy(self, key: ResourceKey) -> QueryPolicy:
        return self._policies.get(key, self._default_policy)

    def set_policy(self, key: ResourceKey, *, stale_time_ms: float, gc_time_ms: float) -> None:
        policy = QueryPolicy(stale_time_ms=stale_time_ms, gc_time_ms=gc_time_ms)
        self._policies[key] = policy
        entry = self._entries.get(key)
        if entry is not None:
            entry.policy = policy

    # Reads

    def get_cached_entry(self, key: ResourceKey) -> CachedEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_collectable(self._clock()):
            self._remove(key)
            return None
        return entry

    def get_query_data(self, key: ResourceKey) -> Any | None:
        entry = self.get_cached_entry(key)
        return entry.data if entry is not None else None

    def is_fetching(self, key: ResourceKey) -> bool:
        return key in self._inflight

    def is_active(self, key: ResourceKey) -> bool:
        return self._observers[key] > 0

    def keys(self) -> list[ResourceKey]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # Execution

    async def fetch_query(self, key: ResourceKey, fetch_fn: Fetcher) -> Any:
        """Serve a fresh entry from cache, otherwise fetch it.

        Emits a QueryEvent to subscribers once the query settles.

        Raises:
            Exception: Whatever the fetch function raised.
        """
        start = self._clock()
        entry = self.get_cached_entry(key)
        if entry is not None and not entry.is_stale(start):
            self.stats.cache_hits += 1
            self._emit(QueryEvent(key, (self._clock() - start) * 1000, from_cache=True))
            return entry.data

        try:
            data = await self._fetch(key, fetch_fn)
        except Exception as e:
            self._emit(QueryEvent(key, (self._clock() - start) * 1000, from_cache=False, error=e))
            raise

        self._emit(QueryEvent(key, (self._clock() - start) * 1000, from_cache=False))
        return data

    async def prefetch(self, key: ResourceKey, fetch_fn: Fetcher) -> None:
        """Fill the cache for a key unless a fresh entry already exists.

        Raises:
            Exception: Whatever the fetch function raised.
        """
        entry = self.get_cached_entry(key)
        if entry is not None and not entry.is_stale(self._clock()):
            return
        await self._fetch(key, fetch_fn)

    async def invalidate(self, key: ResourceKey, *, active_only: bool = True) -> None:
        """Mark a key stale and refetch it.

        With ``active_only`` only observed keys are refetched; inactive
        entries stay stale until their next read.
        """
        entry = self.get_cached_entry(key)
        if entry is None:
            return

        entry.invalidated = True
        self.stats.invalidations += 1

        if entry.fetch_fn is None:
            return
        if active_only and not self.is_active(key):
            return

        self.stats.refetches += 1
        await self._fetch(key, entry.fetch_fn)

    @contextmanager
    def observe(self, key: ResourceKey) -> Iterator[None]:
        """Mark a key as actively observed for the duration of the block."""
        self._observers[key] += 1
        entry = self._entries.get(key)
        if entry is not None:
            entry.inactive_since = None
        try:
            yield
        finally:
            self._observers[key] -= 1
            if self._observers[key] <= 0:
                del self._observers[key]
                entry = self._entries.get(key)
                if entry is not None:
                    entry.inactive_since = self._clock()

    def subscribe(self, listener: QueryListener) -> Callable[[], None]:
        """Register a listener for settled queries.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def collect_garbage(self) -> int:
        """Drop unobserved entries whose GC window has elapsed.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_collectable(now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.debug("Collected %d expired query entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    # Internals

    async def _fetch(self, key: ResourceKey, fetch_fn: Fetcher) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._run(key, fetch_fn))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            self.stats.deduplicated += 1
        return await asyncio.shield(task)

    async def _run(self, key: ResourceKey, fetch_fn: Fetcher) -> Any:
        self.stats.fetches += 1
        self.stats.by_family[key.family] += 1
        try:
            data = await fetch_fn()
        except Exception as e:
            self.stats.fetch_errors += 1
            log_event(
                logger,
                "engine.fetch.failed",
                level=logging.DEBUG,
                key=key.serialize(),
                error=str(e),
            )
            raise

        now = self._clock()
        previous = self._entries.get(key)
        self._entries[key] = CachedEntry(
            key=key,
            data=data,
            updated_at=now,
            policy=self.get_policy(key),
            fetch_fn=fetch_fn,
            inactive_since=None if self.is_active(key) else now,
            fetch_count=previous.fetch_count + 1 if previous else 1,
        )
        return data

    def _settle(self, key: ResourceKey, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved; waiters already received it
        if not task.cancelled():
            task.exception()

    def _remove(self, key: ResourceKey) -> None:
        self._entries.pop(key, None)
        self.stats.collected += 1

    def _emit(self, event: QueryEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.debug("Query listener failed for %s: %s", event.key, e)
