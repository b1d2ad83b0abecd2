"""Background revalidation of resources while they are being viewed.

Each key runs at most one recurring timer (an asyncio task). On every tick
the manager checks whether the engine holds any cached entry for the key; if
so it invalidates the key with ``active_only=True``, so only currently
observed queries refetch. Tick failures are logged and the timer keeps
running.

Stopping a key prevents future ticks only. A revalidation started by an
earlier tick runs in its own task and is not aborted. A tick that fires while
the previous revalidation of the same key is still running is skipped, so a
key has at most one revalidation in flight.

Usage:
    sync = BackgroundSyncManager(engine)
    sync.start(submission_key, interval_ms=60_000)
    ...
    sync.stop(submission_key)

    async with sync.watch(submission_key):
        ...  # synced while the block runs
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from cachepilot.config import SyncConfig
from cachepilot.engine import QueryEngine
from cachepilot.errors import ErrorCode, SyncError
from cachepilot.keys import KeyLike, ResourceKey
from cachepilot.observability.logging import log_event
from cachepilot.utils.async_utils import task_callback

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    """Per-key sync states."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class SyncHandle:
    """Registry entry for one running sync timer."""

    key: ResourceKey
    interval_ms: float
    task: asyncio.Task[None]
    started_at: float = field(default_factory=time.time)
    ticks: int = 0
    revalidations: int = 0
    failures: int = 0
    skipped_ticks: int = 0
    revalidating: asyncio.Task[None] | None = None

    @property
    def is_revalidating(self) -> bool:
        return self.revalidating is not None and not self.revalidating.done()


@dataclass(frozen=True)
class SyncStatus:
    """Keys with active sync and their count."""

    active_sync: list[str]
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"active_sync": list(self.active_sync), "count": self.count}


class BackgroundSyncManager:
    """Owns the per-key recurring revalidation timers."""

    def __init__(self, engine: QueryEngine, config: SyncConfig | None = None) -> None:
        self._engine = engine
        self._config = config or SyncConfig()
        self._registry: dict[str, SyncHandle] = {}
        self._revalidations: set[asyncio.Task[None]] = set()

    def start(self, key: KeyLike, interval_ms: float | None = None) -> bool:
        """Start syncing ``key`` every ``interval_ms`` milliseconds.

        No-op if the key is already syncing.

        Returns:
            True if a new timer was registered.

        Raises:
            ResourceKeyError: If ``key`` is not a valid resource key.
            SyncError: If the interval is not positive or no event loop is running.
        """
        key = ResourceKey.coerce(key)
        serialized = key.serialize()
        if serialized in self._registry:
            return False

        interval = self._config.default_interval_ms if interval_ms is None else interval_ms
        if interval <= 0:
            raise SyncError(
                f"Sync interval must be positive, got {interval}",
                key=serialized,
                interval_ms=interval,
            )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SyncError(
                "Background sync requires a running event loop",
                key=serialized,
                code=ErrorCode.SYN_NO_EVENT_LOOP,
                cause=e,
            ) from e

        task = loop.create_task(self._run_timer(key, interval), name=f"sync:{serialized}")
        self._registry[serialized] = SyncHandle(key=key, interval_ms=interval, task=task)
        log_event(logger, "sync.start", level=logging.DEBUG, key=serialized, interval_ms=interval)
        return True

    def stop(self, key: KeyLike) -> bool:
        """Stop syncing ``key``.

        Returns:
            True if a timer was removed; False if the key was not syncing.
        """
        serialized = ResourceKey.coerce(key).serialize()
        handle = self._registry.pop(serialized, None)
        if handle is None:
            return False
        handle.task.cancel()
        log_event(logger, "sync.stop", level=logging.DEBUG, key=serialized, ticks=handle.ticks)
        return True

    def stop_all(self) -> int:
        """Stop every timer. Safe to call repeatedly.

        Returns:
            Number of timers stopped.
        """
        handles = list(self._registry.values())
        self._registry.clear()
        for handle in handles:
            handle.task.cancel()
        if handles:
            logger.info("Stopped %d background sync timers", len(handles))
        return len(handles)

    def is_active(self, key: KeyLike) -> bool:
        return ResourceKey.coerce(key).serialize() in self._registry

    def state(self, key: KeyLike) -> SyncState:
        return SyncState.RUNNING if self.is_active(key) else SyncState.STOPPED

    def get_handle(self, key: KeyLike) -> SyncHandle | None:
        return self._registry.get(ResourceKey.coerce(key).serialize())

    def get_status(self) -> SyncStatus:
        return SyncStatus(active_sync=list(self._registry), count=len(self._registry))

    @asynccontextmanager
    async def watch(self, key: KeyLike, interval_ms: float | None = None) -> AsyncIterator[None]:
        """Sync ``key`` for the duration of the block.

        A key that was already syncing before the block keeps syncing after it.
        """
        key = ResourceKey.coerce(key)
        started = self.start(key, interval_ms)
        try:
            yield
        finally:
            if started:
                self.stop(key)

    async def drain(self) -> None:
        """Wait for revalidations already in flight to settle."""
        if self._revalidations:
            await asyncio.gather(*list(self._revalidations), return_exceptions=True)

    async def _run_timer(self, key: ResourceKey, interval_ms: float) -> None:
        interval_s = interval_ms / 1000
        while True:
            await asyncio.sleep(interval_s)
            handle = self._registry.get(key.serialize())
            if handle is None:
                return
            handle.ticks += 1
            if handle.is_revalidating:
                handle.skipped_ticks += 1
                log_event(logger, "sync.tick.skipped", level=logging.DEBUG, key=key.serialize())
                continue
            task = asyncio.create_task(self._revalidate(key, handle))
            handle.revalidating = task
            self._revalidations.add(task)
            task.add_done_callback(self._revalidations.discard)
            task.add_done_callback(task_callback("Background revalidation crashed", logger))

    async def _revalidate(self, key: ResourceKey, handle: SyncHandle) -> None:
        try:
            if self._engine.get_cached_entry(key) is None:
                return
            await self._engine.invalidate(key, active_only=True)
            handle.revalidations += 1
        except Exception as e:
            handle.failures += 1
            log_event(
                logger,
                "sync.tick.failed",
                level=logging.WARNING,
                message=f"Background sync failed for {key.serialize()}: {e}",
                key=key.serialize(),
                error_type=type(e).__name__,
            )
