"""Cache warming at application or session start.

Issues best-effort batches of prefetches for resources that are almost always
needed right after start (dashboard per grade, first list pages). Every
member of a batch is attempted regardless of the others; failures are logged
one by one and nothing is raised. If warming fails entirely, the first real
requests simply fetch normally.

Usage:
    warmer = CacheWarmer(engine, catalog)
    result = await warmer.warm_application(WarmingOptions(user_grade=2))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from cachepilot.catalog import QueryCatalog
from cachepilot.config import WarmingConfig
from cachepilot.engine import QueryEngine
from cachepilot.keys import ResourceKey
from cachepilot.observability.logging import log_event, timed_operation
from cachepilot.utils.async_utils import gather_settled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarmingOptions:
    """Options for a full warming pass.

    Attributes:
        user_grade: Restrict dashboard warming to this grade when it is valid.
        enable_dashboard_warming: Warm the dashboard queries.
        enable_list_warming: Warm the common list-view queries.
    """

    user_grade: int | None = None
    enable_dashboard_warming: bool = True
    enable_list_warming: bool = True


@dataclass(frozen=True)
class WarmingResult:
    """Outcome of a warming batch."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    duration_ms: float = 0.0

    def __add__(self, other: WarmingResult) -> WarmingResult:
        return WarmingResult(
            attempted=self.attempted + other.attempted,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            duration_ms=self.duration_ms + other.duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
        }


class CacheWarmer:
    """Best-effort startup prefetching through the query engine."""

    def __init__(
        self,
        engine: QueryEngine,
        catalog: QueryCatalog,
        config: WarmingConfig | None = None,
    ) -> None:
        self._engine = engine
        self._catalog = catalog
        self._config = config or WarmingConfig()

    def valid_grades(self, grades: Iterable[int] | None = None) -> list[int]:
        """Filter ``grades`` down to configured valid grades (all of them if None)."""
        allowed = list(self._config.valid_grades)
        if grades is None:
            return allowed
        return [g for g in dict.fromkeys(grades) if g in allowed]

    async def warm_dashboard(self, valid_grades: Iterable[int] | None = None) -> WarmingResult:
        """Prefetch the dashboard queries for each grade."""
        keys: list[ResourceKey] = []
        for grade in self.valid_grades(valid_grades):
            keys.extend(self._catalog.dashboard_keys(grade, limit=self._config.dashboard_limit))
        return await self._warm_batch("dashboard", keys)

    async def warm_list_view(
        self, common_filter_sets: Sequence[Mapping[str, Any]] | None = None
    ) -> WarmingResult:
        """Prefetch the list view under commonly used filter combinations."""
        filter_sets = (
            self._config.list_filter_sets if common_filter_sets is None else common_filter_sets
        )
        keys = [self._catalog.list_key(filters) for filters in filter_sets]
        return await self._warm_batch("list_view", keys)

    async def warm_application(self, options: WarmingOptions | None = None) -> WarmingResult:
        """Run dashboard and list warming together and log the total duration."""
        options = options or WarmingOptions()

        grades: list[int] | None = None
        if options.user_grade is not None:
            grades = self.valid_grades([options.user_grade]) or None

        tasks = []
        if options.enable_dashboard_warming:
            tasks.append(self.warm_dashboard(grades))
        if options.enable_list_warming:
            tasks.append(self.warm_list_view())

        logger.info("Cache warming started")
        with timed_operation(logger, "warming.application", batches=len(tasks)) as ctx:
            outcomes = await gather_settled(tasks)
            total = WarmingResult()
            for outcome in outcomes:
                if isinstance(outcome, WarmingResult):
                    total += outcome
                elif isinstance(outcome, Exception):
                    logger.warning("Warming batch failed: %s", outcome)
            ctx.update(attempted=total.attempted, succeeded=total.succeeded, failed=total.failed)

        return WarmingResult(
            attempted=total.attempted,
            succeeded=total.succeeded,
            failed=total.failed,
            duration_ms=ctx["latency_ms"],
        )

    async def _warm_batch(self, batch: str, keys: Sequence[ResourceKey]) -> WarmingResult:
        loop = asyncio.get_running_loop()
        start = loop.time()
        results = await gather_settled(self._warm_one(key) for key in keys)

        failed = 0
        for key, result in zip(keys, results, strict=True):
            if isinstance(result, BaseException):
                failed += 1
                log_event(
                    logger,
                    f"warming.{batch}.failed",
                    level=logging.WARNING,
                    message=f"Cache warming failed for {key.serialize()}: {result}",
                    key=key.serialize(),
                    error_type=type(result).__name__,
                )

        return WarmingResult(
            attempted=len(keys),
            succeeded=len(keys) - failed,
            failed=failed,
            duration_ms=round((loop.time() - start) * 1000, 1),
        )

    async def _warm_one(self, key: ResourceKey) -> None:
        options = self._catalog.resolve(key)
        await self._engine.prefetch(key, options.fetch)
