"""Shared test doubles for cachepilot tests."""

from __future__ import annotations

import asyncio
from typing import Any

from cachepilot.catalog import QueryCatalog
from cachepilot.keys import ResourceKey


class FakeBackend:
    """Async data source that records every fetch it serves.

    Keys listed in ``failing`` raise RuntimeError. ``delay`` (seconds) keeps
    fetches in flight long enough to observe deduplication.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[ResourceKey] = []
        self.failing: set[ResourceKey] = set()
        self.in_flight = 0
        self.max_in_flight: dict[ResourceKey, int] = {}
        self._in_flight_by_key: dict[ResourceKey, int] = {}

    async def fetch(self, key: ResourceKey) -> dict[str, Any]:
        self.calls.append(key)
        current = self._in_flight_by_key.get(key, 0) + 1
        self._in_flight_by_key[key] = current
        self.max_in_flight[key] = max(self.max_in_flight.get(key, 0), current)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if key in self.failing:
                raise RuntimeError(f"backend unavailable for {key}")
            return {"key": key.serialize(), "version": len(self.calls)}
        finally:
            self._in_flight_by_key[key] -= 1

    def call_count(self, key: ResourceKey) -> int:
        return sum(1 for k in self.calls if k == key)


def build_catalog(backend: FakeBackend) -> QueryCatalog:
    """Catalog with every default key layout wired to ``backend``."""
    catalog = QueryCatalog()
    catalog.register(("exam",), backend.fetch)
    catalog.register(("dashboard",), backend.fetch)
    catalog.register(("statistics",), backend.fetch)
    catalog.register(("submission",), backend.fetch)
    catalog.relate("grade", lambda key: catalog.dashboard_keys(key.segments[-1]))
    return catalog
