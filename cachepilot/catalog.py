"""Query catalog: resolves resource keys to fetch functions.

The coordinator works with keys only. Before issuing a fetch it asks the
catalog for the function that loads a key. Fetchers are registered against
key prefixes and matched by longest prefix, so one registration for
``("exam", "detail")`` serves every exam detail key.

The catalog also knows the key layouts the coordinator derives on its own
(next list page, dashboard warming) and which keys are "related" to a group
key (e.g. the statistics tied to a selected grade).

Usage:
    catalog = QueryCatalog()
    catalog.register(("exam", "detail"), lambda key: api.get_exam(key.segments[-1]))
    catalog.relate("grade", lambda key: catalog.dashboard_keys(key.segments[-1]))

    options = catalog.resolve(ResourceKey.of("exam", "detail", "e1"))
    await options.fetch()
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from cachepilot.config import CatalogConfig
from cachepilot.engine import Fetcher
from cachepilot.errors import UnresolvedQueryError
from cachepilot.keys import ResourceKey

logger = logging.getLogger(__name__)

KeyFetcher = Callable[[ResourceKey], Awaitable[Any]]
KeyDeriver = Callable[[ResourceKey], "ResourceKey | Sequence[ResourceKey]"]


@dataclass(frozen=True)
class QueryOptions:
    """A key bound to the function that loads it."""

    key: ResourceKey
    fetch: Fetcher


class QueryCatalog:
    """Registry of fetchers, key layouts and related-resource groups."""

    def __init__(self, config: CatalogConfig | None = None) -> None:
        self._config = config or CatalogConfig()
        self._fetchers: list[tuple[ResourceKey, KeyFetcher]] = []
        self._related: list[tuple[ResourceKey, list[KeyDeriver]]] = []

    @property
    def config(self) -> CatalogConfig:
        return self._config

    def register(self, prefix: ResourceKey | Sequence[Any] | str, fetcher: KeyFetcher) -> None:
        """Register a fetcher for every key starting with ``prefix``.

        Re-registering the same prefix replaces the previous fetcher.
        """
        prefix_key = ResourceKey.coerce(prefix)
        self._fetchers = [(p, f) for p, f in self._fetchers if p != prefix_key]
        self._fetchers.append((prefix_key, fetcher))
        # Longest prefix first
        self._fetchers.sort(key=lambda item: len(item[0]), reverse=True)

    def resolve(self, key: ResourceKey) -> QueryOptions:
        """Bind a key to its fetch function.

        Raises:
            UnresolvedQueryError: If no registered prefix matches the key.
        """
        for prefix, fetcher in self._fetchers:
            if key.startswith(prefix):
                return QueryOptions(key=key, fetch=functools.partial(fetcher, key))
        raise UnresolvedQueryError(
            f"No query registered for {key.serialize()}", key=key.serialize()
        )

    def can_resolve(self, key: ResourceKey) -> bool:
        return any(key.startswith(prefix) for prefix, _ in self._fetchers)

    def relate(self, group: ResourceKey | Sequence[Any] | str, *derivers: KeyDeriver) -> None:
        """Declare the keys that depend on group keys starting with ``group``.

        Each deriver receives the concrete group key and returns one key or a
        sequence of keys.
        """
        group_key = ResourceKey.coerce(group)
        for existing, existing_derivers in self._related:
            if existing == group_key:
                existing_derivers.extend(derivers)
                return
        self._related.append((group_key, list(derivers)))

    def related(self, group_key: ResourceKey) -> list[ResourceKey]:
        """Keys related to ``group_key``, in declaration order, without duplicates."""
        keys: list[ResourceKey] = []
        for prefix, derivers in self._related:
            if not group_key.startswith(prefix):
                continue
            for derive in derivers:
                derived = derive(group_key)
                for key in [derived] if isinstance(derived, ResourceKey) else derived:
                    if key not in keys:
                        keys.append(key)
        return keys

    # Key layouts

    def detail_key(self, resource_id: Any) -> ResourceKey:
        return ResourceKey((*self._config.detail_prefix, resource_id))

    def list_key(self, filters: Mapping[str, Any] | None = None) -> ResourceKey:
        return ResourceKey((*self._config.list_prefix, dict(filters or {})))

    def dashboard_keys(self, grade: int, limit: int = 5) -> list[ResourceKey]:
        """Keys that make up the dashboard for one grade."""
        return [
            ResourceKey(
                (*self._config.dashboard_status_prefix, {"grade": grade, "limit": limit})
            ),
            ResourceKey((*self._config.score_distribution_prefix, {"grade": grade})),
        ]
