"""cachepilot - Adaptive client-side caching and prefetching coordinator.

Decides how long query results stay fresh, what to fetch before it is asked
for, and what to revalidate in the background, on top of a query engine.
"""

from cachepilot.catalog import QueryCatalog, QueryOptions
from cachepilot.engine import InMemoryQueryEngine, QueryEngine
from cachepilot.keys import ResourceKey
from cachepilot.prefetch import (
    CacheManager,
    CacheStatus,
    InitializeOptions,
    get_cache_manager,
    reset_cache_manager,
)

__version__ = "0.1.0"

__all__ = [
    "CacheManager",
    "CacheStatus",
    "InMemoryQueryEngine",
    "InitializeOptions",
    "QueryCatalog",
    "QueryEngine",
    "QueryOptions",
    "ResourceKey",
    "get_cache_manager",
    "reset_cache_manager",
]
