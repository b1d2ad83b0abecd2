"""Unified exception hierarchy for cachepilot.

All cachepilot-specific exceptions inherit from CachePilotError, so callers
can catch a single base class at the library boundary.

Exception Hierarchy:
    CachePilotError (base)
    +-- ConfigurationError - Configuration and settings issues
    +-- ResourceKeyError - Empty or unserializable resource keys
    +-- UnresolvedQueryError - No fetch function registered for a key
    +-- SyncError - Background sync could not be started

Speculative paths (prefetch, background revalidation, warming, metrics)
catch and log failures instead of raising; these errors surface only at
programmer-error boundaries.

Usage:
    from cachepilot.errors import SyncError

    try:
        sync_manager.start(key, interval_ms=0)
    except SyncError as e:
        logger.error("Sync error: %s (code: %s)", e.message, e.code)
"""

from cachepilot.errors.base import (
    CachePilotError,
    ConfigurationError,
    ErrorCode,
)
from cachepilot.errors.domain import (
    ResourceKeyError,
    SyncError,
    UnresolvedQueryError,
)

__all__ = [
    "CachePilotError",
    "ConfigurationError",
    "ErrorCode",
    "ResourceKeyError",
    "SyncError",
    "UnresolvedQueryError",
]
