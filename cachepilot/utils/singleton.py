"""Thread-safe singleton decorator for process-wide accessors.

Usage::

    @thread_safe_singleton
    def get_cache_manager() -> CacheManager:
        return CacheManager(...)

    manager = get_cache_manager()     # Creates on first call
    get_cache_manager.peek()          # Cached instance or None (no creation)
    get_cache_manager.reset()         # Clear for testing
"""

from __future__ import annotations

import functools
import threading
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


def thread_safe_singleton(factory_fn: Callable[..., T]) -> Callable[..., T]:
    """Cache the return value of a factory function.

    Thread-safe via double-check locking. The decorated function gains
    ``reset()`` and ``peek()``.

    Note: only the *first* call's arguments are used to create the instance.
    """
    instance: T | None = None
    lock = threading.Lock()

    @functools.wraps(factory_fn)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        nonlocal instance
        if instance is not None:
            return instance
        with lock:
            if instance is not None:
                return instance
            instance = factory_fn(*args, **kwargs)
            return instance

    def reset() -> None:
        nonlocal instance
        with lock:
            instance = None

    def peek() -> T | None:
        return instance

    wrapper.reset = reset  # type: ignore[attr-defined]
    wrapper.peek = peek  # type: ignore[attr-defined]
    return wrapper
