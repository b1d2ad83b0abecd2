"""Domain errors for resource keys, prefetching and background sync."""

from __future__ import annotations

from typing import Any

from cachepilot.errors.base import CachePilotError, ErrorCode


class ResourceKeyError(CachePilotError):
    """Raised when a resource key cannot be constructed or serialized."""

    default_message = "Invalid resource key"
    default_code = ErrorCode.KEY_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        segments: Any = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if segments is not None:
            details["segments"] = repr(segments)
        super().__init__(message, code=code, details=details, cause=cause)


class UnresolvedQueryError(CachePilotError):
    """Raised when no fetch function is registered for a resource key."""

    default_message = "No query registered for resource key"
    default_code = ErrorCode.KEY_UNRESOLVED

    def __init__(
        self,
        message: str | None = None,
        *,
        key: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if key:
            details["key"] = key
        super().__init__(message, code=code, details=details, cause=cause)


class SyncError(CachePilotError):
    """Raised when background sync cannot be started."""

    default_message = "Background sync error"
    default_code = ErrorCode.SYN_INVALID_INTERVAL

    def __init__(
        self,
        message: str | None = None,
        *,
        key: str | None = None,
        interval_ms: float | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if key:
            details["key"] = key
        if interval_ms is not None:
            details["interval_ms"] = interval_ms
        super().__init__(message, code=code, details=details, cause=cause)
