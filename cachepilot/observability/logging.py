"""Structured logging and timing utilities for cachepilot.

Provides:
- StructuredFormatter: JSON log formatter for structured log output
- timed_operation: Context manager that logs operation timing
- log_event: Helper for structured event logging with metrics
- configure_structured_logging: One-call root logger setup

Uses stdlib logging only.

Usage:
    from cachepilot.observability.logging import timed_operation, log_event

    with timed_operation(logger, "warming.application", grade=2):
        await warmer.warm_dashboard([2])

    log_event(logger, "prefetch.detail.failed", level=logging.WARNING,
              key='["exam","detail","e1"]', error="timeout")
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


def _split_fields(fields: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    # bool is an int subclass but belongs with metadata
    metrics = {
        k: v for k, v in fields.items() if isinstance(v, (int, float)) and not isinstance(v, bool)
    }
    metadata = {k: v for k, v in fields.items() if k not in metrics}
    return metrics, metadata


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs log records as single-line JSON with standard fields:
    timestamp, level, logger, message, plus any extra fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "event_type", None):
            entry["event"] = record.event_type  # type: ignore[attr-defined]
        if getattr(record, "metrics", None):
            entry["metrics"] = record.metrics  # type: ignore[attr-defined]
        if getattr(record, "metadata", None):
            entry["metadata"] = record.metadata  # type: ignore[attr-defined]

        if record.exc_info and record.exc_info[1]:
            entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


@contextmanager
def timed_operation(
    log: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **extra: Any,
) -> Iterator[dict[str, Any]]:
    """Log an operation's start and completion with its duration.

    Works inside coroutines as well; the block may contain ``await``.

    Args:
        log: Logger instance.
        operation: Operation name (e.g., "warming.application").
        level: Log level for the completion message (start is always DEBUG).
        **extra: Additional key-value pairs included in the log.

    Yields:
        dict that can be updated with additional metrics during the operation.
        ``latency_ms`` is written into it on completion.
    """
    ctx: dict[str, Any] = {}
    start = time.perf_counter()
    log.debug(
        "%s started",
        operation,
        extra={"event_type": f"{operation}.start", "metadata": extra},
    )
    try:
        yield ctx
    except Exception:
        elapsed_ms = (time.perf_counter() - start) * 1000
        log.error(
            "%s failed after %.1fms",
            operation,
            elapsed_ms,
            exc_info=True,
            extra={
                "event_type": f"{operation}.failed",
                "metrics": {"latency_ms": round(elapsed_ms, 1)},
                "metadata": extra,
            },
        )
        raise

    elapsed_ms = (time.perf_counter() - start) * 1000
    ctx["latency_ms"] = round(elapsed_ms, 1)
    metrics, metadata = _split_fields({**extra, **ctx})
    log.log(
        level,
        "%s completed in %.1fms",
        operation,
        elapsed_ms,
        extra={
            "event_type": f"{operation}.complete",
            "metrics": metrics,
            "metadata": metadata,
        },
    )


def log_event(
    log: logging.Logger,
    event_type: str,
    level: int = logging.INFO,
    message: str | None = None,
    **fields: Any,
) -> None:
    """Log a structured event with typed fields.

    Args:
        log: Logger instance.
        event_type: Event type string (e.g., "sync.tick.failed").
        level: Log level.
        message: Optional human-readable message. Defaults to event_type.
        **fields: Arbitrary key-value fields. Numeric values go to metrics,
                  others go to metadata.
    """
    if not log.isEnabledFor(level):
        return

    metrics, metadata = _split_fields(fields)
    log.log(
        level,
        message or event_type,
        extra={
            "event_type": event_type,
            "metrics": metrics or None,
            "metadata": metadata or None,
        },
    )


def configure_structured_logging(level: int = logging.INFO) -> None:
    """Configure the root logger with structured JSON output.

    Call once at host application startup.

    Args:
        level: Root log level.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger()
    root.setLevel(level)
    # Replace existing handlers to avoid duplicate output
    root.handlers = [handler]
