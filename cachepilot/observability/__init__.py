"""Observability - structured logging and operation timing.

Submodules:
    logging: Structured JSON logging formatter and timing utilities
"""

from cachepilot.observability.logging import (
    StructuredFormatter,
    configure_structured_logging,
    log_event,
    timed_operation,
)

__all__ = [
    "StructuredFormatter",
    "configure_structured_logging",
    "log_event",
    "timed_operation",
]
