"""Asynchronous helpers for background tasks and all-settle batches."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")


def log_task_exception(
    task: asyncio.Task[Any],
    msg: str = "Background task failed",
    logger_instance: logging.Logger | None = None,
) -> None:
    """Callback for add_done_callback to log task exceptions.

    Args:
        task: The completed asyncio task.
        msg: Message to log on failure.
        logger_instance: Logger to use. Defaults to module logger.
    """
    log = logger_instance or logger
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.warning("%s: %s", msg, exc, exc_info=exc)


def task_callback(
    msg: str = "Background task failed", logger_instance: logging.Logger | None = None
) -> Callable[[asyncio.Task[Any]], None]:
    """Create a callback for add_done_callback with a custom message.

    Example:
        task = asyncio.create_task(revalidate())
        task.add_done_callback(task_callback("Revalidation failed", my_logger))
    """
    return functools.partial(log_task_exception, msg=msg, logger_instance=logger_instance)


async def gather_settled(awaitables: Iterable[Awaitable[R]]) -> list[R | BaseException]:
    """Await every awaitable, collecting exceptions instead of raising.

    One failing member never cancels its siblings. Cancellation of the
    caller still propagates.

    Returns:
        Results and exceptions in input order.
    """
    return list(await asyncio.gather(*awaitables, return_exceptions=True))
