"""Supervised fire-and-forget tasks."""

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

# Strong references so running tasks are not garbage collected
_background_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background task {task.get_name()} failed: {error!r}")


def spawn_background(coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
    """Schedule a coroutine without awaiting it.

    Failures are logged here and never reach the caller.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_background_tasks() -> set[asyncio.Task]:
    """Tasks still running on the current event loop."""
    loop = asyncio.get_running_loop()
    return {task for task in _background_tasks if task.get_loop() is loop}
