"""Detached background work for best-effort side effects.

Tasks are kept in a module-level set until they finish; the event loop only
holds weak references to running tasks.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background task %s failed: %s", task.get_name(), exc)


def start_background(coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
    """Schedule *coro* without awaiting it; failures are logged, never raised."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain_background(timeout: float | None = None) -> None:
    """Wait for pending background tasks (shutdown and tests)."""
    loop = asyncio.get_running_loop()
    pending = [t for t in _background_tasks if t.get_loop() is loop]
    if pending:
        await asyncio.wait(pending, timeout=timeout)
