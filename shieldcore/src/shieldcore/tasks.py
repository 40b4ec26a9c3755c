"""
Shared async task utilities for Shield Wallet components.

Provides the periodic loop used by the CLI watch mode and the fire-and-forget
helper used to run work off a request's critical path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from loguru import logger


async def run_periodic_task(
    name: str,
    callback: Callable[[], Coroutine[Any, Any, None]],
    interval: float,
    initial_delay: float = 0.0,
    running_check: Callable[[], bool] | None = None,
) -> None:
    """
    Await ``callback`` every ``interval`` seconds.

    The loop ends when the task is cancelled (returning normally once the
    first call ran) or when ``running_check`` returns False. A failing call is
    logged under ``name`` and the next one is scheduled as usual.
    """
    if initial_delay > 0:
        await asyncio.sleep(initial_delay)

    while running_check is None or running_check():
        try:
            await callback()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info(f"{name}: cancelled")
            break
        except Exception as e:
            logger.error(f"{name} failed: {e}")
            await asyncio.sleep(interval)

    logger.info(f"{name}: stopped")


class BackgroundTaskGroup:
    """
    Keeps strong references to fire-and-forget tasks and logs their failures.

    Tasks are removed from the group as soon as they finish. ``drain()`` waits
    for whatever is still pending, e.g. before closing shared resources.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background task {task.get_name()} failed: {exc}")

    async def drain(self) -> None:
        """Wait for all pending tasks to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
