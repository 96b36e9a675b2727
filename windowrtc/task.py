"""Utilities for launching async tasks."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Callable
from typing import Coroutine

logger = logging.getLogger(__name__)


def log_on_error(task: asyncio.Task[Any]) -> None:
    """Task callback that logs an exception raised inside the task."""
    if not task.cancelled() and task.exception() is not None:
        logger.error(
            f'Exception in background task {task.get_name()}: '
            f'{task.exception()!r}',
        )


def spawn_guarded_background_task(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    name: str | None = None,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a coroutine safely in the background.

    Launches the coroutine as an asyncio task and sets the done
    callback to [`log_on_error()`][windowrtc.task.log_on_error]. Otherwise,
    background tasks that are not awaited may not have their exceptions
    raised such that programs hang with no notice of the exception that
    caused the hang.

    Source: https://stackoverflow.com/questions/62588076

    Args:
        coro: Coroutine to run as task.
        args: Positional arguments for the coroutine.
        name: Optional name of the task.
        kwargs: Keyword arguments for the coroutine.

    Returns:
        Asyncio task handle.
    """
    task = asyncio.create_task(coro(*args, **kwargs), name=name)
    task.add_done_callback(log_on_error)
    return task
