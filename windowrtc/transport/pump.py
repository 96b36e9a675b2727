"""Ordered delivery of pushed messages to endpoint listeners."""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any

from windowrtc.channels import Operation
from windowrtc.task import spawn_guarded_background_task
from windowrtc.transport.protocols import PushListener

logger = logging.getLogger(__name__)


class PushPump:
    """Queue of pushed messages drained by a background task.

    Pushed messages are delivered to listeners one at a time, in the order
    they were put, from a task separate from the one reading the transport.
    A listener can therefore await a request/response round trip on the
    same transport without blocking the reader that would receive the
    response.

    Args:
        name: Name used for the background task and in log messages.
    """

    def __init__(self, name: str = 'push-pump') -> None:
        self._name = name
        self._listeners: dict[Operation, list[PushListener]] = defaultdict(
            list,
        )
        self._queue: asyncio.Queue[tuple[Operation, Any]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    def add_listener(
        self,
        operation: Operation,
        listener: PushListener,
    ) -> None:
        """Add a listener for an operation."""
        self._listeners[operation].append(listener)

    def remove_listener(
        self,
        operation: Operation,
        listener: PushListener,
    ) -> None:
        """Remove a listener for an operation if present."""
        listeners = self._listeners[operation]
        if listener in listeners:
            listeners.remove(listener)

    def put(self, operation: Operation, payload: Any) -> None:
        """Queue a pushed message and start the pump if needed."""
        self._queue.put_nowait((operation, payload))
        if self._task is None:
            self._task = spawn_guarded_background_task(
                self._run,
                name=self._name,
            )

    async def join(self) -> None:
        """Wait until every queued message has been delivered."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop the pump. Undelivered messages are dropped."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def _run(self) -> None:
        while True:
            operation, payload = await self._queue.get()
            try:
                await self._deliver(operation, payload)
            finally:
                self._queue.task_done()

    async def _deliver(self, operation: Operation, payload: Any) -> None:
        for listener in list(self._listeners[operation]):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    f'{self._name}: listener for {operation.value} failed',
                )
