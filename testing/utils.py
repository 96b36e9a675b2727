"""Fixtures and utilities for testing."""
from __future__ import annotations

import asyncio
import socket
from typing import Callable

from windowrtc.events import EventEmitter
from windowrtc.events import EventKind
from windowrtc.events import SessionEvent
from windowrtc.transport.local import LocalEndpoint


def open_port() -> int:
    """Return open port.

    Source: https://stackoverflow.com/questions/2838244
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(('', 0))
    s.listen(1)
    port = s.getsockname()[1]
    s.close()
    return port


class EventRecorder:
    """Records every event emitted by an emitter.

    Args:
        emitter: Emitter to subscribe to with a wildcard listener.
    """

    def __init__(self, emitter: EventEmitter) -> None:
        self.events: list[SessionEvent] = []
        emitter.on_any(self.events.append)

    def kinds(self) -> list[EventKind]:
        """Get the kinds of the recorded events in order."""
        return [event.kind for event in self.events]

    def of(self, kind: EventKind) -> list[SessionEvent]:
        """Get the recorded events of one kind."""
        return [event for event in self.events if event.kind is kind]


async def settle(*endpoints: LocalEndpoint, rounds: int = 5) -> None:
    """Let pushed messages and scheduled handlers run to completion.

    Each round yields to the event loop, so tasks scheduled by engine
    notifications can run, then drains the push queues of the endpoints.
    """
    for _ in range(rounds):
        await asyncio.sleep(0)
        for endpoint in endpoints:
            await endpoint.drain()


async def wait_until(
    predicate: Callable[[], bool],
    timeout: float = 5,
) -> None:
    """Poll until the predicate is true.

    Raises:
        asyncio.TimeoutError: If the predicate is still false after
            `timeout` seconds.
    """

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)
