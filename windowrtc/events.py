"""Typed event stream exposed by peer sessions."""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import inspect
import logging
from typing import Any
from typing import Callable

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    """Kinds of events emitted by a
    [`PeerSession`][windowrtc.session.PeerSession].
    """

    icecandidate = 'icecandidate'
    iceconnectionstatechange = 'iceconnectionstatechange'
    icecandidateerror = 'icecandidateerror'
    icegatheringstatechange = 'icegatheringstatechange'
    negotiationneeded = 'negotiationneeded'
    signalingstatechange = 'signalingstatechange'
    track = 'track'
    request_offer = 'request-offer'
    sent_offer = 'sent-offer'
    received_offer = 'received-offer'
    received_answer = 'received-answer'
    received_candidate = 'received-candidate'
    leave = 'leave'
    peer_left = 'peer-left'
    error = 'error'


@dataclasses.dataclass(frozen=True)
class SessionEvent:
    """Event emitted by a session.

    Attributes:
        kind: Kind of the event.
        local: Name of the local endpoint.
        remote: Name of the remote peer.
        payload: Event specific payload.
    """

    kind: EventKind
    local: str
    remote: str
    payload: Any = None


Listener = Callable[[SessionEvent], Any]


class EventEmitter:
    """Dispatches session events to listeners.

    Listeners are registered per [`EventKind`][windowrtc.events.EventKind].
    Wildcard listeners receive every event and are kept in a separate list.
    A listener may be a plain callable or a coroutine function; coroutine
    listeners are scheduled on the running event loop. Exceptions raised by
    listeners are logged and never reach the emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventKind, list[Listener]] = {
            kind: [] for kind in EventKind
        }
        self._wildcard_listeners: list[Listener] = []
        self._pending: set[asyncio.Future[Any]] = set()

    def on(
        self,
        kind: EventKind | str,
        listener: Listener,
    ) -> Listener:
        """Register a listener for a kind of event.

        Args:
            kind: Event kind or its string value (e.g. `'sent-offer'`).
            listener: Callable invoked with the
                [`SessionEvent`][windowrtc.events.SessionEvent].

        Returns:
            The listener.

        Raises:
            ValueError: If `kind` is not a known event kind.
        """
        self._listeners[EventKind(kind)].append(listener)
        return listener

    def off(
        self,
        kind: EventKind | str,
        listener: Listener | None = None,
    ) -> None:
        """Remove one listener, or all listeners if `listener` is `None`."""
        listeners = self._listeners[EventKind(kind)]
        if listener is None:
            listeners.clear()
        elif listener in listeners:
            listeners.remove(listener)

    def on_any(self, listener: Listener) -> Listener:
        """Register a listener receiving every event."""
        self._wildcard_listeners.append(listener)
        return listener

    def off_any(self, listener: Listener | None = None) -> None:
        """Remove one wildcard listener, or all if `listener` is `None`."""
        if listener is None:
            self._wildcard_listeners.clear()
        elif listener in self._wildcard_listeners:
            self._wildcard_listeners.remove(listener)

    def listeners(self, kind: EventKind | str) -> list[Listener]:
        """Get a copy of the listeners registered for a kind of event."""
        return list(self._listeners[EventKind(kind)])

    def remove_all_listeners(self) -> None:
        """Remove every listener, including wildcard listeners."""
        for listeners in self._listeners.values():
            listeners.clear()
        self._wildcard_listeners.clear()

    def emit(self, event: SessionEvent) -> None:
        """Dispatch an event to its listeners then to wildcard listeners."""
        listeners = [
            *self._listeners[event.kind],
            *self._wildcard_listeners,
        ]
        for listener in listeners:
            self._call(listener, event)

    def _call(self, listener: Listener, event: SessionEvent) -> None:
        try:
            result = listener(event)
        except Exception as e:
            logger.exception(
                f'Listener {listener!r} for {event.kind.value} event '
                f'raised {type(e).__name__}',
            )
            return

        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending.add(future)
            future.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(
                'Coroutine listener raised an exception: '
                f'{future.exception()!r}',
            )
