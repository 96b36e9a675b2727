from __future__ import annotations

import asyncio
import logging

import pytest

from windowrtc.events import EventEmitter
from windowrtc.events import EventKind
from windowrtc.events import SessionEvent


def _event(kind: EventKind, payload=None) -> SessionEvent:
    return SessionEvent(kind, 'Sender', 'Receiver', payload)


def test_listener_receives_matching_kind() -> None:
    emitter = EventEmitter()
    received: list[SessionEvent] = []
    emitter.on(EventKind.sent_offer, received.append)

    emitter.emit(_event(EventKind.sent_offer, 'offer'))
    emitter.emit(_event(EventKind.received_answer))

    assert len(received) == 1
    assert received[0].payload == 'offer'


def test_listener_registered_by_string_value() -> None:
    emitter = EventEmitter()
    received: list[SessionEvent] = []
    emitter.on('peer-left', received.append)

    emitter.emit(_event(EventKind.peer_left))

    assert [e.kind for e in received] == [EventKind.peer_left]


def test_unknown_kind_raises() -> None:
    emitter = EventEmitter()
    with pytest.raises(ValueError):
        emitter.on('bye', print)


def test_wildcard_listeners_after_kind_listeners() -> None:
    emitter = EventEmitter()
    order: list[str] = []
    emitter.on_any(lambda e: order.append(f'any:{e.kind.value}'))
    emitter.on(EventKind.leave, lambda e: order.append('leave'))

    emitter.emit(_event(EventKind.leave))
    emitter.emit(_event(EventKind.error))

    assert order == ['leave', 'any:leave', 'any:error']


def test_off_and_off_any() -> None:
    emitter = EventEmitter()
    received: list[SessionEvent] = []
    first = emitter.on(EventKind.track, received.append)
    emitter.on(EventKind.track, lambda e: received.append(e))
    wildcard = emitter.on_any(received.append)

    emitter.off(EventKind.track, first)
    assert len(emitter.listeners(EventKind.track)) == 1
    emitter.off(EventKind.track)
    assert emitter.listeners(EventKind.track) == []

    emitter.off_any(wildcard)
    emitter.emit(_event(EventKind.track))
    assert received == []

    # Removing listeners that were never added is a no-op
    emitter.off(EventKind.track, first)
    emitter.off_any(wildcard)


def test_remove_all_listeners() -> None:
    emitter = EventEmitter()
    received: list[SessionEvent] = []
    emitter.on(EventKind.error, received.append)
    emitter.on_any(received.append)

    emitter.remove_all_listeners()
    emitter.emit(_event(EventKind.error))

    assert received == []


def test_listener_exception_is_logged(caplog) -> None:
    caplog.set_level(logging.ERROR)
    emitter = EventEmitter()
    received: list[SessionEvent] = []

    def _bad(event: SessionEvent) -> None:
        raise RuntimeError('listener failed')

    emitter.on(EventKind.error, _bad)
    emitter.on(EventKind.error, received.append)

    emitter.emit(_event(EventKind.error))

    assert len(received) == 1
    assert any('raised RuntimeError' in r.message for r in caplog.records)


@pytest.mark.asyncio()
async def test_coroutine_listeners(caplog) -> None:
    caplog.set_level(logging.ERROR)
    emitter = EventEmitter()
    received: list[SessionEvent] = []

    async def _good(event: SessionEvent) -> None:
        received.append(event)

    async def _bad(event: SessionEvent) -> None:
        raise RuntimeError('async listener failed')

    emitter.on(EventKind.icecandidate, _good)
    emitter.on(EventKind.icecandidate, _bad)

    emitter.emit(_event(EventKind.icecandidate))
    await asyncio.sleep(0.01)

    assert len(received) == 1
    assert any('async listener failed' in r.message for r in caplog.records)
