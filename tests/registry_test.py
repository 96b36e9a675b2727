from __future__ import annotations

import logging

import pytest

from windowrtc.channels import Operation
from windowrtc.exceptions import DuplicateNameError
from windowrtc.exceptions import NotRegisteredError
from windowrtc.exceptions import SelfNotRegisteredError
from windowrtc.messages import SignalChannel
from windowrtc.messages import SignalingEnvelope
from windowrtc.registry import PeerRegistry
from windowrtc.transport.local import LocalHub


def test_register_endpoint() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    endpoint = hub.endpoint()

    entry = registry.register('  Sender ', endpoint)

    assert entry.name == 'Sender'
    assert entry.handle is endpoint
    assert 'Sender' in registry
    assert None not in registry
    assert len(registry) == 1
    assert registry.get(' Sender') is entry
    assert registry.get_by_handle(endpoint) is entry
    assert registry.resolve_own_name(endpoint) == 'Sender'
    assert 'Sender' in repr(entry)


@pytest.mark.parametrize('name', ('', '   '))
def test_register_empty_name(name: str) -> None:
    registry = PeerRegistry()
    with pytest.raises(ValueError, match='non-empty'):
        registry.register(name, LocalHub().endpoint())
    assert len(registry) == 0


def test_register_duplicate_name() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    registry.register('Sender', hub.endpoint())

    with pytest.raises(DuplicateNameError):
        registry.register('Sender', hub.endpoint())
    # Names are trimmed before comparison
    with pytest.raises(DuplicateNameError):
        registry.register(' Sender ', hub.endpoint())

    assert registry.list_names() == ['Sender']


def test_register_duplicate_handle() -> None:
    registry = PeerRegistry()
    endpoint = LocalHub().endpoint()
    registry.register('Sender', endpoint)

    with pytest.raises(DuplicateNameError):
        registry.register('Receiver', endpoint)

    assert registry.list_names() == ['Sender']


def test_names_are_case_sensitive() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    registry.register('sender', hub.endpoint())
    registry.register('Sender', hub.endpoint())
    assert sorted(registry.list_names()) == ['Sender', 'sender']


def test_resolve_unregistered_handle() -> None:
    registry = PeerRegistry()
    with pytest.raises(SelfNotRegisteredError) as exc_info:
        registry.resolve_own_name(LocalHub().endpoint())
    assert isinstance(exc_info.value, NotRegisteredError)


@pytest.mark.asyncio()
async def test_unregister_broadcasts_peer_left() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    endpoints = {name: hub.endpoint(name) for name in ('A', 'B', 'C')}
    received: dict[str, list[SignalingEnvelope]] = {}
    for name, endpoint in endpoints.items():
        registry.register(name, endpoint)
        received[name] = []
        endpoint.on(Operation.signal, received[name].append)

    await registry.unregister('B')
    for endpoint in endpoints.values():
        await endpoint.drain()

    assert 'B' not in registry
    assert registry.get_by_handle(endpoints['B']) is None
    assert received['B'] == []
    for name in ('A', 'C'):
        assert received[name] == [
            SignalingEnvelope(
                channel=SignalChannel.peer_left,
                sender='B',
                receiver=name,
                payload='',
            ),
        ]


@pytest.mark.asyncio()
async def test_unregister_is_idempotent() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    a = hub.endpoint()
    registry.register('A', a)
    registry.register('B', hub.endpoint())
    received: list[SignalingEnvelope] = []
    a.on(Operation.signal, received.append)

    await registry.unregister('B')
    await registry.unregister('B')
    await registry.unregister('never-registered')
    await a.drain()

    assert len(received) == 1


@pytest.mark.asyncio()
async def test_endpoint_close_unregisters() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    a = hub.endpoint()
    b = hub.endpoint()
    registry.register('A', a)
    registry.register('B', b)
    received: list[SignalingEnvelope] = []
    a.on(Operation.signal, received.append)

    await b.close()
    await a.drain()

    assert registry.list_names() == ['A']
    assert [e.sender for e in received] == ['B']


@pytest.mark.asyncio()
async def test_stale_disappearance_keeps_reused_name() -> None:
    hub = LocalHub()
    registry = PeerRegistry()
    old = hub.endpoint()
    new = hub.endpoint()

    registry.register('Sender', old)
    await registry.unregister('Sender')
    entry = registry.register('Sender', new)

    await old.close()

    assert registry.get('Sender') is entry


@pytest.mark.asyncio()
async def test_unregister_skips_closed_endpoints(caplog) -> None:
    caplog.set_level(logging.WARNING)
    hub = LocalHub()
    registry = PeerRegistry()
    a = hub.endpoint()
    registry.register('A', a)
    registry.register('B', hub.endpoint())

    # Close without firing disappearance so A stays registered
    a._closed = True
    await registry.unregister('B')

    assert registry.list_names() == ['A']
    assert any('closed' in r.message for r in caplog.records)
