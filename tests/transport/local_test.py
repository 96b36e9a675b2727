from __future__ import annotations

import asyncio

import pytest

from windowrtc.channels import Operation
from windowrtc.exceptions import EndpointClosedError
from windowrtc.exceptions import TransportError
from windowrtc.transport.local import LocalEndpoint
from windowrtc.transport.local import LocalHub
from windowrtc.transport.protocols import CoordinatorTransport
from windowrtc.transport.protocols import EndpointHandle
from windowrtc.transport.protocols import EndpointTransport


def test_local_transport_protocols() -> None:
    hub = LocalHub()
    endpoint = hub.endpoint()
    assert isinstance(hub, CoordinatorTransport)
    assert isinstance(endpoint, EndpointTransport)
    assert isinstance(endpoint, EndpointHandle)


def test_endpoint_labels() -> None:
    hub = LocalHub()
    assert repr(hub.endpoint()) == 'LocalEndpoint(local-0)'
    assert repr(hub.endpoint('console')) == 'LocalEndpoint(console)'


@pytest.mark.asyncio()
async def test_invoke_dispatches_to_handler() -> None:
    hub = LocalHub()
    calls: list[tuple[LocalEndpoint, object]] = []

    async def _handler(handle: LocalEndpoint, payload: object) -> str:
        calls.append((handle, payload))
        return 'result'

    hub.handle(Operation.get_own_window_name, _handler)
    endpoint = hub.endpoint()

    assert await endpoint.invoke(Operation.get_own_window_name, 1) == 'result'
    await endpoint.send(Operation.get_own_window_name)

    assert calls == [(endpoint, 1), (endpoint, None)]

    hub.remove_handler(Operation.get_own_window_name)
    hub.remove_handler(Operation.get_own_window_name)
    with pytest.raises(TransportError, match='No coordinator handler'):
        await endpoint.invoke(Operation.get_own_window_name)


@pytest.mark.asyncio()
async def test_listener_can_invoke_without_deadlock() -> None:
    hub = LocalHub()
    endpoint = hub.endpoint()
    results: list[str] = []

    async def _handler(handle: LocalEndpoint, payload: object) -> str:
        return 'pong'

    async def _listener(payload: object) -> None:
        results.append(await endpoint.invoke(Operation.get_own_window_name))

    hub.handle(Operation.get_own_window_name, _handler)
    endpoint.on(Operation.signal, _listener)

    await endpoint.notify(Operation.signal, 'ping')
    await asyncio.wait_for(endpoint.drain(), 1)

    assert results == ['pong']


@pytest.mark.asyncio()
async def test_remove_listener() -> None:
    endpoint = LocalHub().endpoint()
    received: list[object] = []
    endpoint.on(Operation.log, received.append)
    endpoint.remove_listener(Operation.log, received.append)

    await endpoint.notify(Operation.log, 'line')
    await endpoint.drain()

    assert received == []


@pytest.mark.asyncio()
async def test_close_fires_disappear_once() -> None:
    endpoint = LocalHub().endpoint()
    fired: list[int] = []

    async def _callback() -> None:
        fired.append(1)

    endpoint.on_disappear(_callback)
    assert not endpoint.closed

    await endpoint.close()
    await endpoint.close()

    assert endpoint.closed
    assert fired == [1]

    with pytest.raises(EndpointClosedError):
        await endpoint.invoke(Operation.get_registered_windows)
    with pytest.raises(EndpointClosedError):
        await endpoint.notify(Operation.log, 'line')
    # Draining a closed endpoint returns immediately
    await asyncio.wait_for(endpoint.drain(), 1)
