"""End-to-end negotiation between two endpoints using aiortc engines."""
from __future__ import annotations

import pytest
from aiortc.mediastreams import AudioStreamTrack

from testing.coordinator import LocalCoordinatorInfo
from testing.utils import EventRecorder
from testing.utils import wait_until
from windowrtc.config import SessionConfig
from windowrtc.engine import NegotiationState
from windowrtc.events import EventKind
from windowrtc.exceptions import EndpointClosedError
from windowrtc.session import PeerSession


@pytest.mark.timeout(30)
@pytest.mark.asyncio()
async def test_negotiate_then_peer_endpoint_closes(
    local_coordinator: LocalCoordinatorInfo,
) -> None:
    coordinator, hub = local_coordinator
    a_endpoint = hub.endpoint('window-a')
    b_endpoint = hub.endpoint('window-b')
    coordinator.register('A', a_endpoint)
    coordinator.register('B', b_endpoint)

    config = SessionConfig()
    a = await PeerSession.with_peer('B', transport=a_endpoint, config=config)
    b = await PeerSession.with_peer('A', transport=b_endpoint, config=config)
    a_events = EventRecorder(a)
    b_events = EventRecorder(b)

    await a.add_stream([AudioStreamTrack()])
    await wait_until(
        lambda: len(a_events.of(EventKind.received_answer)) == 1,
        timeout=10,
    )

    assert EventKind.negotiationneeded in a_events.kinds()
    assert len(a_events.of(EventKind.sent_offer)) == 1
    assert len(b_events.of(EventKind.received_offer)) == 1
    assert [e.payload.kind for e in b_events.of(EventKind.track)] == ['audio']
    assert a.negotiation_state is NegotiationState.stable
    assert b.negotiation_state is NegotiationState.stable

    # Closing B's endpoint unregisters it and A is told B left
    await b_endpoint.close()
    await wait_until(lambda: len(a_events.of(EventKind.peer_left)) == 1)

    assert coordinator.registry.list_names() == ['A']
    assert a.negotiation_state is not NegotiationState.closed

    await a.dispose()
    assert a.negotiation_state is NegotiationState.closed

    # B can no longer reach the coordinator to say goodbye
    await b.dispose()
    errors = b_events.of(EventKind.error)
    assert len(errors) == 1
    assert isinstance(errors[0].payload, EndpointClosedError)

    await a_endpoint.close()
