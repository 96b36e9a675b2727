"""Connection engine interface and aiortc implementation.

A connection engine performs WebRTC offer/answer/candidate negotiation and
media transport for one [`PeerSession`][windowrtc.session.PeerSession].
Sessions only use the
[`ConnectionEngine`][windowrtc.engine.ConnectionEngine] protocol so the
engine can be swapped (e.g., for testing).
"""
from __future__ import annotations

import enum
import logging
import warnings
from typing import Any
from typing import Callable
from typing import Protocol
from typing import runtime_checkable

from aiortc import MediaStreamTrack
from aiortc import RTCConfiguration
from aiortc import RTCIceCandidate
from aiortc import RTCPeerConnection
from aiortc import RTCRtpSender
from aiortc import RTCSessionDescription
from cryptography.utils import CryptographyDeprecationWarning
from pyee.asyncio import AsyncIOEventEmitter

warnings.simplefilter('ignore', CryptographyDeprecationWarning)

logger = logging.getLogger(__name__)


class NegotiationState(enum.Enum):
    """Signaling states of a connection engine."""

    stable = 'stable'
    have_local_offer = 'have-local-offer'
    have_remote_offer = 'have-remote-offer'
    have_local_pranswer = 'have-local-pranswer'
    have_remote_pranswer = 'have-remote-pranswer'
    closed = 'closed'


class EngineEvent(enum.Enum):
    """Notifications emitted by a connection engine.

    The notification is emitted with the event value as name. Arguments:

    * `icecandidate`: the new local `RTCIceCandidate`, or `None` once
      gathering is complete.
    * `iceconnectionstatechange`: the new ICE connection state.
    * `icecandidateerror`: an error describing the failed candidate.
    * `icegatheringstatechange`: the new ICE gathering state.
    * `negotiationneeded`: no arguments.
    * `signalingstatechange`: the new signaling state.
    * `track`: the remote `MediaStreamTrack`.
    """

    icecandidate = 'icecandidate'
    iceconnectionstatechange = 'iceconnectionstatechange'
    icecandidateerror = 'icecandidateerror'
    icegatheringstatechange = 'icegatheringstatechange'
    negotiationneeded = 'negotiationneeded'
    signalingstatechange = 'signalingstatechange'
    track = 'track'


@runtime_checkable
class ConnectionEngine(Protocol):
    """WebRTC-like peer connection used by a session."""

    @property
    def signaling_state(self) -> str:
        """Current [`NegotiationState`][windowrtc.engine.NegotiationState]
        value.
        """
        ...

    @property
    def ice_connection_state(self) -> str:
        """Current ICE connection state."""
        ...

    @property
    def local_description(self) -> RTCSessionDescription | None:
        """Local session description, if set."""
        ...

    @property
    def remote_description(self) -> RTCSessionDescription | None:
        """Remote session description, if set."""
        ...

    def on(self, event: str, f: Callable[..., Any]) -> Any:
        """Register a handler for an engine notification."""
        ...

    def remove_listener(self, event: str, f: Callable[..., Any]) -> None:
        """Remove a handler registered with `on()`."""
        ...

    async def create_offer(self) -> RTCSessionDescription:
        """Create an offer describing the local media."""
        ...

    async def create_answer(self) -> RTCSessionDescription:
        """Create an answer to the remote offer."""
        ...

    async def set_local_description(
        self,
        description: RTCSessionDescription,
    ) -> None:
        """Apply a local description."""
        ...

    async def set_remote_description(
        self,
        description: RTCSessionDescription,
    ) -> None:
        """Apply a remote description."""
        ...

    async def add_ice_candidate(self, candidate: RTCIceCandidate) -> None:
        """Add a remote ICE candidate."""
        ...

    def add_track(self, track: MediaStreamTrack) -> RTCRtpSender:
        """Attach a local track and return its sender."""
        ...

    def get_senders(self) -> list[RTCRtpSender]:
        """Get the senders of attached local tracks."""
        ...

    def remove_track(self, sender: RTCRtpSender) -> None:
        """Stop and detach the track of a sender."""
        ...

    def restart_ice(self) -> None:
        """Request an ICE restart."""
        ...

    async def close(self) -> None:
        """Close the connection and release its resources."""
        ...


class AiortcEngine(AsyncIOEventEmitter):
    """Connection engine backed by an aiortc `RTCPeerConnection`.

    aiortc gathers every local candidate before the local description is
    set and embeds them in the SDP, so this engine never emits
    `icecandidate` or `icecandidateerror`. aiortc also has no native ICE
    restart: [`restart_ice()`][windowrtc.engine.AiortcEngine.restart_ice]
    emits `negotiationneeded` so the application can renegotiate.

    Args:
        configuration: Optional configuration (e.g., ICE servers) of the
            underlying peer connection.
    """

    def __init__(self, configuration: RTCConfiguration | None = None) -> None:
        super().__init__()
        self._pc = RTCPeerConnection(configuration)
        self._removed_senders: set[RTCRtpSender] = set()

        self._pc.on(
            'iceconnectionstatechange',
            self._on_ice_connection_state_change,
        )
        self._pc.on(
            'icegatheringstatechange',
            self._on_ice_gathering_state_change,
        )
        self._pc.on('signalingstatechange', self._on_signaling_state_change)
        self._pc.on('track', self._on_track)

    @property
    def signaling_state(self) -> str:
        """Current signaling state."""
        return self._pc.signalingState

    @property
    def ice_connection_state(self) -> str:
        """Current ICE connection state."""
        return self._pc.iceConnectionState

    @property
    def local_description(self) -> RTCSessionDescription | None:
        """Local session description, if set."""
        return self._pc.localDescription

    @property
    def remote_description(self) -> RTCSessionDescription | None:
        """Remote session description, if set."""
        return self._pc.remoteDescription

    async def create_offer(self) -> RTCSessionDescription:
        """Create an offer describing the local media."""
        return await self._pc.createOffer()

    async def create_answer(self) -> RTCSessionDescription:
        """Create an answer to the remote offer."""
        return await self._pc.createAnswer()

    async def set_local_description(
        self,
        description: RTCSessionDescription,
    ) -> None:
        """Apply a local description.

        Note:
            aiortc completes ICE gathering before returning.
        """
        await self._pc.setLocalDescription(description)

    async def set_remote_description(
        self,
        description: RTCSessionDescription,
    ) -> None:
        """Apply a remote description."""
        await self._pc.setRemoteDescription(description)

    async def add_ice_candidate(self, candidate: RTCIceCandidate) -> None:
        """Add a remote ICE candidate."""
        await self._pc.addIceCandidate(candidate)

    def add_track(self, track: MediaStreamTrack) -> RTCRtpSender:
        """Attach a local track and emit `negotiationneeded`."""
        sender = self._pc.addTrack(track)
        self.emit(EngineEvent.negotiationneeded.value)
        return sender

    def get_senders(self) -> list[RTCRtpSender]:
        """Get the senders of attached local tracks."""
        return [
            sender
            for sender in self._pc.getSenders()
            if sender not in self._removed_senders
        ]

    def remove_track(self, sender: RTCRtpSender) -> None:
        """Stop the track of a sender and hide the sender.

        aiortc cannot remove a sender from a peer connection, so the track
        is stopped, which ends its RTP stream, and the sender is no longer
        returned by
        [`get_senders()`][windowrtc.engine.AiortcEngine.get_senders].
        """
        if sender.track is not None:
            sender.track.stop()
        self._removed_senders.add(sender)

    def restart_ice(self) -> None:
        """Request an ICE restart by emitting `negotiationneeded`."""
        logger.info(
            'ICE restart requested; aiortc renegotiates on the next offer',
        )
        self.emit(EngineEvent.negotiationneeded.value)

    async def close(self) -> None:
        """Close the peer connection."""
        await self._pc.close()

    def _on_ice_connection_state_change(self) -> None:
        self.emit(
            EngineEvent.iceconnectionstatechange.value,
            self._pc.iceConnectionState,
        )

    def _on_ice_gathering_state_change(self) -> None:
        self.emit(
            EngineEvent.icegatheringstatechange.value,
            self._pc.iceGatheringState,
        )

    def _on_signaling_state_change(self) -> None:
        self.emit(
            EngineEvent.signalingstatechange.value,
            self._pc.signalingState,
        )

    def _on_track(self, track: MediaStreamTrack) -> None:
        self.emit(EngineEvent.track.value, track)
