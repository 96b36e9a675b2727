"""Peer session negotiating a connection with one named peer.

Example:
    ```python
    from windowrtc.session import PeerSession
    from windowrtc.session import define_transport

    define_transport(transport)

    session = await PeerSession.with_peer('Receiver')
    session.on('received-answer', lambda event: print('connected'))
    session.on('error', lambda event: print(event.payload))

    await session.add_stream([audio_track])
    ...
    await session.dispose()
    ```
"""
from __future__ import annotations

import logging
import sys
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Iterable

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from aiortc import MediaStreamTrack
from aiortc import RTCIceCandidate
from aiortc import RTCSessionDescription
from aiortc.contrib.signaling import object_from_string
from aiortc.contrib.signaling import object_to_string

from windowrtc.channels import Operation
from windowrtc.config import SessionConfig
from windowrtc.engine import AiortcEngine
from windowrtc.engine import ConnectionEngine
from windowrtc.engine import EngineEvent
from windowrtc.engine import NegotiationState
from windowrtc.events import EventEmitter
from windowrtc.events import EventKind
from windowrtc.events import SessionEvent
from windowrtc.exceptions import PeerNotRegisteredError
from windowrtc.exceptions import SelfNotRegisteredError
from windowrtc.exceptions import TransportNotConfiguredError
from windowrtc.messages import MessageDecodeError
from windowrtc.messages import SignalChannel
from windowrtc.messages import SignalingEnvelope
from windowrtc.transport.protocols import EndpointTransport

logger = logging.getLogger(__name__)

_transport: EndpointTransport | None = None

# ICE connection states which trigger an automatic ICE restart
RESTART_ICE_STATES = frozenset(('failed', 'disconnected'))


def define_transport(transport: EndpointTransport | None) -> None:
    """Define the endpoint transport used by new sessions.

    Args:
        transport: Transport connecting this endpoint to the coordinator,
            or `None` to clear the current definition.
    """
    global _transport
    _transport = transport


def get_transport() -> EndpointTransport:
    """Get the endpoint transport defined with `define_transport()`.

    Raises:
        TransportNotConfiguredError: If no transport has been defined.
    """
    if _transport is None:
        raise TransportNotConfiguredError(
            'Endpoint transport is not defined. Call define_transport() '
            'before creating sessions.',
        )
    return _transport


class PeerSession(EventEmitter):
    """Negotiation lifecycle with one named peer.

    A session owns one [`ConnectionEngine`][windowrtc.engine.ConnectionEngine]
    and exchanges signaling envelopes with exactly one peer through the
    coordinator's relay. Progress is exposed as
    [`SessionEvent`][windowrtc.events.SessionEvent]s.

    Warning:
        Sessions should be created with
        [`with_peer()`][windowrtc.session.PeerSession.with_peer] which checks
        both endpoints are registered before allocating the engine.

    Args:
        name: Name this endpoint is registered with.
        peer: Name of the peer endpoint.
        transport: Transport connecting this endpoint to the coordinator.
        engine: Connection engine exclusively owned by this session.
    """

    def __init__(
        self,
        name: str,
        peer: str,
        transport: EndpointTransport,
        engine: ConnectionEngine,
    ) -> None:
        super().__init__()
        self._name = name
        self._peer = peer
        self._transport = transport
        self._engine = engine
        self._disposed = False
        self._pending_candidates: list[RTCIceCandidate] = []

        self._engine_handlers: list[tuple[str, Callable[..., Any]]] = [
            (EngineEvent.icecandidate.value, self._on_ice_candidate),
            (
                EngineEvent.iceconnectionstatechange.value,
                self._on_ice_connection_state_change,
            ),
            (
                EngineEvent.icecandidateerror.value,
                self._reemit(EventKind.icecandidateerror),
            ),
            (
                EngineEvent.icegatheringstatechange.value,
                self._reemit(EventKind.icegatheringstatechange),
            ),
            (
                EngineEvent.negotiationneeded.value,
                self._reemit(EventKind.negotiationneeded),
            ),
            (
                EngineEvent.signalingstatechange.value,
                self._reemit(EventKind.signalingstatechange),
            ),
            (EngineEvent.track.value, self._reemit(EventKind.track)),
        ]
        for event, handler in self._engine_handlers:
            self._engine.on(event, handler)

        self._transport.on(Operation.signal, self._on_signal)

    @classmethod
    async def with_peer(
        cls,
        peer: str,
        *,
        transport: EndpointTransport | None = None,
        config: SessionConfig | None = None,
        engine_factory: Callable[[], ConnectionEngine] | None = None,
    ) -> PeerSession:
        """Create a session with a registered peer.

        Args:
            peer: Name of the peer endpoint.
            transport: Transport to use. Defaults to the transport defined
                with [`define_transport()`][windowrtc.session.define_transport].
            config: Configuration of the default
                [`AiortcEngine`][windowrtc.engine.AiortcEngine].
            engine_factory: Optional callable returning the connection
                engine. Overrides `config`.

        Raises:
            TransportNotConfiguredError: If no transport is given or defined.
            PeerNotRegisteredError: If `peer` is not registered.
            SelfNotRegisteredError: If this endpoint is not registered.
        """
        transport = get_transport() if transport is None else transport
        peer_name = peer.strip()

        names = await transport.invoke(Operation.get_registered_windows)
        if peer_name not in names:
            raise PeerNotRegisteredError(
                f'Peer endpoint with name {peer_name!r} was not registered.',
            )

        name = await transport.invoke(Operation.get_own_window_name)
        if isinstance(name, Exception) or not name:
            raise SelfNotRegisteredError(
                'Unable to get own registered name. The endpoint may not '
                'have been properly registered.',
            )

        if engine_factory is None:
            config = SessionConfig() if config is None else config
            engine: ConnectionEngine = AiortcEngine(config.rtc_configuration())
        else:
            engine = engine_factory()

        session = cls(name, peer_name, transport, engine)
        logger.info(f'{session._log_prefix}: session created')
        return session

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.dispose()

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._name} > {self._peer}]'

    @property
    def name(self) -> str:
        """Name this endpoint is registered with."""
        return self._name

    @property
    def peer(self) -> str:
        """Name of the peer endpoint."""
        return self._peer

    @property
    def engine(self) -> ConnectionEngine:
        """Connection engine owned by this session."""
        return self._engine

    @property
    def disposed(self) -> bool:
        """The session has been disposed."""
        return self._disposed

    @property
    def negotiation_state(self) -> NegotiationState:
        """Current signaling state read from the engine."""
        return NegotiationState(self._engine.signaling_state)

    async def add_stream(self, tracks: Iterable[MediaStreamTrack]) -> None:
        """Attach local tracks and offer them to the peer.

        Every track is added to the engine, then an offer is created, set as
        the local description and forwarded to the peer. A relay error is
        emitted as an `error` event and the negotiation is not retried.

        Args:
            tracks: Tracks of the local media stream.
        """
        for track in tracks:
            self._engine.add_track(track)
        await self._send_offer()

    async def request_offer(self) -> None:
        """Ask the peer to send an offer."""
        await self._forward(SignalChannel.request_offer, '')
        self._emit(EventKind.request_offer)

    async def dispose(self) -> None:
        """Leave the peer and release the connection engine.

        The peer is sent a `peer-left` envelope and a `leave` event is
        emitted. Then local tracks are stopped and detached, inbound
        envelopes and engine notifications are no longer handled, the
        engine is closed, and every session listener is removed. Calling
        this more than once has no effect.
        """
        if self._disposed:
            logger.debug(f'{self._log_prefix}: already disposed')
            return
        self._disposed = True
        logger.info(f'{self._log_prefix}: disposing session')

        try:
            await self._forward(SignalChannel.peer_left, '')
            self._emit(EventKind.leave)

            for sender in self._engine.get_senders():
                if sender.track is not None:
                    self._engine.remove_track(sender)
        finally:
            self._transport.remove_listener(Operation.signal, self._on_signal)
            for event, handler in self._engine_handlers:
                self._engine.remove_listener(event, handler)
            self._pending_candidates.clear()

            await self._engine.close()
            self.remove_all_listeners()

    def _emit(self, kind: EventKind, payload: Any = None) -> None:
        self.emit(SessionEvent(kind, self._name, self._peer, payload))

    def _reemit(self, kind: EventKind) -> Callable[..., None]:
        def _handler(payload: Any = None) -> None:
            self._emit(kind, payload)

        return _handler

    async def _forward(self, channel: SignalChannel, payload: Any) -> None:
        envelope = SignalingEnvelope(
            channel=channel,
            sender=self._name,
            receiver=self._peer,
            payload=payload,
        )
        try:
            error = await self._transport.invoke(Operation.signal, envelope)
        except Exception as e:
            error = e

        if error is not None:
            logger.warning(
                f'{self._log_prefix}: failed to send {channel.value} '
                f'message: {error}',
            )
            self._emit(EventKind.error, error)

    async def _send_offer(self) -> None:
        offer = await self._engine.create_offer()
        await self._engine.set_local_description(offer)
        description = self._engine.local_description or offer
        logger.info(f'{self._log_prefix}: sending offer')
        await self._forward(SignalChannel.offer, object_to_string(description))
        self._emit(EventKind.sent_offer, description)

    async def _on_signal(self, envelope: Any) -> None:
        if self._disposed or not isinstance(envelope, SignalingEnvelope):
            return
        if envelope.sender != self._peer or envelope.receiver != self._name:
            return

        try:
            await self._handle_envelope(envelope)
        except Exception as e:
            logger.warning(
                f'{self._log_prefix}: failed to handle '
                f'{envelope.channel.value} message: {e!r}',
            )
            self._emit(EventKind.error, e)

    async def _handle_envelope(self, envelope: SignalingEnvelope) -> None:
        # Dispatches the envelope to the correct method depending on channel
        if envelope.channel is SignalChannel.request_offer:
            await self._handle_request_offer()
        elif envelope.channel is SignalChannel.offer:
            await self._handle_offer(envelope.payload)
        elif envelope.channel is SignalChannel.answer:
            await self._handle_answer(envelope.payload)
        elif envelope.channel is SignalChannel.candidate:
            await self._handle_candidate(envelope.payload)
        elif envelope.channel is SignalChannel.peer_left:
            self._handle_peer_left()
        else:
            raise AssertionError('Unreachable.')

    def _is_closed(self) -> bool:
        return self.negotiation_state is NegotiationState.closed

    async def _handle_request_offer(self) -> None:
        if self._is_closed():
            return
        logger.info(f'{self._log_prefix}: received offer request')
        await self._send_offer()

    async def _handle_offer(self, payload: Any) -> None:
        if self._is_closed():
            return
        offer = _decode_description(payload, 'offer')
        logger.info(f'{self._log_prefix}: received offer')

        await self._engine.set_remote_description(offer)
        await self._apply_pending_candidates()
        answer = await self._engine.create_answer()
        await self._engine.set_local_description(answer)
        description = self._engine.local_description or answer

        logger.info(f'{self._log_prefix}: sending answer')
        await self._forward(
            SignalChannel.answer,
            object_to_string(description),
        )
        self._emit(
            EventKind.received_offer,
            {'offer': offer, 'answer': description},
        )

    async def _handle_answer(self, payload: Any) -> None:
        state = self.negotiation_state
        if state in (NegotiationState.closed, NegotiationState.stable):
            logger.debug(
                f'{self._log_prefix}: ignoring answer in {state.value} state',
            )
            return
        answer = _decode_description(payload, 'answer')
        logger.info(f'{self._log_prefix}: received answer')

        await self._engine.set_remote_description(answer)
        await self._apply_pending_candidates()
        self._emit(EventKind.received_answer, answer)

    async def _handle_candidate(self, payload: Any) -> None:
        if self._is_closed():
            return
        candidate = _decode_candidate(payload)

        if self._engine.remote_description is None:
            # Applied once the remote description is set
            self._pending_candidates.append(candidate)
        else:
            await self._engine.add_ice_candidate(candidate)
        self._emit(EventKind.received_candidate, candidate)

    def _handle_peer_left(self) -> None:
        logger.info(f'{self._log_prefix}: peer left')
        self._emit(EventKind.peer_left)

    async def _apply_pending_candidates(self) -> None:
        candidates = self._pending_candidates
        self._pending_candidates = []
        for candidate in candidates:
            await self._engine.add_ice_candidate(candidate)

    async def _on_ice_candidate(
        self,
        candidate: RTCIceCandidate | None = None,
    ) -> None:
        if candidate is None:
            return
        await self._forward(
            SignalChannel.candidate,
            object_to_string(candidate),
        )
        self._emit(EventKind.icecandidate, candidate)

    def _on_ice_connection_state_change(self, state: str) -> None:
        if state in RESTART_ICE_STATES:
            logger.info(
                f'{self._log_prefix}: ICE connection {state}, restarting ICE',
            )
            self._engine.restart_ice()
        self._emit(EventKind.iceconnectionstatechange, state)


def _decode_description(payload: Any, expected: str) -> RTCSessionDescription:
    try:
        obj = object_from_string(payload)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
        raise MessageDecodeError(
            f'Failed to decode {expected} session description.',
        ) from e

    if not isinstance(obj, RTCSessionDescription) or obj.type != expected:
        raise MessageDecodeError(
            f'Expected {expected} session description but got {obj!r}.',
        )
    return obj


def _decode_candidate(payload: Any) -> RTCIceCandidate:
    try:
        obj = object_from_string(payload)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
        raise MessageDecodeError('Failed to decode ICE candidate.') from e

    if not isinstance(obj, RTCIceCandidate):
        raise MessageDecodeError(f'Expected ICE candidate but got {obj!r}.')
    return obj
