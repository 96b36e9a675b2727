"""Coordinator service owning the peer registry and signaling relay."""
from __future__ import annotations

import logging
from typing import Any

from windowrtc.channels import Operation
from windowrtc.exceptions import EndpointClosedError
from windowrtc.exceptions import ReceiverNotFoundError
from windowrtc.exceptions import SelfNotRegisteredError
from windowrtc.messages import SignalingEnvelope
from windowrtc.registry import PeerRegistry
from windowrtc.registry import RegisteredEndpoint
from windowrtc.relay import SignalingRelay
from windowrtc.transport.protocols import CoordinatorTransport
from windowrtc.transport.protocols import EndpointHandle

logger = logging.getLogger(__name__)


class Coordinator:
    """Coordinator side service brokering signaling between endpoints.

    The coordinator owns a [`PeerRegistry`][windowrtc.registry.PeerRegistry]
    and a [`SignalingRelay`][windowrtc.relay.SignalingRelay] and answers the
    four coordinator operations of a transport. It is constructed and
    disposed explicitly by the hosting process so independent instances
    can coexist (e.g., in tests).

    Example:
        ```python
        from windowrtc.coordinator import Coordinator
        from windowrtc.transport.local import LocalHub

        hub = LocalHub()
        coordinator = Coordinator(hub)

        coordinator.register('Sender', hub.endpoint())
        coordinator.register('Receiver', hub.endpoint())
        ...
        coordinator.dispose()
        ```

    Args:
        transport: Optional transport to bind immediately.
    """

    def __init__(self, transport: CoordinatorTransport | None = None) -> None:
        self._registry = PeerRegistry()
        self._relay = SignalingRelay(self._registry)
        self._transport: CoordinatorTransport | None = None

        if transport is not None:
            self.bind(transport)

    @property
    def registry(self) -> PeerRegistry:
        """Registry of connected endpoints."""
        return self._registry

    @property
    def relay(self) -> SignalingRelay:
        """Relay forwarding signaling envelopes."""
        return self._relay

    @property
    def transport(self) -> CoordinatorTransport | None:
        """Transport the coordinator is bound to."""
        return self._transport

    def bind(self, transport: CoordinatorTransport) -> None:
        """Install the coordinator's operation handlers on a transport.

        Raises:
            RuntimeError: If the coordinator is already bound to a transport.
                Call [`dispose()`][windowrtc.coordinator.Coordinator.dispose]
                first to rebind.
        """
        if self._transport is not None:
            raise RuntimeError(
                'Coordinator is already bound to a transport. Call dispose() '
                'before binding again.',
            )
        transport.handle(Operation.get_own_window_name, self._get_own_name)
        transport.handle(
            Operation.get_registered_windows,
            self._get_registered_windows,
        )
        transport.handle(Operation.signal, self._signal)
        transport.handle(Operation.log, self._log)
        self._transport = transport

    def dispose(self) -> None:
        """Remove every handler binding from the transport.

        The registry is left untouched so the process can rebind to a new
        transport, e.g. after a hot reload.
        """
        if self._transport is None:
            return
        for operation in Operation:
            self._transport.remove_handler(operation)
        self._transport = None

    def register(
        self,
        name: str,
        handle: EndpointHandle,
    ) -> RegisteredEndpoint:
        """Register an endpoint under a unique name.

        See
        [`PeerRegistry.register()`][windowrtc.registry.PeerRegistry.register].
        """
        return self._registry.register(name, handle)

    async def unregister(self, name: str) -> None:
        """Unregister an endpoint by name.

        See
        [`PeerRegistry.unregister()`][windowrtc.registry.PeerRegistry.unregister].
        """
        await self._registry.unregister(name)

    async def _get_own_name(
        self,
        handle: EndpointHandle,
        payload: Any,
    ) -> str | SelfNotRegisteredError:
        try:
            return self._registry.resolve_own_name(handle)
        except SelfNotRegisteredError as e:
            logger.warning(f'Unregistered endpoint {handle!r} asked its name')
            return e

    async def _get_registered_windows(
        self,
        handle: EndpointHandle,
        payload: Any,
    ) -> list[str]:
        return self._registry.list_names()

    async def _signal(
        self,
        handle: EndpointHandle,
        payload: Any,
    ) -> ReceiverNotFoundError | None:
        if not isinstance(payload, SignalingEnvelope):
            raise TypeError(
                'Signal payload must be a SignalingEnvelope. '
                f'Got {type(payload).__name__}.',
            )
        return await self._relay.forward(payload)

    async def _log(self, handle: EndpointHandle, payload: Any) -> None:
        logger.debug(f'Broadcasting log line from {handle!r}')
        for endpoint in self._registry.endpoints():
            try:
                await endpoint.handle.notify(Operation.log, payload)
            except EndpointClosedError:
                logger.debug(
                    'Skipped log broadcast to closed endpoint '
                    f'{endpoint.name}',
                )
