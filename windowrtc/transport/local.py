"""In-process transport between endpoints and a coordinator.

Example:
    ```python
    from windowrtc.coordinator import Coordinator
    from windowrtc.transport.local import LocalHub

    hub = LocalHub()
    coordinator = Coordinator(hub)

    endpoint = hub.endpoint()
    coordinator.register('console', endpoint)
    assert await endpoint.invoke(Operation.get_own_window_name) == 'console'

    await endpoint.close()
    ```
"""
from __future__ import annotations

import itertools
import logging
from typing import Any

from windowrtc.channels import Operation
from windowrtc.exceptions import EndpointClosedError
from windowrtc.exceptions import TransportError
from windowrtc.transport.protocols import DisappearCallback
from windowrtc.transport.protocols import Handler
from windowrtc.transport.protocols import PushListener
from windowrtc.transport.pump import PushPump

logger = logging.getLogger(__name__)


class LocalHub:
    """Coordinator side of the in-process transport.

    Implements the
    [`CoordinatorTransport`][windowrtc.transport.protocols.CoordinatorTransport]
    protocol.
    """

    def __init__(self) -> None:
        self._handlers: dict[Operation, Handler] = {}
        self._counter = itertools.count()

    def handle(self, operation: Operation, handler: Handler) -> None:
        """Bind the handler invoked for requests of an operation."""
        self._handlers[operation] = handler

    def remove_handler(self, operation: Operation) -> None:
        """Remove the handler bound for an operation, if any."""
        self._handlers.pop(operation, None)

    def endpoint(self, label: str | None = None) -> LocalEndpoint:
        """Create a new endpoint connected to this hub.

        Args:
            label: Optional label used in log messages. Unrelated to the
                name the endpoint is later registered with.
        """
        label = f'local-{next(self._counter)}' if label is None else label
        return LocalEndpoint(self, label)

    async def dispatch(
        self,
        endpoint: LocalEndpoint,
        operation: Operation,
        payload: Any,
    ) -> Any:
        """Call the handler bound for an operation.

        Raises:
            TransportError: If no handler is bound for the operation.
        """
        try:
            handler = self._handlers[operation]
        except KeyError:
            raise TransportError(
                f'No coordinator handler is bound for {operation.value}.',
            ) from None
        return await handler(endpoint, payload)


class LocalEndpoint:
    """Endpoint connected to a [`LocalHub`][windowrtc.transport.local.LocalHub].

    The endpoint is both the
    [`EndpointTransport`][windowrtc.transport.protocols.EndpointTransport]
    used by sessions and the
    [`EndpointHandle`][windowrtc.transport.protocols.EndpointHandle]
    the coordinator registers.

    Args:
        hub: Hub this endpoint is connected to.
        label: Label used in log messages.
    """

    def __init__(self, hub: LocalHub, label: str) -> None:
        self._hub = hub
        self._label = label
        self._pump = PushPump(name=f'{label}-push-pump')
        self._disappear_callbacks: list[DisappearCallback] = []
        self._closed = False

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._label})'

    @property
    def closed(self) -> bool:
        """The endpoint has been closed."""
        return self._closed

    async def invoke(self, operation: Operation, payload: Any = None) -> Any:
        """Invoke an operation on the coordinator and return its result.

        Raises:
            EndpointClosedError: If this endpoint is closed.
            TransportError: If the coordinator has no handler bound for the
                operation.
        """
        if self._closed:
            raise EndpointClosedError(f'{self!r} is closed.')
        return await self._hub.dispatch(self, operation, payload)

    async def send(self, operation: Operation, payload: Any = None) -> None:
        """Send a one-way message to the coordinator."""
        await self.invoke(operation, payload)

    def on(self, operation: Operation, listener: PushListener) -> None:
        """Register a listener for messages pushed by the coordinator."""
        self._pump.add_listener(operation, listener)

    def remove_listener(
        self,
        operation: Operation,
        listener: PushListener,
    ) -> None:
        """Remove a listener registered with `on()`."""
        self._pump.remove_listener(operation, listener)

    async def notify(self, operation: Operation, payload: Any) -> None:
        """Push a message to this endpoint's listeners.

        Raises:
            EndpointClosedError: If this endpoint is closed.
        """
        if self._closed:
            raise EndpointClosedError(f'{self!r} is closed.')
        self._pump.put(operation, payload)

    def on_disappear(self, callback: DisappearCallback) -> None:
        """Register a callback invoked once when this endpoint is closed."""
        self._disappear_callbacks.append(callback)

    async def drain(self) -> None:
        """Wait until every pushed message has been delivered."""
        await self._pump.join()

    async def close(self) -> None:
        """Close the endpoint.

        Pending pushes are dropped and disappearance callbacks are invoked.
        Closing an endpoint more than once has no effect.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug(f'Closing {self!r}')
        await self._pump.close()

        callbacks = self._disappear_callbacks
        self._disappear_callbacks = []
        for callback in callbacks:
            await callback()
