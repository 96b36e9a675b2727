"""Transport interface protocols."""
from __future__ import annotations

from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Protocol
from typing import runtime_checkable

from windowrtc.channels import Operation

DisappearCallback = Callable[[], Awaitable[None]]
PushListener = Callable[[Any], Any]


@runtime_checkable
class EndpointHandle(Protocol):
    """Coordinator side reference to a connected endpoint."""

    async def notify(self, operation: Operation, payload: Any) -> None:
        """Push a one-way message to the endpoint.

        Raises:
            EndpointClosedError: If the endpoint has gone away.
        """
        ...

    def on_disappear(self, callback: DisappearCallback) -> None:
        """Register a callback invoked once when the endpoint goes away."""
        ...


Handler = Callable[[EndpointHandle, Any], Awaitable[Any]]


@runtime_checkable
class CoordinatorTransport(Protocol):
    """Coordinator side of a transport."""

    def handle(self, operation: Operation, handler: Handler) -> None:
        """Bind the handler invoked for requests of an operation.

        The handler is awaited with the calling endpoint's handle and the
        request payload. Its return value is the result of the request.
        """
        ...

    def remove_handler(self, operation: Operation) -> None:
        """Remove the handler bound for an operation, if any."""
        ...


@runtime_checkable
class EndpointTransport(Protocol):
    """Endpoint side of a transport."""

    async def invoke(self, operation: Operation, payload: Any = None) -> Any:
        """Invoke an operation on the coordinator and return its result."""
        ...

    async def send(self, operation: Operation, payload: Any = None) -> None:
        """Send a one-way message to the coordinator."""
        ...

    def on(self, operation: Operation, listener: PushListener) -> None:
        """Register a listener for messages pushed by the coordinator.

        Listeners of one endpoint are invoked in push order. A listener may
        be a coroutine function, in which case it is awaited before the next
        push is delivered.
        """
        ...

    def remove_listener(
        self,
        operation: Operation,
        listener: PushListener,
    ) -> None:
        """Remove a listener registered with `on()`."""
        ...
