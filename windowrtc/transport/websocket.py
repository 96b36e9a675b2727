"""Websocket transport between remote endpoints and a coordinator.

The coordinator side is served with
[`websockets.asyncio.server.serve()`][websockets.asyncio.server.serve]
using [`WebSocketCoordinatorTransport.handler()`][windowrtc.transport.websocket.WebSocketCoordinatorTransport.handler]
(see [`windowrtc.run`][windowrtc.run]). Each endpoint opens one connection
with a [`WebSocketTransport`][windowrtc.transport.websocket.WebSocketTransport]
and registers a name as its first message. The connection is unregistered
from the coordinator when it closes.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import ssl
import sys
from types import TracebackType
from typing import Any

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect
from websockets.asyncio.server import ServerConnection

from windowrtc.channels import Operation
from windowrtc.coordinator import Coordinator
from windowrtc.exceptions import DuplicateNameError
from windowrtc.exceptions import EndpointClosedError
from windowrtc.exceptions import RegistrationError
from windowrtc.exceptions import TransportError
from windowrtc.messages import decode_frame
from windowrtc.messages import decode_payload
from windowrtc.messages import encode_frame
from windowrtc.messages import encode_payload
from windowrtc.messages import error_from_dict
from windowrtc.messages import error_to_dict
from windowrtc.messages import Frame
from windowrtc.messages import InvokeRequest
from windowrtc.messages import InvokeResponse
from windowrtc.messages import MessageDecodeError
from windowrtc.messages import MessageEncodeError
from windowrtc.messages import Notification
from windowrtc.messages import parse_operation
from windowrtc.messages import RegistrationRequest
from windowrtc.messages import RegistrationResponse
from windowrtc.task import spawn_guarded_background_task
from windowrtc.transport.protocols import DisappearCallback
from windowrtc.transport.protocols import Handler
from windowrtc.transport.protocols import PushListener
from windowrtc.transport.pump import PushPump

logger = logging.getLogger(__name__)

# Close codes used by the coordinator
CLOSE_BAD_FRAME = 4000
CLOSE_REGISTRATION_REFUSED = 4002
CLOSE_MESSAGE_TOO_LARGE = 4003


class WebSocketHandle:
    """Coordinator side handle of an endpoint's websocket connection.

    Args:
        websocket: Server side connection with the endpoint.
    """

    def __init__(self, websocket: ServerConnection) -> None:
        self._websocket = websocket
        self._callbacks: list[DisappearCallback] = []
        self._disappeared = False

    def __repr__(self) -> str:
        address = str(self._websocket.remote_address)
        return f'{self.__class__.__name__}(address={address})'

    @property
    def websocket(self) -> ServerConnection:
        """Connection with the endpoint."""
        return self._websocket

    async def notify(self, operation: Operation, payload: Any) -> None:
        """Push a one-way message to the endpoint.

        Raises:
            EndpointClosedError: If the connection is closed.
        """
        if self._disappeared:
            raise EndpointClosedError(f'{self!r} is closed.')
        frame = Notification(
            operation=operation.value,
            payload=encode_payload(operation, payload),
        )
        try:
            await self._websocket.send(encode_frame(frame))
        except websockets.exceptions.ConnectionClosed as e:
            raise EndpointClosedError(f'{self!r} is closed.') from e

    def on_disappear(self, callback: DisappearCallback) -> None:
        """Register a callback invoked once when the connection closes."""
        self._callbacks.append(callback)

    async def disappear(self) -> None:
        """Mark the connection as gone and invoke disappearance callbacks."""
        if self._disappeared:
            return
        self._disappeared = True
        callbacks = self._callbacks
        self._callbacks = []
        for callback in callbacks:
            await callback()


class WebSocketCoordinatorTransport:
    """Coordinator side of the websocket transport.

    Implements the
    [`CoordinatorTransport`][windowrtc.transport.protocols.CoordinatorTransport]
    protocol. Connections are registered with the coordinator under the
    name sent in their first frame.

    The handler will close the connection for the following reasons.

    - An unexpected or undecodable frame is received (code 4000).
    - The registration is refused, e.g. the name is taken (code 4002).
    - The client sends a message larger than the allowed size (code 4003).

    Example:
        ```python
        from websockets.asyncio.server import serve

        coordinator = Coordinator()
        transport = WebSocketCoordinatorTransport(coordinator)
        coordinator.bind(transport)

        async with serve(transport.handler, 'localhost', 8765):
            ...
        ```

    Args:
        coordinator: Coordinator connections are registered with.
        max_message_bytes: Optional maximum size of client messages in bytes.
            Clients that send oversized messages will have their connections
            closed. Note that message size is computed using
            [`sys.getsizeof()`][sys.getsizeof] so will also include the
            PyObject overhead.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        *,
        max_message_bytes: int | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._max_message_bytes = max_message_bytes
        self._handlers: dict[Operation, Handler] = {}

    def handle(self, operation: Operation, handler: Handler) -> None:
        """Bind the handler invoked for requests of an operation."""
        self._handlers[operation] = handler

    def remove_handler(self, operation: Operation) -> None:
        """Remove the handler bound for an operation, if any."""
        self._handlers.pop(operation, None)

    async def send(self, websocket: ServerConnection, frame: Frame) -> None:
        """Send a frame on the socket.

        Args:
            websocket: Connection to send the frame on.
            frame: Frame to encode and send.
        """
        try:
            message_str = encode_frame(frame)
        except MessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        try:
            await websocket.send(message_str)
        except websockets.exceptions.ConnectionClosed:
            logger.error('Connection closed while attempting to send message')

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler.

        Args:
            websocket: Connection with a new endpoint.
        """
        handle = await self._register(websocket)
        if handle is None:
            return

        try:
            await self.send(websocket, RegistrationResponse(success=True))
            await self._serve(websocket, handle)
        finally:
            await handle.disappear()

    async def _register(
        self,
        websocket: ServerConnection,
    ) -> WebSocketHandle | None:
        try:
            message_str = await websocket.recv()
        except websockets.exceptions.ConnectionClosed:
            return None

        try:
            frame = self._decode(message_str)
        except MessageDecodeError as e:
            logger.error(
                'Closing websocket because deserialization error was '
                f'caught on message received from '
                f'{websocket.remote_address}. {e}',
            )
            await websocket.close(CLOSE_BAD_FRAME, reason=str(e))
            return None

        if not isinstance(frame, RegistrationRequest):
            logger.warning(
                f'Connection from {websocket.remote_address} sent '
                f'{type(frame).__name__} before registering',
            )
            await websocket.close(
                CLOSE_BAD_FRAME,
                reason='Expected registration request.',
            )
            return None

        handle = WebSocketHandle(websocket)
        try:
            self._coordinator.register(frame.name, handle)
        except (DuplicateNameError, ValueError) as e:
            logger.warning(
                f'Refused registration of {frame.name!r} from '
                f'{websocket.remote_address}: {e}',
            )
            reason = f'{e.__class__.__name__}: {e}'
            await self.send(
                websocket,
                RegistrationResponse(success=False, message=reason),
            )
            await websocket.close(CLOSE_REGISTRATION_REFUSED, reason=reason)
            return None

        return handle

    async def _serve(
        self,
        websocket: ServerConnection,
        handle: WebSocketHandle,
    ) -> None:
        while True:
            try:
                message_str = await websocket.recv()
            except websockets.exceptions.ConnectionClosedOK:
                logger.info(f'Connection closed by {handle!r}')
                break
            except websockets.exceptions.ConnectionClosedError:
                logger.warning(f'Connection with {handle!r} closed with error')
                break

            if (
                self._max_message_bytes is not None
                and sys.getsizeof(message_str) > self._max_message_bytes
            ):
                await websocket.close(
                    CLOSE_MESSAGE_TOO_LARGE,
                    reason='Message length exceeds limit.',
                )
                logger.warning(
                    f'Client at {websocket.remote_address} sent message with '
                    f'size {sys.getsizeof(message_str)} bytes which exceeds '
                    f'the max configured size of {self._max_message_bytes} '
                    'bytes. Connection closed with error code 4003',
                )
                break

            try:
                frame = self._decode(message_str)
            except MessageDecodeError as e:
                logger.error(
                    'Closing websocket because deserialization error was '
                    f'caught on message received from {handle!r}. {e}',
                )
                await websocket.close(CLOSE_BAD_FRAME, reason=str(e))
                break

            if isinstance(frame, InvokeRequest):
                response = await self._invoke(handle, frame)
                await self.send(websocket, response)
            elif isinstance(frame, Notification):
                await self._notification(handle, frame)
            else:
                logger.warning(
                    f'Closing websocket because {handle!r} sent unexpected '
                    f'{type(frame).__name__}',
                )
                await websocket.close(
                    CLOSE_BAD_FRAME,
                    reason=f'Unexpected {type(frame).__name__}.',
                )
                break

    def _decode(self, message_str: str | bytes) -> Frame:
        if isinstance(message_str, bytes):
            raise MessageDecodeError('Got message as bytes but expected str.')
        return decode_frame(message_str)

    async def _call(
        self,
        handle: WebSocketHandle,
        operation_value: str,
        payload: Any,
    ) -> Any:
        operation = parse_operation(operation_value)
        try:
            handler = self._handlers[operation]
        except KeyError:
            raise TransportError(
                f'No coordinator handler is bound for {operation.value}.',
            ) from None
        return await handler(handle, decode_payload(operation, payload))

    async def _invoke(
        self,
        handle: WebSocketHandle,
        request: InvokeRequest,
    ) -> InvokeResponse:
        try:
            result = await self._call(
                handle,
                request.operation,
                request.payload,
            )
        except Exception as e:
            logger.warning(
                f'Request {request.operation} from {handle!r} failed: {e!r}',
            )
            return InvokeResponse(
                request_id=request.request_id,
                error=error_to_dict(e),
                raised=True,
            )

        if isinstance(result, Exception):
            return InvokeResponse(
                request_id=request.request_id,
                error=error_to_dict(result),
            )
        return InvokeResponse(request_id=request.request_id, result=result)

    async def _notification(
        self,
        handle: WebSocketHandle,
        notification: Notification,
    ) -> None:
        try:
            await self._call(
                handle,
                notification.operation,
                notification.payload,
            )
        except Exception as e:
            logger.warning(
                f'Notification {notification.operation} from {handle!r} '
                f'failed: {e!r}',
            )


class WebSocketTransport:
    """Endpoint side of the websocket transport.

    Implements the
    [`EndpointTransport`][windowrtc.transport.protocols.EndpointTransport]
    protocol.

    Tip:
        This class can be used as an async context manager!
        ```python
        from windowrtc.transport.websocket import WebSocketTransport

        async with WebSocketTransport('ws://localhost:8765', 'Sender') as t:
            session = await PeerSession.with_peer('Receiver', transport=t)
        ```

    Note:
        WebSocket connections are not opened until an operation is invoked
        or [`connect()`][windowrtc.transport.websocket.WebSocketTransport.connect]
        is called.

    Args:
        address: Address of the coordinator. Should start with `ws://` or
            `wss://`.
        name: Name to register this endpoint with.
        ssl_context: Custom SSL context to pass to
            [`connect()`][websockets.asyncio.client.connect]. A TLS context
            is created with
            [`ssl.create_default_context()`][ssl.create_default_context]
            when connecting to a `wss://` URI and `ssl_context` is not
            provided.
        timeout: Time to wait in seconds on opening the connection and on
            the coordinator's replies.
        verify_certificate: Verify the coordinator's SSL certificate. Only
            used if `ssl_context` is `None` and connecting to a `wss://` URI.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        name: str,
        *,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float = 10,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Coordinator address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address
        self._name = name
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ssl_context = ssl_context

        self._connect_lock = asyncio.Lock()
        self._websocket: ClientConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pump = PushPump(name=f'{name}-push-pump')
        self._pending: dict[int, asyncio.Future[InvokeResponse]] = {}
        self._counter = itertools.count()
        self._closed = False

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def name(self) -> str:
        """Name this endpoint registers with."""
        return self._name

    async def _register(self) -> ClientConnection:
        """Open a websocket connection and register with the coordinator.

        Raises:
            RegistrationError: If the connection is closed during
                registration or the coordinator refuses the registration.
        """
        websocket = await connect(
            self._address,
            open_timeout=self._timeout,
            ssl=self._ssl_context,
        )

        try:
            await websocket.send(encode_frame(RegistrationRequest(self._name)))
            message_str = await asyncio.wait_for(
                websocket.recv(),
                self._timeout,
            )
        except websockets.exceptions.ConnectionClosed as e:
            raise RegistrationError(
                'Connection closed while registering with the coordinator.',
            ) from e

        try:
            if not isinstance(message_str, str):
                raise MessageDecodeError('Received non-string type.')
            message = decode_frame(message_str)
        except MessageDecodeError as e:
            await websocket.close()
            raise RegistrationError(
                'Unable to decode response message from coordinator.',
            ) from e

        if not isinstance(message, RegistrationResponse):
            await websocket.close()
            raise RegistrationError(
                'Coordinator replied with unknown message type: '
                f'{type(message).__name__}.',
            )
        if not message.success:
            await websocket.close()
            raise RegistrationError(
                f'Failed to register as {self._name!r} with the '
                f'coordinator. Got exception: {message.message}',
            )

        logger.info(
            f'Established connection to coordinator at {self._address} '
            f'with name={self._name}',
        )
        return websocket

    async def connect(self) -> ClientConnection:
        """Connect and register with the coordinator.

        Note:
            Typically this does not need to be called because invoking an
            operation will connect automatically. An existing connection is
            reused.

        Raises:
            EndpointClosedError: If the transport was closed.
            RegistrationError: If the registration fails.
        """
        async with self._connect_lock:
            if self._closed:
                raise EndpointClosedError('Transport has been closed.')
            if self._websocket is None:
                self._websocket = await self._register()
                self._reader_task = spawn_guarded_background_task(
                    self._read,
                    self._websocket,
                    name=f'{self._name}-reader',
                )
            return self._websocket

    async def close(self) -> None:
        """Close the connection to the coordinator."""
        self._closed = True
        if self._websocket is not None:
            await self._websocket.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        await self._pump.close()
        self._fail_pending()

    async def invoke(self, operation: Operation, payload: Any = None) -> Any:
        """Invoke an operation on the coordinator and return its result.

        Errors returned as values by the coordinator are returned as
        exception instances; errors raised by the coordinator are raised.

        Raises:
            EndpointClosedError: If the connection closes before the reply.
            asyncio.TimeoutError: If the coordinator does not reply within
                the timeout.
        """
        websocket = await self.connect()
        request_id = next(self._counter)
        future: asyncio.Future[InvokeResponse] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[request_id] = future

        request = InvokeRequest(
            request_id=request_id,
            operation=operation.value,
            payload=encode_payload(operation, payload),
        )
        try:
            await websocket.send(encode_frame(request))
            response = await asyncio.wait_for(future, self._timeout)
        except websockets.exceptions.ConnectionClosed as e:
            raise EndpointClosedError(
                'Connection to the coordinator is closed.',
            ) from e
        finally:
            self._pending.pop(request_id, None)

        if response.error is not None:
            error = error_from_dict(response.error)
            if response.raised:
                raise error
            return error
        return response.result

    async def send(self, operation: Operation, payload: Any = None) -> None:
        """Send a one-way message to the coordinator.

        Raises:
            EndpointClosedError: If the connection is closed.
        """
        websocket = await self.connect()
        notification = Notification(
            operation=operation.value,
            payload=encode_payload(operation, payload),
        )
        try:
            await websocket.send(encode_frame(notification))
        except websockets.exceptions.ConnectionClosed as e:
            raise EndpointClosedError(
                'Connection to the coordinator is closed.',
            ) from e

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

    async def _read(self, websocket: ClientConnection) -> None:
        try:
            async for message_str in websocket:
                if not isinstance(message_str, str):
                    logger.warning('Received non-string from websocket')
                    continue
                try:
                    frame = decode_frame(message_str)
                    self._dispatch(frame)
                except MessageDecodeError as e:
                    logger.error(f'Dropped undecodable message: {e}')
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(f'Connection to coordinator closed: {e}')
        finally:
            self._fail_pending()

    def _dispatch(self, frame: Frame) -> None:
        if isinstance(frame, InvokeResponse):
            future = self._pending.pop(frame.request_id, None)
            if future is not None and not future.done():
                future.set_result(frame)
        elif isinstance(frame, Notification):
            operation = parse_operation(frame.operation)
            self._pump.put(operation, decode_payload(operation, frame.payload))
        else:
            logger.warning(f'Ignoring unexpected {type(frame).__name__}')

    def _fail_pending(self) -> None:
        pending = self._pending
        self._pending = {}
        for future in pending.values():
            if not future.done():
                future.set_exception(
                    EndpointClosedError(
                        'Connection to the coordinator closed before reply.',
                    ),
                )
