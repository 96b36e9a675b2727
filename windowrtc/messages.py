"""Signaling envelopes and transport frames.

Envelopes are the addressed messages routed by the
[`SignalingRelay`][windowrtc.relay.SignalingRelay]. Frames are the JSON
messages exchanged between a
[`WebSocketTransport`][windowrtc.transport.websocket.WebSocketTransport]
and the coordinator server.
"""
from __future__ import annotations

import dataclasses
import enum
import json
import sys
from typing import Any

from windowrtc import exceptions
from windowrtc.channels import Operation


class SignalChannel(enum.Enum):
    """Kinds of signaling envelopes."""

    request_offer = 'request-offer'
    offer = 'offer'
    answer = 'answer'
    candidate = 'candidate'
    peer_left = 'peer-left'


@dataclasses.dataclass(frozen=True)
class SignalingEnvelope:
    """Addressed signaling message.

    Attributes:
        channel: Kind of signaling message.
        sender: Name of the sending endpoint.
        receiver: Name of the receiving endpoint.
        payload: Channel dependent payload. The relay treats this as opaque.
    """

    channel: SignalChannel
    sender: str
    receiver: str
    payload: Any = ''


class MessageError(Exception):
    """Base exception type for message encoding and decoding."""

    pass


class MessageDecodeError(MessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass


def envelope_to_dict(envelope: SignalingEnvelope) -> dict[str, Any]:
    """Convert an envelope to a JSON compatible dictionary."""
    return {
        'channel': envelope.channel.value,
        'sender': envelope.sender,
        'receiver': envelope.receiver,
        'payload': envelope.payload,
    }


def envelope_from_dict(data: Any) -> SignalingEnvelope:
    """Build an envelope from a dictionary.

    Raises:
        MessageDecodeError: If the data is missing fields or names an
            unknown channel.
    """
    if not isinstance(data, dict):
        raise MessageDecodeError(
            f'Expected envelope as dict but got {type(data).__name__}.',
        )
    try:
        channel = SignalChannel(data['channel'])
        sender = data['sender']
        receiver = data['receiver']
    except KeyError as e:
        raise MessageDecodeError(f'Envelope is missing key {e}.') from e
    except ValueError as e:
        raise MessageDecodeError(
            f'Envelope has unknown channel {data["channel"]!r}.',
        ) from e

    if not isinstance(sender, str) or not isinstance(receiver, str):
        raise MessageDecodeError('Envelope sender and receiver must be str.')

    return SignalingEnvelope(
        channel=channel,
        sender=sender,
        receiver=receiver,
        payload=data.get('payload', ''),
    )


def error_to_dict(error: BaseException) -> dict[str, str]:
    """Convert an exception into a transferable dictionary."""
    return {'type': type(error).__name__, 'message': str(error)}


def error_from_dict(data: dict[str, str]) -> exceptions.WindowRTCError:
    """Rebuild an exception from a dictionary.

    Error types not defined in [`windowrtc.exceptions`][windowrtc.exceptions]
    are rebuilt as
    [`WindowRTCError`][windowrtc.exceptions.WindowRTCError].
    """
    error_type = getattr(exceptions, data.get('type', ''), None)
    if not (
        isinstance(error_type, type)
        and issubclass(error_type, exceptions.WindowRTCError)
    ):
        error_type = exceptions.WindowRTCError
    return error_type(data.get('message', ''))


def encode_payload(operation: Operation, payload: Any) -> Any:
    """Convert an operation payload to a JSON compatible value."""
    if isinstance(payload, SignalingEnvelope):
        return envelope_to_dict(payload)
    return payload


def decode_payload(operation: Operation, payload: Any) -> Any:
    """Inverse of [`encode_payload()`][windowrtc.messages.encode_payload].

    Raises:
        MessageDecodeError: If a signal payload is not a valid envelope.
    """
    if operation is Operation.signal:
        return envelope_from_dict(payload)
    return payload


class FrameType(enum.Enum):
    """Types of transport frames supported."""

    registration_request = 'RegistrationRequest'
    """Endpoint registration request."""
    registration_response = 'RegistrationResponse'
    """Coordinator reply to a registration request."""
    invoke_request = 'InvokeRequest'
    """Request expecting a response."""
    invoke_response = 'InvokeResponse'
    """Response to an invoke request."""
    notification = 'Notification'
    """One-way message in either direction."""


@dataclasses.dataclass
class Frame:
    """Base frame."""

    pass


@dataclasses.dataclass
class RegistrationRequest(Frame):
    """Register the connection under a name.

    Attributes:
        name: Name the endpoint wants to be registered with.
    """

    name: str
    message_type: str = FrameType.registration_request.name


@dataclasses.dataclass
class RegistrationResponse(Frame):
    """Reply to a registration request.

    Attributes:
        success: If the registration was successful.
        message: Error message from the coordinator.
    """

    success: bool = True
    message: str | None = None
    message_type: str = FrameType.registration_response.name


@dataclasses.dataclass
class InvokeRequest(Frame):
    """Request/response invocation of an operation.

    Attributes:
        request_id: Identifier echoed back in the response.
        operation: Value of the [`Operation`][windowrtc.channels.Operation].
        payload: JSON compatible payload.
    """

    request_id: int
    operation: str
    payload: Any = None
    message_type: str = FrameType.invoke_request.name


@dataclasses.dataclass
class InvokeResponse(Frame):
    """Result of an invoke request.

    Attributes:
        request_id: Identifier of the request being answered.
        result: JSON compatible result of the operation.
        error: Error returned as a value, or raised if `raised` is set.
        raised: The handler raised `error` instead of returning it.
    """

    request_id: int
    result: Any = None
    error: dict[str, str] | None = None
    raised: bool = False
    message_type: str = FrameType.invoke_response.name


@dataclasses.dataclass
class Notification(Frame):
    """Fire-and-forget message.

    Attributes:
        operation: Value of the [`Operation`][windowrtc.channels.Operation].
        payload: JSON compatible payload.
    """

    operation: str
    payload: Any = None
    message_type: str = FrameType.notification.name


def parse_operation(value: str) -> Operation:
    """Get the operation with the given value.

    Raises:
        MessageDecodeError: If no operation has this value.
    """
    try:
        return Operation(value)
    except ValueError as e:
        raise MessageDecodeError(f'Unknown operation {value!r}.') from e


def decode_frame(message: str) -> Frame:
    """Decode JSON string into correct frame type.

    Args:
        message: JSON string to decode.

    Returns:
        Parsed frame.

    Raises:
        MessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise MessageDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise MessageDecodeError('Frame is not a JSON object.')

    try:
        message_type_name = data.pop('message_type')
    except KeyError as e:
        raise MessageDecodeError(
            'Message does not contain a message_type key.',
        ) from e

    try:
        frame_type = getattr(
            sys.modules[__name__],
            FrameType[message_type_name].value,
        )
    except (AttributeError, KeyError, TypeError) as e:
        raise MessageDecodeError(
            f'The message is of an unknown message type: {message_type_name}.',
        ) from e

    try:
        return frame_type(**data)
    except TypeError as e:
        raise MessageDecodeError(
            f'Failed to convert message to {frame_type.__name__}: {e}',
        ) from e


def encode_frame(frame: Frame) -> str:
    """Encode frame as JSON string.

    Args:
        frame: Frame to JSON encode.

    Raises:
        MessageEncodeError: If the frame cannot be JSON encoded.
    """
    if not isinstance(frame, Frame):
        raise MessageEncodeError(
            f'Message is not an instance of {Frame.__name__}. '
            f'Got {type(frame).__name__}.',
        )

    data = dataclasses.asdict(frame)

    try:
        return json.dumps(data)
    except TypeError as e:
        raise MessageEncodeError('Error encoding message.') from e
