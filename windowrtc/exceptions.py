"""Exception types raised by the registry, relay, transports and sessions."""
from __future__ import annotations


class WindowRTCError(Exception):
    """Base exception type for all windowrtc errors."""

    pass


class RegistryError(WindowRTCError):
    """Base exception type for peer registry errors."""

    pass


class DuplicateNameError(RegistryError):
    """A name or endpoint handle is already registered."""

    pass


class NotRegisteredError(RegistryError):
    """An endpoint handle has no registry entry."""

    pass


class SelfNotRegisteredError(NotRegisteredError):
    """The calling endpoint is not registered with the coordinator.

    Returned as a value by the coordinator rather than raised to the
    calling endpoint.
    """

    pass


class ReceiverNotFoundError(RegistryError):
    """The receiver of a signaling envelope is not registered.

    Returned as a value by the relay so the sender can react without
    tearing down its own state.
    """

    pass


class SessionError(WindowRTCError):
    """Base exception type for errors constructing a peer session."""

    pass


class TransportNotConfiguredError(SessionError):
    """No endpoint transport was defined before creating a session."""

    pass


class PeerNotRegisteredError(SessionError):
    """The requested peer is not registered with the coordinator."""

    pass


class TransportError(WindowRTCError):
    """Base exception type for transport errors."""

    pass


class EndpointClosedError(TransportError):
    """The endpoint on the other side of a transport has gone away."""

    pass


class RegistrationError(TransportError):
    """A transport client was unable to register with the coordinator."""

    pass
