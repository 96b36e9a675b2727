"""Name-based registry of connected endpoints."""
from __future__ import annotations

import dataclasses
import datetime
import logging

from windowrtc.channels import Operation
from windowrtc.exceptions import DuplicateNameError
from windowrtc.exceptions import EndpointClosedError
from windowrtc.exceptions import SelfNotRegisteredError
from windowrtc.messages import SignalChannel
from windowrtc.messages import SignalingEnvelope
from windowrtc.transport.protocols import EndpointHandle

logger = logging.getLogger(__name__)


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(frozen=True, eq=False)
class RegisteredEndpoint:
    """Endpoint registered under a unique name.

    Attributes:
        name: Unique trimmed name of the endpoint.
        handle: Transport handle used to push messages to the endpoint.
        created: Time the endpoint was registered at.
    """

    name: str
    handle: EndpointHandle
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        return (
            f'{self.__class__.__name__}(name={self.name}, '
            f'handle={self.handle!r}, created={created})'
        )


class PeerRegistry:
    """Membership table mapping unique names to endpoint handles.

    Names are trimmed and compared case-sensitively. At most one entry
    exists per name and per handle.

    Warning:
        This class is intended for use by the
        [`Coordinator`][windowrtc.coordinator.Coordinator] which owns the
        registry and relay of a process.
    """

    def __init__(self) -> None:
        self._endpoints_by_name: dict[str, RegisteredEndpoint] = {}
        self._endpoints_by_handle: dict[
            EndpointHandle,
            RegisteredEndpoint,
        ] = {}

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return name.strip() in self._endpoints_by_name

    def __len__(self) -> int:
        return len(self._endpoints_by_name)

    def register(
        self,
        name: str,
        handle: EndpointHandle,
    ) -> RegisteredEndpoint:
        """Register an endpoint handle under a name.

        The handle's disappearance hook is armed so the entry is
        unregistered automatically when the endpoint goes away.

        Args:
            name: Name to register. Leading and trailing whitespace is
                removed.
            handle: Transport handle of the endpoint.

        Returns:
            The new registry entry.

        Raises:
            ValueError: If the name is empty after trimming.
            DuplicateNameError: If the name or the handle is already
                registered.
        """
        clean_name = name.strip()
        if not clean_name:
            raise ValueError('Endpoint name must be a non-empty string.')

        if (
            clean_name in self._endpoints_by_name
            or handle in self._endpoints_by_handle
        ):
            raise DuplicateNameError(
                f'Endpoint with name {clean_name!r} is already registered.',
            )

        endpoint = RegisteredEndpoint(name=clean_name, handle=handle)
        self._endpoints_by_name[clean_name] = endpoint
        self._endpoints_by_handle[handle] = endpoint

        async def _on_disappear() -> None:
            # Only remove this entry, the name may have been reused since.
            if self._endpoints_by_name.get(endpoint.name) is endpoint:
                logger.info(f'Endpoint {endpoint.name} disappeared')
                await self.unregister(endpoint.name)

        handle.on_disappear(_on_disappear)
        logger.info(f'Registered endpoint: {endpoint}')
        return endpoint

    async def unregister(self, name: str) -> None:
        """Unregister an endpoint by name.

        Every remaining endpoint is pushed a `peer-left` envelope whose
        sender is the removed name. Unregistering a name that is not
        registered does nothing, so explicit unregistration may safely race
        with the disappearance hook.

        Args:
            name: Name the endpoint was registered with.
        """
        clean_name = name.strip()
        endpoint = self._endpoints_by_name.pop(clean_name, None)
        if endpoint is None:
            logger.debug(
                f'Ignoring unregister of unknown endpoint {clean_name!r}',
            )
            return
        self._endpoints_by_handle.pop(endpoint.handle, None)
        logger.info(f'Unregistered endpoint {endpoint.name}')

        for other in self.endpoints():
            envelope = SignalingEnvelope(
                channel=SignalChannel.peer_left,
                sender=endpoint.name,
                receiver=other.name,
                payload='',
            )
            try:
                await other.handle.notify(Operation.signal, envelope)
            except EndpointClosedError:
                logger.warning(
                    f'Unable to notify {other.name} that {endpoint.name} '
                    'left because the endpoint is closed',
                )

    def resolve_own_name(self, handle: EndpointHandle) -> str:
        """Get the name a handle is registered under.

        Raises:
            SelfNotRegisteredError: If the handle is not registered.
        """
        endpoint = self._endpoints_by_handle.get(handle, None)
        if endpoint is None:
            raise SelfNotRegisteredError(
                'Unable to get own registered name. The endpoint may not '
                'have been registered.',
            )
        return endpoint.name

    def list_names(self) -> list[str]:
        """Get a snapshot of the registered names."""
        return list(self._endpoints_by_name)

    def endpoints(self) -> list[RegisteredEndpoint]:
        """Get a snapshot of the registered endpoints."""
        return list(self._endpoints_by_name.values())

    def get(self, name: str) -> RegisteredEndpoint | None:
        """Get an endpoint by name."""
        return self._endpoints_by_name.get(name.strip(), None)

    def get_by_handle(
        self,
        handle: EndpointHandle,
    ) -> RegisteredEndpoint | None:
        """Get an endpoint by its transport handle."""
        return self._endpoints_by_handle.get(handle, None)
