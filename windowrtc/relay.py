"""Signaling relay forwarding envelopes between registered endpoints."""
from __future__ import annotations

import logging

from windowrtc.channels import Operation
from windowrtc.exceptions import EndpointClosedError
from windowrtc.exceptions import ReceiverNotFoundError
from windowrtc.messages import SignalingEnvelope
from windowrtc.registry import PeerRegistry

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Routes signaling envelopes to the endpoint named as receiver.

    The relay is a lightweight forwarder. It does not inspect or validate
    envelope payloads, that is the responsibility of the receiving
    [`PeerSession`][windowrtc.session.PeerSession].

    Args:
        registry: Registry used to look up receivers.
    """

    def __init__(self, registry: PeerRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> PeerRegistry:
        """Registry used to look up receivers."""
        return self._registry

    async def forward(
        self,
        envelope: SignalingEnvelope,
    ) -> ReceiverNotFoundError | None:
        """Forward an envelope to its receiver.

        Delivery is best-effort. If the receiver goes away between the
        lookup and the delivery the failure is logged but not reported; the
        registry will independently broadcast that the receiver left.

        Args:
            envelope: Envelope to forward unchanged.

        Returns:
            `None` if the envelope was handed to the receiver's channel or a
            [`ReceiverNotFoundError`][windowrtc.exceptions.ReceiverNotFoundError]
            if no endpoint is registered with the receiver name.
        """
        target = self._registry.get(envelope.receiver)
        if target is None:
            logger.warning(
                f'Endpoint {envelope.sender} attempting to send '
                f'{envelope.channel.value} message to unknown peer '
                f'{envelope.receiver}',
            )
            return ReceiverNotFoundError(
                f'Cannot forward {envelope.channel.value} message to '
                f'{envelope.receiver!r} because no endpoint is registered '
                'with that name.',
            )

        logger.debug(
            f'Transmitting {envelope.channel.value} message from '
            f'{envelope.sender} to {envelope.receiver}',
        )
        try:
            await target.handle.notify(Operation.signal, envelope)
        except EndpointClosedError:
            logger.warning(
                f'Dropped {envelope.channel.value} message from '
                f'{envelope.sender} because {envelope.receiver} closed',
            )
        return None
