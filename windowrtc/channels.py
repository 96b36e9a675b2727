"""Logical operations multiplexed over the coordinator channel."""
from __future__ import annotations

import enum


class Operation(enum.Enum):
    """Operations exchanged between endpoints and the coordinator."""

    log = 'windowrtc:log'
    """Free-form log line broadcast to every endpoint."""
    signal = 'windowrtc:signal'
    """Signaling envelope, as a relay request or as a push to an endpoint."""
    get_own_window_name = 'windowrtc:registered-window:own-name'
    """Name the calling endpoint is registered under."""
    get_registered_windows = 'windowrtc:registered-windows:get'
    """Names of every registered endpoint."""
