"""Transports carrying operations between endpoints and the coordinator.

* [`windowrtc.transport.local`][windowrtc.transport.local] connects
  endpoints living in the same process as the coordinator.
* [`windowrtc.transport.websocket`][windowrtc.transport.websocket] serves the
  coordinator over websockets so endpoints can live in other processes or
  on other hosts.
"""
from __future__ import annotations
