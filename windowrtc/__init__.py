"""windowrtc lets named endpoints negotiate WebRTC sessions via a relay."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('windowrtc')
