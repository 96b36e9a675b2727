from __future__ import annotations

from typing import Generator

import pytest

# Import fixtures from testing/ so they are known by pytest
# and can be used with
from testing.coordinator import local_coordinator
from testing.coordinator import websocket_coordinator
from testing.ssl import ssl_context
from windowrtc.session import define_transport


@pytest.fixture(autouse=True)
def _reset_defined_transport() -> Generator[None, None, None]:
    """Clear the module-level session transport after each test."""
    yield
    define_transport(None)
