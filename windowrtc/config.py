"""Coordinator and session configuration.

Configurations are Pydantic models which can be parsed from TOML files.
"""
from __future__ import annotations

import logging
import pathlib
import sys
from typing import BinaryIO
from typing import TypeVar

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    import tomllib
    from typing import Self
else:  # pragma: <3.11 cover
    import tomli as tomllib
    from typing_extensions import Self

from aiortc import RTCConfiguration
from aiortc import RTCIceServer
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

BaseModelT = TypeVar('BaseModelT', bound=BaseModel)


def load(model: type[BaseModelT], fp: BinaryIO) -> BaseModelT:
    """Parse TOML from a binary file to a data class.

    Args:
        model: Config model type to parse TOML using.
        fp: File-like bytes stream to read in.

    Returns:
        Model initialized from TOML file.
    """
    return loads(model, fp.read().decode())


def loads(model: type[BaseModelT], data: str) -> BaseModelT:
    """Parse TOML string to data class.

    Args:
        model: Config model type to parse TOML using.
        data: TOML string to parse.

    Returns:
        Model initialized from TOML file.
    """
    return model.model_validate(tomllib.loads(data), strict=True)


class LoggingConfig(BaseModel):
    """Coordinator logging configuration.

    Attributes:
        log_dir: Default logging directory.
        default_level: Default logging level for the root logger.
        websockets_level: Log level for the `websockets` logger. Websockets
            logs with much higher frequency so it is suggested to set this
            to `WARNING` or higher.
        aiortc_level: Log level for the `aiortc` and `aioice` loggers.
        current_endpoints_interval: Optional seconds between logging the
            currently registered endpoints.
        current_endpoints_limit: Max threshold for enumerating the
            detailed list of registered endpoints. If `None`, no detailed
            list will be logged.
    """

    model_config = ConfigDict(extra='forbid')

    log_dir: str | None = None
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    aiortc_level: int | str = logging.WARNING
    current_endpoints_interval: int | None = 60
    current_endpoints_limit: int | None = 32


class CoordinatorConfig(BaseModel):
    """Coordinator serving configuration.

    Attributes:
        host: Network interface the server binds to.
        port: Network port the server binds to.
        certfile: Certificate file (PEM format) use to enable TLS.
        keyfile: Private key file. If not specified, the key will be
            taken from the certfile.
        logging: Logging configuration.
        max_message_bytes: Maximum size in bytes of messages received by
            the coordinator.
    """

    model_config = ConfigDict(extra='forbid')

    host: str | None = None
    port: int = 8765
    certfile: str | None = None
    keyfile: str | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    max_message_bytes: int | None = None

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="coordinator.toml"
            host = "0.0.0.0"
            port = 8765
            certfile = "/path/to/cert.pem"
            keyfile = "/path/to/privkey.pem"

            [logging]
            log_dir = "/path/to/log/dir"
            default_level = "INFO"
            websockets_level = "WARNING"
            aiortc_level = "WARNING"
            current_endpoints_interval = 60
            current_endpoints_limit = 32
            ```

        Note:
            Omitted values will be set to their defaults.
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)


class IceServerConfig(BaseModel):
    """STUN or TURN server used by the connection engine.

    Attributes:
        urls: One or more `stun:` or `turn:` URLs.
        username: Username for TURN servers.
        credential: Credential for TURN servers. Excluded from the
            [`repr()`][repr] because it is a secret.
    """

    model_config = ConfigDict(extra='forbid')

    urls: list[str]
    username: str | None = None
    credential: str | None = Field(default=None, repr=False)


class SessionConfig(BaseModel):
    """Peer session configuration.

    Attributes:
        ice_servers: ICE servers passed to the connection engine. An empty
            list only uses host candidates.
    """

    model_config = ConfigDict(extra='forbid')

    ice_servers: list[IceServerConfig] = Field(default_factory=list)

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="session.toml"
            [[ice_servers]]
            urls = ["stun:stun.l.google.com:19302"]

            [[ice_servers]]
            urls = ["turn:turn.example.com:3478"]
            username = "user"
            credential = "secret"
            ```
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)

    def rtc_configuration(self) -> RTCConfiguration:
        """Build the aiortc configuration of a peer connection."""
        return RTCConfiguration(
            iceServers=[
                RTCIceServer(
                    urls=server.urls,
                    username=server.username,
                    credential=server.credential,
                )
                for server in self.ice_servers
            ],
        )
