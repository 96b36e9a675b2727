"""Run a coordinator server reachable by websocket endpoints.

The `windowrtc-coordinator` command wraps [`serve()`][windowrtc.run.serve]:

```bash
windowrtc-coordinator --port 8765 --log-dir ./logs --log-level INFO
```
"""
from __future__ import annotations

import asyncio
import datetime
import logging
import logging.handlers
import os
import pprint
import signal
import ssl
import sys

import click
from websockets.asyncio.server import serve as websocket_serve

from windowrtc.config import CoordinatorConfig
from windowrtc.config import LoggingConfig
from windowrtc.coordinator import Coordinator
from windowrtc.task import spawn_guarded_background_task
from windowrtc.transport.websocket import WebSocketCoordinatorTransport

logger = logging.getLogger(__name__)

LOG_FILENAME = 'coordinator.log'
LOG_FORMAT = (
    '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: %(message)s'
)
STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def periodic_endpoint_logger(
    coordinator: Coordinator,
    interval: float = 60,
    limit: int | None = 32,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Log the registered endpoints of a coordinator every `interval` seconds.

    Args:
        coordinator: Coordinator whose registry is logged.
        interval: Seconds between log records.
        limit: Each endpoint is listed only while fewer than `limit` are
            registered. If `None`, only the count is logged.
        level: Logging level.

    Returns:
        Background task which runs until cancelled.
    """

    def _describe() -> str:
        endpoints = coordinator.registry.endpoints()
        summary = f'Registered endpoints: {len(endpoints)}'
        if limit is None or not 0 < len(endpoints) < limit:
            return summary
        listing = (
            repr(e) for e in sorted(endpoints, key=lambda e: e.name)
        )
        return '\n'.join((summary, *listing))

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            logger.log(level, _describe())

    return spawn_guarded_background_task(
        _log,
        name='coordinator-endpoint-logger',
    )


def configure_logging(config: LoggingConfig) -> None:
    """Configure the root logger for a coordinator process.

    Records go to stdout and, if `config.log_dir` is set, to a
    `coordinator.log` file in that directory rotated weekly. The
    `websockets`, `aiortc` and `aioice` loggers get their own levels.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_dir is not None:
        os.makedirs(config.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.log_dir, LOG_FILENAME),
                when='W6',
                atTime=datetime.time(),
            ),
        )

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        level=config.default_level,
        handlers=handlers,
    )
    logging.getLogger('websockets').setLevel(config.websockets_level)
    for name in ('aiortc', 'aioice'):
        logging.getLogger(name).setLevel(config.aiortc_level)


def _server_ssl_context(config: CoordinatorConfig) -> ssl.SSLContext | None:
    if config.certfile is None:
        return None
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(config.certfile, keyfile=config.keyfile)
    return context


def _level_number(level: int | str) -> int:
    return level if isinstance(level, int) else logging.getLevelName(level)


async def serve(config: CoordinatorConfig) -> None:
    """Serve a coordinator over websockets until SIGINT or SIGTERM.

    A [`Coordinator`][windowrtc.coordinator.Coordinator] is bound to a
    [`WebSocketCoordinatorTransport`][windowrtc.transport.websocket.WebSocketCoordinatorTransport]
    whose handler accepts endpoint connections. On shutdown the
    coordinator is disposed so its operation handlers are released.

    Note:
        Logging is not configured here. Call
        [`configure_logging()`][windowrtc.run.configure_logging] first if
        needed.

    Args:
        config: Serving configuration.
    """
    coordinator = Coordinator()
    transport = WebSocketCoordinatorTransport(
        coordinator,
        max_message_bytes=config.max_message_bytes,
    )
    coordinator.bind(transport)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for signum in STOP_SIGNALS:
        loop.add_signal_handler(signum, stop.set)

    logger_task: asyncio.Task[None] | None = None
    interval = config.logging.current_endpoints_interval
    if interval is not None:
        logger_task = periodic_endpoint_logger(
            coordinator,
            interval,
            config.logging.current_endpoints_limit,
            level=_level_number(config.logging.default_level),
        )

    logger.info(
        f'Coordinator serving configuration:\n'
        f'{pprint.pformat(config, indent=2)}',
    )

    try:
        async with websocket_serve(
            transport.handler,
            config.host,
            config.port,
            ssl=_server_ssl_context(config),
        ):
            logger.info(
                f'Coordinator listening on port {config.port} '
                '(ctrl-C to stop)',
            )
            await stop.wait()
    finally:
        if logger_task is not None:
            logger_task.cancel()
            await asyncio.gather(logger_task, return_exceptions=True)
        coordinator.dispose()
        for signum in STOP_SIGNALS:
            loop.remove_signal_handler(signum)

    logger.info('Coordinator shutdown')


@click.command()
@click.option('--config', '-c', 'config_path', help='TOML config file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option('--port', type=int, metavar='PORT', help='Port to bind to.')
@click.option('--log-dir', metavar='PATH', help='Directory for log files.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Root logging level.',
)
def cli(
    config_path: str | None,
    host: str | None,
    port: int | None,
    log_dir: str | None,
    log_level: str | None,
) -> None:
    """Run a coordinator for WebRTC endpoints.

    Endpoints register a unique name with the coordinator and relay
    signaling envelopes to each other through it. Options given on the
    command line take precedence over the configuration file.
    """
    config = (
        CoordinatorConfig()
        if config_path is None
        else CoordinatorConfig.from_toml(config_path)
    )

    overrides = {
        key: value
        for key, value in (('host', host), ('port', port))
        if value is not None
    }
    logging_overrides = {
        key: value
        for key, value in (
            ('log_dir', log_dir),
            ('default_level', log_level and log_level.upper()),
        )
        if value is not None
    }
    config = config.model_copy(
        update={
            **overrides,
            'logging': config.logging.model_copy(update=logging_overrides),
        },
    )

    configure_logging(config.logging)
    asyncio.run(serve(config))
