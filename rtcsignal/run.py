"""CLI and serving functions for running a signaling server."""
from __future__ import annotations

import asyncio
import datetime
import logging
import logging.handlers
import os
import pprint
import signal
import sys

import click

from rtcsignal.config import SignalingServerConfig
from rtcsignal.server import SignalingServer
from rtcsignal.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


def periodic_status_logger(
    server: SignalingServer,
    interval: float = 60,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Create an asyncio task which logs the state of the server.

    Args:
        server: Signaling server instance to log the status of.
        interval: Seconds between logging the status.
        level: Logging level.

    Returns:
        Asyncio task.
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            session = server.engine.session
            logger.log(
                level,
                f'Connected clients: {len(server.dispatcher.clients)}, '
                f'negotiation: {session.state.value}, '
                f'channel: {server.messenger.state.value}, '
                f'queued messages: {server.messenger.pending}, '
                f'candidates applied/dropped/pending: '
                f'{session.applied_candidates}/{session.dropped_candidates}/'
                f'{len(session.pending_candidates)}',
            )

    task = spawn_guarded_background_task(_log)
    task.set_name('signaling-server-status-logger')

    return task


async def serve(config: SignalingServerConfig) -> None:
    """Run the signaling server.

    Initializes a [`SignalingServer`][rtcsignal.server.SignalingServer]
    and listens for signaling connections until SIGINT or SIGTERM is
    received.

    Note:
        This function will not configure any logging. Configuring logging
        according to
        [`SignalingServerConfig.logging`][rtcsignal.config.SignalingServerConfig]
        is the responsibility of the caller.

    Args:
        config: Serving configuration.
    """
    server = SignalingServer(config)

    # Set the stop condition when receiving SIGINT (ctrl-C) and SIGTERM.
    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    config_repr = pprint.pformat(config, indent=2)
    logger.info(f'Signaling server configuration:\n{config_repr}')

    status_task: asyncio.Task[None] | None = None
    if config.logging.status_interval is not None:  # pragma: no branch
        level = (
            config.logging.default_level
            if isinstance(config.logging.default_level, int)
            else logging.getLevelName(config.logging.default_level)
        )
        status_task = periodic_status_logger(
            server,
            config.logging.status_interval,
            level=level,
        )

    async with server:
        logger.info(
            f'Signaling server listening on {server.transport.address}',
        )
        logger.info('Use ctrl-C to stop')
        await stop

        if status_task is not None:  # pragma: no branch
            status_task.cancel()
            try:
                await status_task
            except asyncio.CancelledError:
                pass

    loop.remove_signal_handler(signal.SIGINT)
    loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Signaling server shutdown')


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option('--port', type=int, metavar='PORT', help='Port to bind to.')
@click.option('--path', metavar='PATH', help='Websocket signaling path.')
@click.option(
    '--ice-server',
    'ice_servers',
    multiple=True,
    metavar='URL',
    help='STUN/TURN server URL. May be repeated.',
)
@click.option(
    '--video-source',
    metavar='SOURCE',
    help='File, device, or URL to stream as outbound video.',
)
@click.option('--log-dir', metavar='PATH', help='Logging directory.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
def cli(
    config_path: str | None,
    host: str | None,
    port: int | None,
    path: str | None,
    ice_servers: tuple[str, ...],
    video_source: str | None,
    log_dir: str | None,
    log_level: str | None,
) -> None:
    """Run a WebRTC signaling server.

    Browsers connect to the websocket signaling path, send an offer and
    their ICE candidates, and receive an answer. If no configuration file
    is provided, a default configuration will be created from
    [`SignalingServerConfig()`][rtcsignal.config.SignalingServerConfig].
    The remaining CLI options will override the options provided in the
    configuration object.
    """
    config = (
        SignalingServerConfig()
        if config_path is None
        else SignalingServerConfig.from_toml(config_path)
    )

    # Override config with CLI options if given
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if path is not None:
        config.path = path
    if len(ice_servers) > 0:
        config.ice_servers = list(ice_servers)
    if video_source is not None:
        config.media.video_source = video_source
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = logging.getLevelName(log_level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.logging.log_dir is not None:
        os.makedirs(config.logging.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.logging.log_dir, 'server.log'),
                # Rotate logs Sunday at midnight
                when='W6',
                atTime=datetime.time(hour=0, minute=0, second=0),
            ),
        )

    logging.basicConfig(
        format=(
            '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: '
            '%(message)s'
        ),
        datefmt='%Y-%m-%d %H:%M:%S',
        level=config.logging.default_level,
        handlers=handlers,
    )

    logging.getLogger('websockets').setLevel(config.logging.websockets_level)
    logging.getLogger('aiortc').setLevel(config.logging.aiortc_level)
    logging.getLogger('aioice').setLevel(config.logging.aiortc_level)

    asyncio.run(serve(config))
