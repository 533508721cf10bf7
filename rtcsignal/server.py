"""Signaling server assembled from its components."""
from __future__ import annotations

import logging
import ssl
from types import TracebackType
from typing import Callable

from aiortc import RTCConfiguration
from aiortc import RTCPeerConnection

from rtcsignal.config import SignalingServerConfig
from rtcsignal.dispatcher import Dispatcher
from rtcsignal.media import open_video_source
from rtcsignal.media import TrackSource
from rtcsignal.media import VideoSource
from rtcsignal.messenger import DataChannelMessenger
from rtcsignal.negotiation import NegotiationEngine
from rtcsignal.transport import WebSocketTransport
from rtcsignal.utils.tasks import WorkQueue

logger = logging.getLogger(__name__)


class SignalingServer:
    """WebRTC answering server.

    Builds each component once and wires them together explicitly: the
    transport delivers events to the dispatcher, the dispatcher submits
    them to the work queue, and the owner task drives the negotiation
    engine and messenger.

    Example:
        ```python
        config = SignalingServerConfig(port=8080)

        async with SignalingServer(config) as server:
            await server.send('hello')  # delivered once the channel opens
            ...
        ```

    Args:
        config: Server configuration.
        on_message: Callback invoked with each text message received from
            the peer over the data channel or as a data signaling message.
        video_source: Supplier of the outbound video track. If `None`, the
            source in `config.media` is opened if configured.
        connection_factory: Callable that creates peer connections.
    """

    def __init__(
        self,
        config: SignalingServerConfig,
        *,
        on_message: Callable[[str], None] | None = None,
        video_source: TrackSource | None = None,
        connection_factory: Callable[
            [RTCConfiguration],
            RTCPeerConnection,
        ] = RTCPeerConnection,
    ) -> None:
        self.config = config

        self._owned_video: VideoSource | None = None
        if video_source is None:
            self._owned_video = open_video_source(
                config.media.video_source,
                format=config.media.video_format,
                options=config.media.video_options,
            )
            video_source = self._owned_video

        ssl_context: ssl.SSLContext | None = None
        if config.certfile is not None:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            ssl_context.load_cert_chain(
                config.certfile,
                keyfile=config.keyfile,
            )

        self.messenger = DataChannelMessenger(on_message)
        self.transport = WebSocketTransport(
            host=config.host,
            port=config.port,
            path=config.path,
            ssl_context=ssl_context,
            max_message_bytes=config.max_message_bytes,
        )
        self.engine = NegotiationEngine(
            self.messenger,
            self.transport,
            **config.ice_kwargs(),
            video_source=video_source,
            step_timeout=config.step_timeout,
            connection_factory=connection_factory,
        )
        self.work_queue = WorkQueue(config.queue_size)
        self.dispatcher = Dispatcher(
            self.engine,
            self.messenger,
            self.work_queue,
        )
        self.transport.listener = self.dispatcher

    async def __aenter__(self) -> SignalingServer:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    async def start(self) -> None:
        """Start the owner task and begin accepting connections."""
        self.work_queue.start()
        await self.transport.start()

    async def close(self) -> None:
        """Stop accepting connections and tear down the peer session."""
        await self.transport.close()
        if self.work_queue.running:
            await self.work_queue.join()
        await self.engine.teardown()
        await self.work_queue.close()
        if self._owned_video is not None:
            self._owned_video.close()
        logger.info('Signaling server closed')

    async def send(self, message: str) -> None:
        """Send text to the peer over the data channel.

        The message is queued until the data channel is open.

        Args:
            message: Text to send.
        """
        await self.work_queue.submit(self.messenger.send_or_queue, message)

    def send_threadsafe(self, message: str) -> None:
        """Send text to the peer from a thread other than the event loop.

        Args:
            message: Text to send.
        """
        self.work_queue.submit_threadsafe(
            self.messenger.send_or_queue,
            message,
        )
