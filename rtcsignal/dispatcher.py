"""Route signaling messages from the transport to the session owner."""
from __future__ import annotations

import asyncio
import logging

from rtcsignal.exceptions import NegotiationError
from rtcsignal.messages import decode_message
from rtcsignal.messages import MessageDecodeError
from rtcsignal.messages import MessageType
from rtcsignal.messages import SignalingMessage
from rtcsignal.messenger import DataChannelMessenger
from rtcsignal.negotiation import NegotiationEngine
from rtcsignal.utils.tasks import spawn_guarded_background_task
from rtcsignal.utils.tasks import WorkQueue

logger = logging.getLogger(__name__)


class Dispatcher:
    """Dispatch transport events to the negotiation engine and messenger.

    The `on_*` methods are the transport listener interface. They run in
    the transport's connection handlers and only submit work to the
    [`WorkQueue`][rtcsignal.utils.tasks.WorkQueue], so every change to
    session state happens on the queue's owner task in arrival order.

    Args:
        engine: Negotiation engine for the active peer session.
        messenger: Data channel messenger of the active peer session.
        work_queue: Queue drained by the owner task.
    """

    def __init__(
        self,
        engine: NegotiationEngine,
        messenger: DataChannelMessenger,
        work_queue: WorkQueue,
    ) -> None:
        self._engine = engine
        self._messenger = messenger
        self._work_queue = work_queue
        self._clients: set[int] = set()

        self._engine.on_close_callback(self._on_peer_closed)

    @property
    def clients(self) -> frozenset[int]:
        """IDs of connected transport clients."""
        return frozenset(self._clients)

    async def on_connect(self, client_id: int) -> None:
        """Record a newly connected transport client."""
        await self._work_queue.submit(self._client_connected, client_id)

    async def on_disconnect(self, client_id: int) -> None:
        """Record a disconnected transport client."""
        await self._work_queue.submit(self._client_disconnected, client_id)

    async def on_message(self, message: str) -> None:
        """Queue a raw message from the transport for dispatch."""
        await self._work_queue.submit(self.handle_text, message)

    async def _on_peer_closed(self) -> None:
        logger.info('Peer connection lost, scheduling teardown')
        await self._work_queue.submit(self._engine.teardown)

    def _client_connected(self, client_id: int) -> None:
        self._clients.add(client_id)
        logger.info(
            f'Client {client_id} connected ({len(self._clients)} connected)',
        )

    async def _client_disconnected(self, client_id: int) -> None:
        self._clients.discard(client_id)
        logger.info(
            f'Client {client_id} disconnected '
            f'({len(self._clients)} connected)',
        )
        if len(self._clients) == 0:
            await self._engine.teardown()

    def handle_text(self, message: str) -> None:
        """Decode and dispatch a raw message.

        Malformed messages are logged and dropped.

        Args:
            message: Raw text received from the transport.
        """
        try:
            decoded = decode_message(message)
        except MessageDecodeError as e:
            logger.warning(f'Dropping malformed message: {e}')
            return
        self.dispatch(decoded)

    def dispatch(self, message: SignalingMessage) -> None:
        """Route a decoded message by type.

        Offers claim the session immediately so later work in the queue,
        such as a teardown, observes the claim. The negotiation itself runs
        in a background task so the queue is not blocked while it waits on
        the peer connection.

        Args:
            message: Decoded signaling message.
        """
        logger.debug(f'Dispatching {message.type.value} message')
        if message.type is MessageType.offer:
            assert message.sdp is not None
            try:
                negotiation = self._engine.begin_offer(message.sdp)
            except NegotiationError as e:
                logger.error(f'{e.__class__.__name__}: {e}')
                return
            task = spawn_guarded_background_task(self._negotiate, negotiation)
            task.set_name('negotiation-watcher')
        elif message.type is MessageType.candidate:
            self._engine.receive_candidate(message)
        elif message.type is MessageType.data:
            assert message.data is not None
            self._messenger.receive_message(message.data)
        else:
            logger.warning(f'Ignoring unexpected {message.type.value} message')

    async def _negotiate(self, negotiation: asyncio.Task[None]) -> None:
        try:
            await negotiation
        except NegotiationError as e:
            logger.error(f'{e.__class__.__name__}: {e}')
