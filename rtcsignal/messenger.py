"""Buffered messaging over a WebRTC data channel."""
from __future__ import annotations

import collections
import enum
import logging
from typing import Callable

from aiortc import RTCDataChannel
from aiortc.exceptions import InvalidStateError

from rtcsignal.exceptions import ChannelSendError

logger = logging.getLogger(__name__)


class ChannelState(enum.Enum):
    """Readiness of the data channel."""

    connecting = 'connecting'
    open = 'open'  # noqa: A003
    closed = 'closed'


def _log_message(message: str) -> None:
    logger.info(f'Received data channel message: {message}')


class DataChannelMessenger:
    """Send and receive application text on a data channel.

    Messages sent before the channel is open (or after it closes) are
    queued and delivered in FIFO order, exactly once, as soon as the
    channel opens.

    Example:
        ```python
        messenger = DataChannelMessenger(on_message=print)
        messenger.send_or_queue('hello')  # queued, no channel yet

        messenger.attach(channel)  # flushed once the channel opens
        ```

    Args:
        on_message: Callback invoked with each text message received from
            the peer. Defaults to logging the message.
    """

    def __init__(
        self,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self._on_message = _log_message if on_message is None else on_message
        self._channel: RTCDataChannel | None = None
        self._state = ChannelState.connecting
        self._outbound_queue: collections.deque[str] = collections.deque()

    @property
    def _log_prefix(self) -> str:
        label = 'none' if self._channel is None else self._channel.label
        return f'{self.__class__.__name__}[{label}]'

    @property
    def state(self) -> ChannelState:
        """Current channel state."""
        return self._state

    @property
    def pending(self) -> int:
        """Number of messages waiting for the channel to open."""
        return len(self._outbound_queue)

    def attach(self, channel: RTCDataChannel) -> None:
        """Adopt a data channel opened by the peer.

        Note:
            aiortc marks channels created by the remote peer as open
            before they are handed to the application so in that case the
            queue is flushed immediately.

        Args:
            channel: Data channel to send and receive on.
        """
        logger.info(
            f'{self._log_prefix}: attaching channel {channel.label} '
            f'(state={channel.readyState})',
        )
        self._channel = channel
        self._state = ChannelState.connecting

        channel.on('open', self.on_open)
        channel.on('close', self.on_close)
        channel.on('message', self.receive_message)

        if channel.readyState == 'open':
            self.on_open()

    def on_open(self) -> None:
        """Mark the channel open and flush queued messages."""
        logger.info(
            f'{self._log_prefix}: channel open, flushing '
            f'{len(self._outbound_queue)} queued message(s)',
        )
        self._state = ChannelState.open
        while len(self._outbound_queue) > 0:
            message = self._outbound_queue[0]
            try:
                self._send(message)
            except ChannelSendError as e:
                logger.warning(f'{self._log_prefix}: flush stopped: {e}')
                self._state = ChannelState.closed
                return
            self._outbound_queue.popleft()
            logger.debug(f'{self._log_prefix}: flushed message: {message}')

    def on_close(self) -> None:
        """Mark the channel closed. Later sends are queued."""
        logger.info(f'{self._log_prefix}: channel closed')
        self._state = ChannelState.closed

    def send_or_queue(self, message: str) -> None:
        """Send a message now if the channel is open or queue it.

        Args:
            message: Text message to send to the peer.
        """
        if self._state is not ChannelState.open:
            logger.debug(
                f'{self._log_prefix}: channel not ready, queuing message',
            )
            self._outbound_queue.append(message)
            return

        try:
            self._send(message)
        except ChannelSendError as e:
            logger.warning(f'{self._log_prefix}: {e}, requeuing message')
            self._state = ChannelState.closed
            self._outbound_queue.append(message)
        else:
            logger.debug(f'{self._log_prefix}: sent message: {message}')

    def receive_message(self, payload: bytes | str) -> None:
        """Decode a message from the peer and hand it to the application.

        Args:
            payload: Raw message from the data channel. Bytes are decoded
                as UTF-8.
        """
        message = (
            payload.decode('utf-8', errors='replace')
            if isinstance(payload, bytes)
            else payload
        )
        self._on_message(message)

    def reset(self) -> None:
        """Close the channel and discard any queued messages."""
        if self._channel is not None:
            logger.info(
                f'{self._log_prefix}: closing channel and discarding '
                f'{len(self._outbound_queue)} queued message(s)',
            )
            self._channel.remove_all_listeners()
            self._channel.close()
        self._channel = None
        self._state = ChannelState.connecting
        self._outbound_queue.clear()

    def _send(self, message: str) -> None:
        if self._channel is None:
            raise ChannelSendError('No data channel is attached')
        try:
            self._channel.send(message)
        except InvalidStateError as e:
            raise ChannelSendError(
                f'Channel {self._channel.label} is not open',
            ) from e
