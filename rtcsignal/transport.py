"""Websocket transport for exchanging signaling messages with clients.

The transport only frames and relays text. Every connection on the
signaling path receives every broadcast message and messages received from
any connection are handed to a
[`TransportListener`][rtcsignal.protocols.TransportListener].
"""
from __future__ import annotations

import itertools
import logging
import socket
import ssl
import sys
import urllib.parse

import websockets.exceptions
from websockets.asyncio.server import broadcast
from websockets.asyncio.server import serve
from websockets.asyncio.server import Server
from websockets.asyncio.server import ServerConnection

from rtcsignal.protocols import TransportListener

logger = logging.getLogger(__name__)

_WILDCARD_HOSTS = (None, '', '0.0.0.0', '::')


def lan_address() -> str:
    """Get the IPv4 address of this machine on the local network.

    Connecting a UDP socket sends no packets but makes the OS pick the
    interface used for outbound traffic.

    Returns:
        The LAN IPv4 address or `127.0.0.1` if the machine has no route.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect(('10.255.255.255', 1))
            return sock.getsockname()[0]
        except OSError:
            return '127.0.0.1'


class WebSocketTransport:
    """Websocket signaling transport.

    The handler will close the connection for the following reasons.

    - The client connected to a path other than the signaling path
      (code 4004).
    - The client sent a binary message (code 4000).
    - The client sent a message larger than the allowed size (code 4003).

    Args:
        listener: Receiver of connection and message events.
        host: Network interface to bind to.
        port: Network port to bind to.
        path: Signaling path clients connect to.
        ssl_context: Optional SSL context to enable TLS.
        max_message_bytes: Optional maximum size of client messages in bytes.
            Note that message size is computed using
            [`sys.getsizeof()`][sys.getsizeof] so will also include the
            PyObject overhead.
    """

    def __init__(
        self,
        listener: TransportListener | None = None,
        *,
        host: str | None = None,
        port: int = 8080,
        path: str = '/ws',
        ssl_context: ssl.SSLContext | None = None,
        max_message_bytes: int | None = None,
    ) -> None:
        self._listener = listener
        self._host = host
        self._port = port
        self._path = path
        self._ssl_context = ssl_context
        self._max_message_bytes = max_message_bytes

        self._client_ids = itertools.count(1)
        self._connections: dict[int, ServerConnection] = {}
        self._server: Server | None = None

    @property
    def listener(self) -> TransportListener | None:
        """Receiver of connection and message events."""
        return self._listener

    @listener.setter
    def listener(self, listener: TransportListener) -> None:
        self._listener = listener

    @property
    def connections(self) -> dict[int, ServerConnection]:
        """Open connections keyed by client ID."""
        return dict(self._connections)

    @property
    def port(self) -> int:
        """Port the server is bound to."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @property
    def address(self) -> str:
        """Websocket address of the signaling endpoint.

        When bound to all interfaces, the LAN address of this machine is
        reported so peers on other devices know where to connect.
        """
        scheme = 'ws' if self._ssl_context is None else 'wss'
        host = lan_address() if self._host in _WILDCARD_HOSTS else self._host
        return f'{scheme}://{host}:{self.port}{self._path}'

    async def start(self) -> None:
        """Start listening for connections."""
        if self._server is not None:
            return
        self._server = await serve(
            self.handler,
            self._host,
            self._port,
            ssl=self._ssl_context,
        )
        logger.info(f'Signaling transport listening on {self.address}')

    async def close(self) -> None:
        """Close all connections and stop listening."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info('Signaling transport closed')

    async def broadcast(self, message: str) -> None:
        """Send a message to every open connection.

        Args:
            message: Text to send.
        """
        connections = list(self._connections.values())
        broadcast(connections, message)
        logger.debug(f'Broadcast message to {len(connections)} client(s)')

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler.

        Args:
            websocket: Newly opened client connection.
        """
        request_path = (
            '/' if websocket.request is None else websocket.request.path
        )
        if urllib.parse.urlsplit(request_path).path != self._path:
            logger.warning(
                f'Client at {websocket.remote_address} connected to unknown '
                f'path {request_path}. Connection closed with error code 4004',
            )
            await websocket.close(4004, reason='Unknown path.')
            return

        client_id = next(self._client_ids)
        self._connections[client_id] = websocket
        logger.info(
            f'Client {client_id} connected from {websocket.remote_address}',
        )
        if self._listener is not None:
            await self._listener.on_connect(client_id)

        try:
            await self._receive_loop(client_id, websocket)
        finally:
            self._connections.pop(client_id, None)
            logger.info(f'Client {client_id} disconnected')
            if self._listener is not None:
                await self._listener.on_disconnect(client_id)

    async def _receive_loop(
        self,
        client_id: int,
        websocket: ServerConnection,
    ) -> None:
        while True:
            try:
                message = await websocket.recv()
            except websockets.exceptions.ConnectionClosedOK:
                break
            except websockets.exceptions.ConnectionClosedError as e:
                logger.warning(
                    f'Connection with client {client_id} closed '
                    f'unexpectedly: {e}',
                )
                break

            if isinstance(message, bytes):
                logger.error(
                    f'Client {client_id} sent a binary message. '
                    'Connection closed with error code 4000',
                )
                await websocket.close(4000, reason='Expected text message.')
                break

            if (
                self._max_message_bytes is not None
                and sys.getsizeof(message) > self._max_message_bytes
            ):
                logger.warning(
                    f'Client {client_id} sent message with size '
                    f'{sys.getsizeof(message)} bytes which exceeds the max '
                    f'configured size of {self._max_message_bytes} bytes. '
                    'Connection closed with error code 4003',
                )
                await websocket.close(
                    4003,
                    reason='Message length exceeds limit.',
                )
                break

            logger.debug(f'Received message from client {client_id}')
            if self._listener is not None:
                await self._listener.on_message(message)
