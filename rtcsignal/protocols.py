"""Transport interface protocols."""
from __future__ import annotations

from typing import Protocol
from typing import runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """Transport that relays signaling text to connected clients."""

    async def broadcast(self, message: str) -> None:
        """Send a message to every connected client.

        Args:
            message: Encoded signaling message.
        """
        ...


@runtime_checkable
class TransportListener(Protocol):
    """Receiver of events from a transport.

    Methods are invoked from the transport's connection handlers and must
    not touch session state directly.
    """

    async def on_connect(self, client_id: int) -> None:
        """Client connected."""
        ...

    async def on_disconnect(self, client_id: int) -> None:
        """Client disconnected."""
        ...

    async def on_message(self, message: str) -> None:
        """Text message received from a client."""
        ...
