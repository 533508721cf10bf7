"""Tools for running a local signaling server for unit tests."""
from __future__ import annotations

from typing import AsyncGenerator
from typing import NamedTuple

import pytest_asyncio

from rtcsignal.config import SignalingServerConfig
from rtcsignal.server import SignalingServer
from testing.utils import open_port


class SignalingServerInfo(NamedTuple):
    """NamedTuple returned by signaling_server fixture."""

    signaling_server: SignalingServer
    received: list[str]
    host: str
    port: int
    address: str


@pytest_asyncio.fixture()
async def signaling_server() -> AsyncGenerator[SignalingServerInfo, None]:
    """Fixture that runs a signaling server locally.

    The server uses no STUN servers so negotiation only gathers host
    candidates.

    Yields:
        `SignalingServerInfo <.SignalingServerInfo>`
    """
    host = 'localhost'
    port = open_port()
    config = SignalingServerConfig(host=host, port=port, ice_servers=[])
    received: list[str] = []

    async with SignalingServer(config, on_message=received.append) as server:
        yield SignalingServerInfo(
            signaling_server=server,
            received=received,
            host=host,
            port=port,
            address=f'ws://{host}:{port}{config.path}',
        )
