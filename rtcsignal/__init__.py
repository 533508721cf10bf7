"""Embedded WebRTC answering server with buffered data channel messaging.

Peers connect to a websocket signaling endpoint, send an SDP offer and
their ICE candidates, and receive an answer. Connections are established
using [aiortc](https://aiortc.readthedocs.io/){target=_blank}, an asyncio
WebRTC implementation.
"""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('rtcsignal')
