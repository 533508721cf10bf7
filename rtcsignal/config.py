"""Signaling server configuration file parsing."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Any

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    import tomllib
    from typing import Self
else:  # pragma: <3.11 cover
    import tomli as tomllib
    from typing_extensions import Self

import tomli_w
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from rtcsignal.negotiation import DEFAULT_ICE_SERVERS


class SignalingLoggingConfig(BaseModel):
    """Signaling server logging configuration.

    Attributes:
        log_dir: Default logging directory.
        default_level: Default logging level for the root logger.
        websockets_level: Log level for the `websockets` logger. Websockets
            logs with much higher frequency so it is suggested to set this
            to `WARNING` or higher.
        aiortc_level: Log level for the `aiortc` and `aioice` loggers.
        status_interval: Optional seconds between logging the number of
            connected clients and the state of the peer session.
    """

    model_config = ConfigDict(extra='forbid')

    log_dir: str | None = None
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    aiortc_level: int | str = logging.WARNING
    status_interval: int | None = 60


class MediaConfig(BaseModel):
    """Outbound video configuration.

    Attributes:
        video_source: File path, device, or URL to stream to the peer. If
            `None`, no video is sent.
        video_format: FFmpeg input format of the source (e.g., `v4l2`).
        video_options: FFmpeg input options (e.g., `video_size`).
    """

    model_config = ConfigDict(extra='forbid')

    video_source: str | None = None
    video_format: str | None = None
    video_options: dict[str, str] = Field(default_factory=dict)


class SignalingServerConfig(BaseModel):
    """Signaling server configuration.

    Attributes:
        host: Network interface the server binds to.
        port: Network port the server binds to.
        path: Websocket path clients send signaling messages on.
        ice_servers: STUN/TURN server URLs used by the peer connection.
        turn_username: Username for TURN servers.
        turn_credential: Credential for TURN servers. Excluded from the
            [`repr()`][repr] of this class.
        step_timeout: Optional timeout in seconds for each negotiation step.
        queue_size: Maximum number of pending transport events.
        max_message_bytes: Maximum size in bytes of messages received from
            clients.
        certfile: Certificate file (PEM format) use to enable TLS.
        keyfile: Private key file. If not specified, the key will be
            taken from the certfile.
        media: Outbound video configuration.
        logging: Logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    host: str | None = '0.0.0.0'
    port: int = 8080
    path: str = '/ws'
    ice_servers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ICE_SERVERS),
    )
    turn_username: str | None = None
    turn_credential: str | None = Field(default=None, repr=False)
    step_timeout: float | None = None
    queue_size: int = 1024
    max_message_bytes: int | None = None
    certfile: str | None = None
    keyfile: str | None = None
    media: MediaConfig = Field(default_factory=MediaConfig)
    logging: SignalingLoggingConfig = Field(
        default_factory=SignalingLoggingConfig,
    )

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="signaling.toml"
            host = "0.0.0.0"
            port = 8080
            path = "/ws"
            ice_servers = [
                "stun:stun.l.google.com:19302",
                "turn:turn.example.com:3478",
            ]
            turn_username = "user"
            turn_credential = "..."

            [media]
            video_source = "/dev/video0"
            video_format = "v4l2"

            [logging]
            log_dir = "/path/to/log/dir"
            default_level = "INFO"
            websockets_level = "WARNING"
            status_interval = 60
            ```

            ```python
            from rtcsignal.config import SignalingServerConfig

            config = SignalingServerConfig.from_toml('signaling.toml')
            ```

        Note:
            Omitted values will be set to their defaults. Values are
            validated in strict mode so, for example, a quoted port number
            is rejected rather than coerced.
        """
        with open(filepath, 'rb') as f:
            data = tomllib.load(f)
        return cls.model_validate(data, strict=True)

    def write_toml(self, filepath: str | pathlib.Path) -> None:
        """Write the configuration to a TOML file.

        Options set to `None` are omitted since TOML has no null value.

        Args:
            filepath: Path of the file to write.
        """
        with open(filepath, 'wb') as f:
            tomli_w.dump(self.model_dump(exclude_none=True), f)

    def ice_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for the ICE configuration of the engine."""
        return {
            'ice_servers': list(self.ice_servers),
            'turn_username': self.turn_username,
            'turn_credential': self.turn_credential,
        }
