"""Optional outbound video source."""
from __future__ import annotations

import logging
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from aiortc.contrib.media import MediaRelay

logger = logging.getLogger(__name__)


@runtime_checkable
class TrackSource(Protocol):
    """Supplier of an outbound video track for each negotiated session."""

    def track(self) -> MediaStreamTrack | None:
        """Get a video track for a new session, if one is available."""
        ...


class VideoSource:
    """Video source backed by a media player.

    Each call to [`track()`][rtcsignal.media.VideoSource.track] returns a
    new subscription to the same underlying player so sessions can be torn
    down and renegotiated without restarting capture.

    Args:
        source: File path, device, or URL understood by FFmpeg.
        format: Optional FFmpeg input format (e.g., `#!python 'v4l2'`).
        options: Optional FFmpeg input options.
    """

    def __init__(
        self,
        source: str,
        format: str | None = None,  # noqa: A002
        options: dict[str, Any] | None = None,
    ) -> None:
        self._player = MediaPlayer(source, format=format, options=options)
        self._relay = MediaRelay()
        if self._player.video is None:
            logger.warning(f'Video source {source} does not provide video')
        else:
            logger.info(f'Opened video source {source}')

    def track(self) -> MediaStreamTrack | None:
        """Subscribe to the player's video track."""
        if self._player.video is None:
            return None
        return self._relay.subscribe(self._player.video)

    def close(self) -> None:
        """Stop the underlying player tracks."""
        for track in (self._player.audio, self._player.video):
            if track is not None:
                track.stop()


def open_video_source(
    source: str | None,
    format: str | None = None,  # noqa: A002
    options: dict[str, Any] | None = None,
) -> VideoSource | None:
    """Open a video source if one is configured.

    Returns:
        The video source or `None` if `source` is `None`.
    """
    if source is None:
        return None
    return VideoSource(source, format=format, options=options)
