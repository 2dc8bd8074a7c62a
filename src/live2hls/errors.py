"""Exceptions raised by live2hls."""

from __future__ import annotations


class Live2HlsError(RuntimeError):
    """Base class for live2hls errors."""


class TranscodeFailed(Live2HlsError):
    """Raised when the transcoding engine reports a fatal input/process error."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class MalformedPlaylist(Live2HlsError):
    """Raised when an engine playlist does not have the expected shape."""


class TransitionInProgress(Live2HlsError):
    """Raised when a new emission is requested while a handoff is pending."""


class AlreadyRunning(Live2HlsError):
    """Raised when an emission is started twice."""


class ProbeError(Live2HlsError):
    """Raised when ffprobe/ffmpeg cannot describe an input."""
