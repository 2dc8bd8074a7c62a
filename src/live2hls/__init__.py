"""live2hls: Package live inputs into multi-rendition HLS with seamless source switching."""

from .errors import AlreadyRunning, MalformedPlaylist, TranscodeFailed, TransitionInProgress
from .manager import ChannelManager
from .models import SessionConfig
from .session import LiveSession

__all__ = [
    "AlreadyRunning",
    "ChannelManager",
    "LiveSession",
    "MalformedPlaylist",
    "SessionConfig",
    "TranscodeFailed",
    "TransitionInProgress",
]
