"""Dataclasses and enums for live2hls runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from .emission import Emission
    from .playlist import PlaylistSnapshot


class ProcessState(str, Enum):
    """Lifecycle of the engine process behind an emission."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ChannelStatus(str, Enum):
    """Lifecycle status of a managed channel."""

    IDLE = "idle"
    STARTING = "starting"
    LIVE = "live"
    SWITCHING = "switching"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass
class SessionConfig:
    """Configuration for a live session."""

    output_dir: Path
    base_url: Optional[str] = None
    resolution_mask: int = 4
    segment_time: int = 5
    window_size: int = 5
    executable: str = field(default_factory=lambda: os.environ.get("FFMPEG", "ffmpeg"))
    segment_wrap: int = 40
    stop_timeout: float = 5.0
    label: Optional[str] = None


@dataclass
class SegmentWritten:
    """An emission appended a new segment for one rendition."""

    emission: "Emission"
    height: int
    snapshot: "PlaylistSnapshot"


@dataclass
class ChannelInfo:
    """Information about a managed channel."""

    channel_id: str
    status: ChannelStatus
    output_dir: Path
    master_url: str
    label: Optional[str] = None
    current_source: Optional[str] = None
    draining_source: Optional[str] = None
    pending_source: Optional[str] = None
    error: Optional[str] = None
    last_sequence: Dict[int, int] = field(default_factory=dict)
