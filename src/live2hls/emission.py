"""One run of the transcoding pipeline and the segments it buffered."""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from .models import ProcessState, SegmentWritten, SessionConfig
from .playlist import PlaylistSnapshot, Segment
from .renditions import RenditionProfile
from .transcoder import TranscoderSupervisor

logger = logging.getLogger(__name__)


class Emission:
    """Binds one input and one creation timestamp to a transcoder run.

    Segments reported by the transcoder are buffered per rendition height
    until the owning session evicts them from its window.
    """

    def __init__(
        self,
        source: str,
        config: SessionConfig,
        profiles: Sequence[RenditionProfile],
        *,
        created_at: int,
        listener: Optional[Callable[[SegmentWritten], None]] = None,
    ) -> None:
        self.source = source
        self.created_at = created_at
        self.output_dir = config.output_dir
        self.profiles = list(profiles)
        self.listener = listener

        self._buffers: Dict[int, Deque[Segment]] = {p.height: deque() for p in self.profiles}
        self._last_sequence: Dict[int, int] = {}
        self._sealed = False
        self._released = False

        self.supervisor = TranscoderSupervisor(
            source,
            config.output_dir,
            self.profiles,
            name=self.name,
            segment_time=config.segment_time,
            segment_wrap=config.segment_wrap,
            executable=config.executable,
            stop_timeout=config.stop_timeout,
            on_snapshot=self._on_snapshot,
        )

    def __repr__(self) -> str:
        return f"Emission({self.name}, {self.source!r}, {self.state.value})"

    @property
    def name(self) -> str:
        return str(self.created_at)

    @property
    def state(self) -> ProcessState:
        return self.supervisor.state

    @property
    def is_running(self) -> bool:
        return self.state in (ProcessState.RUNNING, ProcessState.STOPPING)

    @property
    def is_empty(self) -> bool:
        return all(not buffer for buffer in self._buffers.values())

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def released(self) -> bool:
        return self._released

    @property
    def heights(self) -> List[int]:
        return list(self._buffers)

    def segments(self, height: int) -> List[Segment]:
        return list(self._buffers.get(height, ()))

    def last_sequence(self, height: int) -> Optional[int]:
        return self._last_sequence.get(height)

    def playlist_path(self, height: int) -> Path:
        return self.supervisor.playlist_path(height)

    async def start(self) -> int:
        return await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    def seal(self) -> None:
        """Stop accepting new segments."""
        self._sealed = True

    def ingest(self, height: int, snapshot: PlaylistSnapshot) -> Optional[Segment]:
        """
        Append the newest segment of a snapshot to the rendition buffer.

        Snapshots are delivered at least once, so a sequence number that is
        not newer than the last one seen is ignored.

        Returns:
            The appended segment, or None if nothing was appended
        """
        if self._sealed or height not in self._buffers:
            return None

        segment = snapshot.latest_segment
        last = self._last_sequence.get(height)
        if last is not None and segment.sequence <= last:
            return None

        self._buffers[height].append(segment)
        self._last_sequence[height] = segment.sequence
        return segment

    def _on_snapshot(self, height: int, snapshot: PlaylistSnapshot) -> None:
        segment = self.ingest(height, snapshot)
        if segment is None:
            return
        logger.debug("Emission %s buffered %s for %sp", self.name, segment.filename, height)
        if self.listener:
            self.listener(SegmentWritten(emission=self, height=height, snapshot=snapshot))

    def dispose(self, height: int) -> Tuple[Optional[Segment], bool]:
        """
        Remove the oldest buffered segment of a rendition and delete its file.

        Returns:
            The evicted segment (or None) and whether the buffer is now empty
        """
        buffer = self._buffers.get(height)
        if not buffer:
            return None, True

        segment = buffer.popleft()
        self._unlink(self.output_dir / segment.filename)
        return segment, not buffer

    def dispose_all(self) -> None:
        """Drop every buffered segment and release the emission's files."""
        for height, buffer in self._buffers.items():
            while buffer:
                self.dispose(height)
        self.release()

    def release(self) -> None:
        """Delete the engine playlists and anything else in this emission's namespace."""
        if self._released:
            return
        self._released = True
        self._sealed = True
        for height in self._buffers:
            self._unlink(self.playlist_path(height))
        if self.output_dir.exists():
            for leftover in self.output_dir.glob(f"{self.name}_*"):
                self._unlink(leftover)
        logger.info("Released emission %s (%s)", self.name, self.source)

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
