"""Live window and switchover controller for one output directory."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from dataclasses import replace
from pathlib import Path
from typing import Coroutine, List, Optional, Set, Tuple

from .emission import Emission
from .errors import TransitionInProgress
from .models import SegmentWritten, SessionConfig
from .playlist import MASTER_PLAYLIST_NAME, PlaylistCodec, Segment, live_playlist_name
from .renditions import enabled_profiles

logger = logging.getLogger(__name__)


class LiveSession:
    """Merges up to two emissions into one bounded live playlist per rendition.

    The newest emission that produced a segment is ``current``. The one it
    replaced is ``draining`` until all of its segments scrolled out of the
    window. Segment events are queued and applied one at a time by
    :meth:`process`.
    """

    def __init__(self, config: SessionConfig, session_id: Optional[str] = None) -> None:
        self.config = config
        self.id = session_id or config.label or config.output_dir.name
        self.output_dir = config.output_dir
        self.profiles = enabled_profiles(config.resolution_mask)
        if not self.profiles:
            raise ValueError(f"Resolution mask {config.resolution_mask} enables no rendition")
        if config.window_size < 1:
            raise ValueError("window_size must be at least 1")

        self.current: Optional[Emission] = None
        self.draining: Optional[Emission] = None
        self.pending: Optional[Emission] = None
        self.error: Optional[str] = None

        self._queue: asyncio.Queue[SegmentWritten] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._last_created_at = 0

        self._prepare_output()

    @property
    def master_playlist_path(self) -> Path:
        return self.output_dir / MASTER_PLAYLIST_NAME

    def live_playlist_path(self, height: int) -> Path:
        return self.output_dir / live_playlist_name(height)

    @property
    def in_transition(self) -> bool:
        return self.pending is not None or self.draining is not None

    def _prepare_output(self) -> None:
        if self.output_dir.exists():
            shutil.rmtree(self.output_dir)
        self.output_dir.mkdir(parents=True)

        content = PlaylistCodec.render_master_playlist(self.profiles, self.config.base_url)
        PlaylistCodec.write_playlist(self.master_playlist_path, content)
        logger.info(
            "Session %s ready in %s with %d rendition(s)",
            self.id,
            self.output_dir,
            len(self.profiles),
        )

    def _next_timestamp(self) -> int:
        now = time.time_ns() // 1_000_000
        self._last_created_at = max(now, self._last_created_at + 1)
        return self._last_created_at

    def open_emission(self, source: str) -> Emission:
        """
        Create a new emission for ``source`` without starting it.

        Raises:
            TransitionInProgress: if another handoff has not finished yet
        """
        if self.in_transition:
            raise TransitionInProgress(f"Session {self.id} is already switching sources")

        emission = Emission(
            source,
            self.config,
            self.profiles,
            created_at=self._next_timestamp(),
            listener=self.submit,
        )
        self.pending = emission
        logger.info("Session %s opened emission %s for %s", self.id, emission.name, source)
        return emission

    async def emit(self, source: str) -> int:
        """
        Transcode ``source`` into this session until the engine exits.

        The new emission takes over the live playlists as soon as it writes
        its first segment.

        Returns:
            The engine exit code

        Raises:
            TransitionInProgress: if another handoff has not finished yet
            TranscodeFailed: if the engine reported a fatal error
        """
        async with self._lock:
            emission = self.open_emission(source)
        return await self.run_emission(emission)

    async def run_emission(self, emission: Emission) -> int:
        """Start an emission created by :meth:`open_emission` and wait for it."""
        self._ensure_consumer()
        try:
            return await emission.start()
        finally:
            await self._settle(emission)

    async def stop(self) -> None:
        """Stop every emission and delete all of their files immediately."""
        async with self._lock:
            emissions = [e for e in (self.pending, self.current, self.draining) if e is not None]
            self.pending = self.current = self.draining = None

            for emission in emissions:
                emission.seal()
            await asyncio.gather(*(emission.stop() for emission in emissions))
            for emission in emissions:
                emission.dispose_all()

            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)

            if self._consumer:
                self._consumer.cancel()
                try:
                    await self._consumer
                except asyncio.CancelledError:
                    pass
                self._consumer = None
            self._queue = asyncio.Queue()

        logger.info("Session %s stopped", self.id)

    def submit(self, event: SegmentWritten) -> None:
        """Queue a segment event for the consumer task."""
        self._queue.put_nowait(event)

    def process(self, event: SegmentWritten) -> List[Segment]:
        """
        Apply one segment event and rewrite the rendition's live playlist.

        Returns:
            The window that was written
        """
        emission = event.emission
        if not any(emission is tracked for tracked in (self.current, self.draining, self.pending)):
            logger.debug("Session %s ignoring event from released emission %s", self.id, emission.name)
            return []

        self._promote(emission)
        view = self._window(event.height)

        content = PlaylistCodec.render_media_playlist(view, self.config.base_url)
        PlaylistCodec.write_playlist(self.live_playlist_path(event.height), content)
        return view

    def _promote(self, emission: Emission) -> None:
        if emission is self.current:
            return

        if self.current is None:
            self.current = emission
        elif emission.created_at > self.current.created_at:
            previous = self.current
            self.current = emission
            if self.draining is not None:
                self._retire(self.draining)
            self.draining = previous
            previous.seal()
            logger.info(
                "Session %s switching from %s to %s",
                self.id,
                previous.source,
                emission.source,
            )
            if previous.is_empty:
                self._retire(previous)
            elif previous.is_running:
                self._schedule(previous.stop())
        else:
            return

        if self.pending is emission:
            self.pending = None
        logger.info("Session %s now live from %s", self.id, emission.source)

    def _window(self, height: int) -> List[Segment]:
        owned: List[Tuple[Emission, Segment]] = []
        for owner in (self.draining, self.current):
            if owner is not None:
                owned.extend((owner, segment) for segment in owner.segments(height))

        overflow = max(len(owned) - self.config.window_size, 0)
        for owner, _ in owned[:overflow]:
            evicted, emptied = owner.dispose(height)
            if evicted is not None:
                logger.debug("Session %s evicted %s", self.id, evicted.filename)
            if emptied and owner.is_empty and owner is not self.current:
                self._retire(owner)

        retained = owned[overflow:]
        handoff = any(owner is not self.current for owner, _ in retained)

        view: List[Segment] = []
        for owner, segment in retained:
            if handoff and owner is self.current:
                segment = replace(segment, discontinuity=True)
                handoff = False
            view.append(segment)
        return view

    def _retire(self, emission: Emission) -> None:
        if self.draining is emission:
            self.draining = None
        emission.seal()
        if emission.is_running:
            self._schedule(self._release_after_stop(emission))
        else:
            emission.release()

    async def _release_after_stop(self, emission: Emission) -> None:
        await emission.stop()
        emission.release()

    def _schedule(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name=f"live2hls-{self.id}")

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.process(event)
            except Exception as exc:
                self.error = f"Failed to update {event.height}p playlist: {exc}"
                logger.exception("Session %s failed to process segment event", self.id)
            finally:
                self._queue.task_done()

    async def _settle(self, emission: Emission) -> None:
        if self._consumer is not None and not self._consumer.done():
            await self._queue.join()
        if self.pending is emission:
            self.pending = None
            emission.dispose_all()
            logger.info("Session %s abandoned emission %s", self.id, emission.name)
