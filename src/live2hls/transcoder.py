"""Supervise the external transcoding engine for one emission."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import AlreadyRunning, MalformedPlaylist, TranscodeFailed
from .models import ProcessState
from .playlist import PlaylistCodec, PlaylistSnapshot
from .renditions import RenditionProfile

logger = logging.getLogger(__name__)

FATAL_PHRASES = (
    "No such file or directory",
    "Invalid data found when processing input",
    "No streams to mux were specified",
    "does not contain any stream",
)

SnapshotCallback = Callable[[int, PlaylistSnapshot], None]


def classify_diagnostic(line: str) -> Optional[str]:
    """Return the fatal phrase contained in an engine diagnostic line, if any."""
    for phrase in FATAL_PHRASES:
        if phrase in line:
            return phrase
    return None


class PlaylistEventHandler(FileSystemEventHandler):
    """Forward changes of watched playlist files to the event loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        watched: Dict[str, int],
        callback: Callable[[int], None],
    ) -> None:
        super().__init__()
        self._loop = loop
        self._watched = watched
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        self._notify(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._notify(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._notify(event.dest_path)

    def _notify(self, path) -> None:
        height = self._watched.get(os.path.basename(os.fsdecode(path)))
        if height is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._callback, height)
        except RuntimeError:
            logger.debug("Event loop closed; dropping change of %s", path)


class TranscoderSupervisor:
    """Runs one engine process producing every enabled rendition."""

    def __init__(
        self,
        source: str,
        output_dir: Path,
        profiles: Sequence[RenditionProfile],
        *,
        name: str,
        segment_time: int = 5,
        segment_wrap: int = 40,
        executable: str = "ffmpeg",
        stop_timeout: float = 5.0,
        on_snapshot: Optional[SnapshotCallback] = None,
    ) -> None:
        self.source = source
        self.output_dir = output_dir
        self.profiles = list(profiles)
        self.name = name
        self.segment_time = segment_time
        self.segment_wrap = segment_wrap
        self.executable = executable
        self.stop_timeout = stop_timeout
        self.on_snapshot = on_snapshot

        self._state = ProcessState.IDLE
        self._process: Optional[asyncio.subprocess.Process] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Optional[Observer] = None
        self._failed = False
        self._error: Optional[MalformedPlaylist] = None
        self._stopper: Optional[asyncio.Task] = None
        self._diagnostics: Deque[str] = deque(maxlen=20)

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    def playlist_path(self, height: int) -> Path:
        return self.output_dir / f"{self.name}_{height}p.m3u8"

    def segment_pattern(self, height: int) -> Path:
        return self.output_dir / f"{self.name}_{height}p_%03d.ts"

    def build_arguments(self) -> List[str]:
        """Engine arguments for the input and every enabled rendition."""
        args = ["-hide_banner", "-nostats", "-y", "-re", "-i", self.source]
        for profile in self.profiles:
            args.extend(self._rendition_arguments(profile))
        return args

    def _rendition_arguments(self, profile: RenditionProfile) -> List[str]:
        args = [
            "-vf", f"scale=w={profile.width}:h={profile.height}:force_original_aspect_ratio=decrease",
            "-c:a", "aac",
            "-ar", "48000",
            "-b:a", f"{profile.audio_bitrate_kbps}k",
            "-c:v", "h264",
            "-profile:v", "main",
            "-crf", "20",
            "-g", "48",
            "-keyint_min", "48",
            "-sc_threshold", "0",
            "-b:v", f"{profile.video_bitrate_kbps}k",
            "-maxrate", f"{profile.max_rate_kbps}k",
            "-bufsize", f"{profile.buffer_size_kb}k",
            "-hls_time", str(self.segment_time),
            "-hls_list_size", "1",
        ]
        if self.segment_wrap:
            args.extend(["-hls_wrap", str(self.segment_wrap)])
        args.extend([
            "-hls_start_number_source", "datetime",
            "-preset", "superfast",
            "-hls_segment_filename", str(self.segment_pattern(profile.height)),
            str(self.playlist_path(profile.height)),
        ])
        return args

    async def start(self) -> int:
        """
        Run the engine until it exits.

        Returns:
            The engine exit code

        Raises:
            AlreadyRunning: if this supervisor was started before
            TranscodeFailed: on a fatal diagnostic or when the engine cannot be spawned
            MalformedPlaylist: if the engine wrote an unreadable playlist
        """
        if self._state is not ProcessState.IDLE:
            raise AlreadyRunning(f"Transcoder {self.name} already started")

        self._state = ProcessState.RUNNING
        self._loop = asyncio.get_running_loop()
        command = [self.executable, *self.build_arguments()]
        logger.info("Starting transcoder %s for %s", self.name, self.source)
        logger.debug("Transcoder %s command: %s", self.name, command)

        # The first playlist write may happen right after spawning.
        self._start_watching()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._stop_watching()
            self._state = ProcessState.STOPPED
            self._failed = True
            raise TranscodeFailed(f"Failed to execute {self.executable}: {exc}") from exc

        if self._error is not None and self._stopper is None:
            self._stopper = self._loop.create_task(self.stop())

        try:
            fatal = await self._scan_diagnostics()
            if fatal is not None:
                self._failed = True
                self._stop_watching()
                await self.stop()
                raise TranscodeFailed(fatal)

            returncode = await self._process.wait()
            self._stop_watching()
            if self._state is ProcessState.RUNNING:
                self._sweep()
            if self._stopper is not None:
                await self._stopper
            if self._error is not None:
                raise self._error
        except asyncio.CancelledError:
            self._failed = True
            if self._process.returncode is None:
                self._process.kill()
            raise
        finally:
            self._stop_watching()
            self._state = ProcessState.STOPPED

        if returncode != 0:
            logger.warning(
                "Transcoder %s exited with code %s: %s",
                self.name,
                returncode,
                " | ".join(self._diagnostics),
            )
        else:
            logger.info("Transcoder %s finished", self.name)
        return returncode

    async def stop(self) -> None:
        """Terminate the engine, killing it if it does not exit in time."""
        process = self._process
        if process is None or process.returncode is not None:
            return

        if self._state is ProcessState.RUNNING:
            self._state = ProcessState.STOPPING
            logger.info("Stopping transcoder %s", self.name)
            try:
                process.terminate()
            except ProcessLookupError:
                return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Transcoder %s ignored SIGTERM; killing", self.name)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def _scan_diagnostics(self) -> Optional[str]:
        assert self._process is not None and self._process.stderr is not None
        async for raw in self._process.stderr:
            line = raw.decode(errors="ignore").rstrip()
            if not line:
                continue
            self._diagnostics.append(line)
            if classify_diagnostic(line):
                logger.error("Transcoder %s failed: %s", self.name, line)
                return line
            logger.debug("[%s] %s", self.name, line)
        return None

    def _start_watching(self) -> None:
        watched = {self.playlist_path(p.height).name: p.height for p in self.profiles}
        handler = PlaylistEventHandler(self._loop, watched, self._refresh)
        observer = Observer()
        observer.schedule(handler, str(self.output_dir), recursive=False)
        observer.start()
        self._observer = observer

    def _stop_watching(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=2.0)

    def _sweep(self) -> None:
        for profile in self.profiles:
            self._refresh(profile.height)

    def _refresh(self, height: int) -> None:
        if self._failed or self._error is not None:
            return
        path = self.playlist_path(height)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        if not text.strip():
            return

        try:
            snapshot = PlaylistCodec.parse(text)
        except MalformedPlaylist as exc:
            logger.error("Transcoder %s wrote a malformed playlist %s: %s", self.name, path.name, exc)
            self._error = exc
            if self._process is not None and self._process.returncode is None and self._stopper is None:
                self._stopper = self._loop.create_task(self.stop())
            return

        if self.on_snapshot:
            self.on_snapshot(height, snapshot)
