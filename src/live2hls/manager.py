"""Manager for multiple independent live channels."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set
from uuid import uuid4

from .emission import Emission
from .errors import TranscodeFailed
from .models import ChannelInfo, ChannelStatus, SessionConfig
from .session import LiveSession

logger = logging.getLogger(__name__)


@dataclass
class Channel:
    """A session plus the background tasks emitting into it."""

    id: str
    session: LiveSession
    status: ChannelStatus = ChannelStatus.IDLE
    error: Optional[str] = None
    tasks: Set[asyncio.Task] = field(default_factory=set)


class ChannelManager:
    """Manages several live sessions, each writing its own output directory."""

    def __init__(self, base_output_dir: Path = Path("output")) -> None:
        """
        Initialize the channel manager.

        Args:
            base_output_dir: Base directory for channels without an explicit output_dir
        """
        self.base_output_dir = base_output_dir
        self.base_output_dir.mkdir(parents=True, exist_ok=True)
        self._channels: Dict[str, Channel] = {}
        self._lock = asyncio.Lock()

    def default_output_dir(self, channel_id: str) -> Path:
        return self.base_output_dir / channel_id

    async def add_channel(self, config: SessionConfig, channel_id: Optional[str] = None) -> str:
        """
        Create a new channel.

        Args:
            config: Session configuration
            channel_id: Optional identifier, generated when omitted

        Returns:
            Channel ID
        """
        channel_id = channel_id or str(uuid4())

        async with self._lock:
            if channel_id in self._channels:
                raise ValueError(f"Channel {channel_id} already exists")
            session = LiveSession(config, session_id=channel_id)
            self._channels[channel_id] = Channel(id=channel_id, session=session)

        logger.info("Added channel %s writing to %s", channel_id, config.output_dir)
        return channel_id

    async def emit(self, channel_id: str, source: str) -> None:
        """
        Start emitting ``source`` on a channel in the background.

        Raises:
            KeyError: if the channel does not exist
            TransitionInProgress: if the channel is still switching sources
        """
        channel = self._require(channel_id)
        session = channel.session

        emission = session.open_emission(source)
        channel.error = None
        task = asyncio.create_task(
            self._run_emission(channel, emission),
            name=f"live2hls-{channel_id}-{emission.name}",
        )
        channel.tasks.add(task)
        task.add_done_callback(channel.tasks.discard)
        channel.status = ChannelStatus.SWITCHING if session.current else ChannelStatus.STARTING

    async def _run_emission(self, channel: Channel, emission: Emission) -> None:
        source = emission.source
        try:
            returncode = await channel.session.run_emission(emission)
        except TranscodeFailed as exc:
            channel.error = exc.reason
            channel.status = ChannelStatus.ERROR
            logger.error("Channel %s failed to emit %s: %s", channel.id, source, exc.reason)
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            channel.error = str(exc)
            channel.status = ChannelStatus.ERROR
            logger.exception("Channel %s emission of %s crashed", channel.id, source)
            return

        if returncode != 0:
            channel.error = f"Transcoder exited with code {returncode}"
        logger.info("Channel %s finished emitting %s", channel.id, source)

    async def remove_channel(self, channel_id: str) -> bool:
        """
        Stop a channel and delete its files.

        Returns:
            True if removed, False if not found
        """
        async with self._lock:
            channel = self._channels.pop(channel_id, None)
            if channel is None:
                return False

        await channel.session.stop()
        if channel.tasks:
            await asyncio.gather(*channel.tasks, return_exceptions=True)
        channel.status = ChannelStatus.STOPPED
        logger.info("Removed channel %s", channel_id)
        return True

    async def shutdown(self) -> None:
        for channel_id in list(self._channels):
            await self.remove_channel(channel_id)

    def get_channel_info(self, channel_id: str) -> Optional[ChannelInfo]:
        channel = self._channels.get(channel_id)
        return self._info(channel) if channel else None

    def list_channels(self) -> List[ChannelInfo]:
        return [self._info(channel) for channel in list(self._channels.values())]

    def get_output_path(self, channel_id: str) -> Optional[Path]:
        """Get the output directory for a channel."""
        channel = self._channels.get(channel_id)
        return channel.session.output_dir if channel else None

    def _require(self, channel_id: str) -> Channel:
        if channel_id not in self._channels:
            raise KeyError(f"Channel {channel_id} not found")
        return self._channels[channel_id]

    def _info(self, channel: Channel) -> ChannelInfo:
        session = channel.session
        current, draining, pending = session.current, session.draining, session.pending

        if channel.status not in (ChannelStatus.ERROR, ChannelStatus.STOPPED):
            if draining or pending:
                channel.status = ChannelStatus.SWITCHING if current else ChannelStatus.STARTING
            elif current:
                channel.status = ChannelStatus.LIVE
            elif not channel.tasks:
                channel.status = ChannelStatus.IDLE

        last_sequence: Dict[int, int] = {}
        if current:
            for height in current.heights:
                sequence = current.last_sequence(height)
                if sequence is not None:
                    last_sequence[height] = sequence

        return ChannelInfo(
            channel_id=channel.id,
            status=channel.status,
            output_dir=session.output_dir,
            master_url=f"/hls/{channel.id}/master.m3u8",
            label=session.config.label,
            current_source=current.source if current else None,
            draining_source=draining.source if draining else None,
            pending_source=pending.source if pending else None,
            error=channel.error or session.error,
            last_sequence=last_sequence,
        )
