"""Parse engine playlists and generate live HLS playlists."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urljoin

from .errors import MalformedPlaylist
from .renditions import RenditionProfile

MASTER_PLAYLIST_NAME = "master.m3u8"


@dataclass(frozen=True)
class Segment:
    """Metadata about one media segment on disk."""

    sequence: int
    duration: float
    filename: str
    discontinuity: bool = False


@dataclass(frozen=True)
class PlaylistSnapshot:
    """One observed write of an engine-maintained playlist."""

    target_duration: float
    media_sequence: int
    latest_segment: Segment


def live_playlist_name(height: int) -> str:
    return f"{height}.m3u8"


def resolve_uri(filename: str, base_url: Optional[str]) -> str:
    """Qualify ``filename`` against ``base_url`` when one is configured."""
    if not base_url:
        return filename
    if not base_url.endswith("/"):
        base_url += "/"
    return urljoin(base_url, filename)


class PlaylistCodec:
    """Reads engine playlists and writes master and rendition playlists."""

    @staticmethod
    def parse(text: str) -> PlaylistSnapshot:
        """
        Parse a playlist produced by the transcoding engine.

        Only the target duration, the media sequence and the newest
        ``#EXTINF`` entry are extracted.

        Raises:
            MalformedPlaylist: if a required tag or entry is missing
        """
        target_duration: Optional[float] = None
        media_sequence: Optional[int] = None
        entries: List[tuple[float, str]] = []
        pending_duration: Optional[float] = None

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            try:
                if line.startswith("#EXT-X-TARGETDURATION:"):
                    target_duration = float(line.split(":", 1)[1])
                elif line.startswith("#EXT-X-MEDIA-SEQUENCE:"):
                    media_sequence = int(line.split(":", 1)[1])
                elif line.startswith("#EXTINF:"):
                    pending_duration = float(line.split(":", 1)[1].split(",", 1)[0])
                elif line.startswith("#"):
                    continue
                elif pending_duration is not None:
                    entries.append((pending_duration, line))
                    pending_duration = None
            except ValueError as exc:
                raise MalformedPlaylist(f"Invalid playlist line {line!r}: {exc}") from exc

        if target_duration is None:
            raise MalformedPlaylist("Missing #EXT-X-TARGETDURATION")
        if media_sequence is None:
            raise MalformedPlaylist("Missing #EXT-X-MEDIA-SEQUENCE")
        if not entries:
            raise MalformedPlaylist("Playlist has no segment entries")

        duration, uri = entries[-1]
        latest = Segment(
            sequence=media_sequence + len(entries) - 1,
            duration=duration,
            filename=os.path.basename(uri),
        )
        return PlaylistSnapshot(
            target_duration=target_duration,
            media_sequence=media_sequence,
            latest_segment=latest,
        )

    @staticmethod
    def render_media_playlist(segments: Sequence[Segment], base_url: Optional[str] = None) -> str:
        """
        Generate a live rendition playlist for the given window.

        Args:
            segments: Window contents, oldest first
            base_url: Optional prefix turning file names into absolute URLs

        Returns:
            Playlist content as string
        """
        target_duration = max((segment.duration for segment in segments), default=0)
        sequence = segments[0].sequence if segments else 0

        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            "#EXT-X-ALLOW-CACHE:YES",
            f"#EXT-X-TARGETDURATION:{int(target_duration + 0.5)}",
            f"#EXT-X-MEDIA-SEQUENCE:{sequence}",
        ]

        for segment in segments:
            if segment.discontinuity:
                lines.append("#EXT-X-DISCONTINUITY")
            lines.append(f"#EXTINF:{segment.duration:.6f},")
            lines.append(resolve_uri(segment.filename, base_url))

        return "\n".join(lines) + "\n"

    @staticmethod
    def render_master_playlist(profiles: Iterable[RenditionProfile], base_url: Optional[str] = None) -> str:
        """Generate the master playlist listing every enabled rendition."""
        lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
        for profile in profiles:
            lines.append(f"#EXT-X-STREAM-INF:BANDWIDTH={profile.bandwidth},RESOLUTION={profile.resolution}")
            lines.append(resolve_uri(live_playlist_name(profile.height), base_url))
        return "\n".join(lines) + "\n"

    @staticmethod
    def write_playlist(path: Path, content: str) -> None:
        """
        Write playlist content to file.

        The content is written next to ``path`` first and moved into place,
        so readers never observe a partial playlist.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
