"""ffprobe/ffmpeg helpers for describing inputs before emitting them."""

from __future__ import annotations

import asyncio
import json
import os
import re
from typing import Any, Dict, List, Optional

from .errors import ProbeError

FORMAT_ROW = re.compile(r"^\s+([DE. ]{2,3})\s+(\S+)\s+(.+?)\s*$")


def ffprobe_executable() -> str:
    return os.environ.get("FFPROBE", "ffprobe")


def ffmpeg_executable() -> str:
    return os.environ.get("FFMPEG", "ffmpeg")


async def _run(command: List[str]) -> str:
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as exc:
        raise ProbeError(f"Failed to execute {command[0]}: {exc}") from exc

    if process.returncode != 0:
        stderr_text = stderr.decode(errors="ignore").strip()
        raise ProbeError(f"{command[0]} failed (exit code {process.returncode}): {stderr_text}")

    return stdout.decode(errors="ignore")


async def probe_raw(source: str) -> Dict[str, Any]:
    """Return the ffprobe JSON description of ``source``."""
    stdout = await _run([
        ffprobe_executable(),
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        source,
    ])
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ProbeError(f"ffprobe returned invalid JSON for {source}: {exc}") from exc


def summarize_probe(raw: Dict[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
    """
    Condense ffprobe output into format information and per-type streams.

    Args:
        raw: Parsed ``ffprobe -show_format -show_streams`` JSON
        source: Input locator echoed back as ``link``

    Returns:
        Dict with ``duration`` (milliseconds), ``size``, ``creation_time``
        and ``video``/``audio``/``subtitle`` stream lists
    """
    fmt = raw.get("format") or {}
    duration = fmt.get("duration")

    video: List[Dict[str, Any]] = []
    audio: List[Dict[str, Any]] = []
    subtitle: List[Dict[str, Any]] = []

    for stream in raw.get("streams") or []:
        tags = stream.get("tags") or {}
        entry = {
            "title": tags.get("title"),
            "language": tags.get("language"),
            "codec_name": stream.get("codec_name"),
            "codec_long_name": stream.get("codec_long_name"),
        }
        codec_type = stream.get("codec_type")
        if codec_type == "video":
            entry.update(
                profile=stream.get("profile"),
                width=stream.get("width"),
                height=stream.get("height"),
                sample_aspect_ratio=stream.get("sample_aspect_ratio"),
                display_aspect_ratio=stream.get("display_aspect_ratio"),
                pix_fmt=stream.get("pix_fmt"),
                bit_rate=stream.get("bit_rate"),
            )
            video.append(entry)
        elif codec_type == "audio":
            entry.update(
                channels=stream.get("channels"),
                channel_layout=stream.get("channel_layout"),
                bit_rate=stream.get("bit_rate"),
            )
            audio.append(entry)
        elif codec_type == "subtitle":
            subtitle.append(entry)

    return {
        "link": source,
        "duration": int(float(duration) * 1000) if duration is not None else None,
        "size": fmt.get("size"),
        "creation_time": (fmt.get("tags") or {}).get("creation_time"),
        "video": video,
        "audio": audio,
        "subtitle": subtitle,
    }


async def probe_info(source: str) -> Dict[str, Any]:
    return summarize_probe(await probe_raw(source), source)


async def probe_duration(source: str) -> int:
    """Duration of ``source`` in milliseconds."""
    stdout = await _run([
        ffprobe_executable(),
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        source,
    ])
    try:
        return int(float(stdout.strip()) * 1000)
    except ValueError as exc:
        raise ProbeError(f"ffprobe returned no duration for {source}") from exc


def parse_formats(text: str) -> List[Dict[str, Any]]:
    """Parse the table printed by ``ffmpeg -formats``."""
    formats = []
    in_table = False
    for line in text.splitlines():
        if line.strip() == "--":
            in_table = True
            continue
        if not in_table:
            continue
        match = FORMAT_ROW.match(line)
        if not match:
            continue
        flags, extension, name = match.groups()
        formats.append({
            "name": name,
            "extension": extension,
            "demuxing": "D" in flags,
            "muxing": "E" in flags or "M" in flags,
        })
    return formats


async def list_formats() -> List[Dict[str, Any]]:
    return parse_formats(await _run([ffmpeg_executable(), "-hide_banner", "-formats"]))
