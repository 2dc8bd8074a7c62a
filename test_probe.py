#!/usr/bin/env python3
"""Test ffprobe/ffmpeg helpers."""

import asyncio
import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from tempfile import TemporaryDirectory

from live2hls.errors import ProbeError
from live2hls.probe import parse_formats, probe_duration, probe_info, summarize_probe

RAW_PROBE = {
    "format": {
        "duration": "12.480000",
        "size": "1048576",
        "tags": {"creation_time": "2023-10-11T12:00:00.000000Z"},
    },
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "codec_long_name": "H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10",
            "profile": "High",
            "width": 1920,
            "height": 1080,
            "pix_fmt": "yuv420p",
            "tags": {"language": "und"},
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "channels": 2,
            "channel_layout": "stereo",
            "bit_rate": "128000",
            "tags": {"language": "eng", "title": "Main"},
        },
        {"codec_type": "subtitle", "codec_name": "subrip"},
        {"codec_type": "data", "codec_name": "bin_data"},
    ],
}

FORMATS_OUTPUT = """File formats:
 D. = Demuxing supported
 .E = Muxing supported
 --
 D  3dostr          3DO STR
  E 3g2             3GP2 (3GPP2 file format)
 DE matroska,webm   Matroska / WebM
"""


@contextmanager
def _env(**values):
    previous = {key: os.environ.get(key) for key in values}
    os.environ.update(values)
    try:
        yield
    finally:
        for key, value in previous.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


def _create_ffprobe(directory: Path, body: str) -> Path:
    script_path = directory / "ffprobe"
    script_path.write_text("#!/bin/sh\n" + body)
    os.chmod(script_path, 0o755)
    return script_path


def test_summarize_probe():
    info = summarize_probe(RAW_PROBE, "movie.mkv")

    assert info["link"] == "movie.mkv"
    assert info["duration"] == 12480
    assert info["size"] == "1048576"
    assert info["creation_time"] == "2023-10-11T12:00:00.000000Z"
    assert [s["codec_name"] for s in info["video"]] == ["h264"]
    assert info["video"][0]["width"] == 1920
    assert info["audio"][0]["channel_layout"] == "stereo"
    assert info["audio"][0]["title"] == "Main"
    assert [s["codec_name"] for s in info["subtitle"]] == ["subrip"]


def test_summarize_probe_without_duration():
    info = summarize_probe({"format": {}, "streams": []})
    assert info["duration"] is None
    assert info["video"] == [] and info["audio"] == [] and info["subtitle"] == []


def test_parse_formats():
    formats = parse_formats(FORMATS_OUTPUT)

    assert formats == [
        {"name": "3DO STR", "extension": "3dostr", "demuxing": True, "muxing": False},
        {"name": "3GP2 (3GPP2 file format)", "extension": "3g2", "demuxing": False, "muxing": True},
        {"name": "Matroska / WebM", "extension": "matroska,webm", "demuxing": True, "muxing": True},
    ]


def test_probe_with_fake_ffprobe():
    with TemporaryDirectory() as tmpdir:
        payload = json.dumps(RAW_PROBE).replace("'", "")
        ffprobe = _create_ffprobe(
            Path(tmpdir),
            'case "$*" in\n'
            '  *show_entries*) echo "12.480000" ;;\n'
            f"  *) echo '{payload}' ;;\n"
            "esac\n",
        )
        with _env(FFPROBE=str(ffprobe)):
            info = asyncio.run(probe_info("movie.mkv"))
            duration = asyncio.run(probe_duration("movie.mkv"))

        assert info["duration"] == 12480
        assert duration == 12480


def test_probe_failure_raises():
    with TemporaryDirectory() as tmpdir:
        ffprobe = _create_ffprobe(Path(tmpdir), 'echo "movie.mkv: No such file or directory" >&2\nexit 1\n')
        with _env(FFPROBE=str(ffprobe)):
            try:
                asyncio.run(probe_info("movie.mkv"))
            except ProbeError as exc:
                assert "No such file or directory" in str(exc)
            else:
                raise AssertionError("expected ProbeError")


if __name__ == "__main__":
    test_summarize_probe()
    test_summarize_probe_without_duration()
    test_parse_formats()
    test_probe_with_fake_ffprobe()
    test_probe_failure_raises()
    print("✓ Probe tests passed")
    sys.exit(0)
