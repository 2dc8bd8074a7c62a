#!/usr/bin/env python3
"""Test parsing engine playlists and generating live playlists."""

import sys
from pathlib import Path
from tempfile import TemporaryDirectory

from live2hls.errors import MalformedPlaylist
from live2hls.playlist import PlaylistCodec, Segment
from live2hls.renditions import enabled_profiles

ENGINE_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:5
#EXT-X-MEDIA-SEQUENCE:1697040000
#EXTINF:4.966667,
/srv/live/1697040000123_720p_007.ts
"""

ROLLING_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:4
#EXT-X-MEDIA-SEQUENCE:10
#EXTINF:4.000000,
a_010.ts
#EXTINF:4.000000,
a_011.ts
#EXTINF:3.500000,
a_012.ts
"""


def test_parse_engine_playlist():
    snapshot = PlaylistCodec.parse(ENGINE_PLAYLIST)

    assert snapshot.target_duration == 5
    assert snapshot.media_sequence == 1697040000
    assert snapshot.latest_segment == Segment(
        sequence=1697040000,
        duration=4.966667,
        filename="1697040000123_720p_007.ts",
    )
    assert snapshot.latest_segment.discontinuity is False


def test_parse_uses_newest_entry():
    snapshot = PlaylistCodec.parse(ROLLING_PLAYLIST)

    assert snapshot.media_sequence == 10
    assert snapshot.latest_segment.sequence == 12
    assert snapshot.latest_segment.filename == "a_012.ts"
    assert snapshot.latest_segment.duration == 3.5


def test_parse_rejects_incomplete_playlists():
    broken = [
        "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:1\n#EXTINF:4,\na.ts\n",
        "#EXTM3U\n#EXT-X-TARGETDURATION:4\n#EXTINF:4,\na.ts\n",
        "#EXTM3U\n#EXT-X-TARGETDURATION:4\n#EXT-X-MEDIA-SEQUENCE:1\n",
        "#EXTM3U\n#EXT-X-TARGETDURATION:4\n#EXT-X-MEDIA-SEQUENCE:one\n#EXTINF:4,\na.ts\n",
    ]
    for text in broken:
        try:
            PlaylistCodec.parse(text)
        except MalformedPlaylist:
            continue
        raise AssertionError(f"expected MalformedPlaylist for {text!r}")


def test_render_media_playlist():
    segments = [
        Segment(sequence=41, duration=4.0, filename="old_041.ts"),
        Segment(sequence=42, duration=4.2, filename="old_042.ts"),
        Segment(sequence=7, duration=3.9, filename="new_007.ts", discontinuity=True),
    ]

    lines = PlaylistCodec.render_media_playlist(segments).splitlines()

    assert lines == [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-ALLOW-CACHE:YES",
        "#EXT-X-TARGETDURATION:4",
        "#EXT-X-MEDIA-SEQUENCE:41",
        "#EXTINF:4.000000,",
        "old_041.ts",
        "#EXTINF:4.200000,",
        "old_042.ts",
        "#EXT-X-DISCONTINUITY",
        "#EXTINF:3.900000,",
        "new_007.ts",
    ]


def test_render_empty_window():
    content = PlaylistCodec.render_media_playlist([])

    assert "#EXT-X-TARGETDURATION:0" in content
    assert "#EXT-X-MEDIA-SEQUENCE:0" in content
    assert "#EXTINF" not in content


def test_render_with_base_url():
    segments = [Segment(sequence=3, duration=5.0, filename="1_720p_003.ts")]

    with_slash = PlaylistCodec.render_media_playlist(segments, "https://cdn.example.com/live/")
    without_slash = PlaylistCodec.render_media_playlist(segments, "https://cdn.example.com/live")

    assert "https://cdn.example.com/live/1_720p_003.ts" in with_slash.splitlines()
    assert with_slash == without_slash


def test_media_sequence_round_trip():
    segments = [
        Segment(sequence=120, duration=5.0, filename="x_120.ts"),
        Segment(sequence=121, duration=5.0, filename="x_121.ts"),
    ]

    snapshot = PlaylistCodec.parse(PlaylistCodec.render_media_playlist(segments))

    assert snapshot.media_sequence == segments[0].sequence
    assert snapshot.latest_segment.sequence == segments[-1].sequence


def test_render_master_playlist_with_base_url():
    content = PlaylistCodec.render_master_playlist(enabled_profiles(2 | 8), "http://example.com/tv")

    assert content.splitlines() == [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-STREAM-INF:BANDWIDTH=1400000,RESOLUTION=842x480",
        "http://example.com/tv/480.m3u8",
        "#EXT-X-STREAM-INF:BANDWIDTH=5000000,RESOLUTION=1920x1080",
        "http://example.com/tv/1080.m3u8",
    ]


def test_write_playlist_replaces_file():
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "nested" / "720.m3u8"
        PlaylistCodec.write_playlist(path, "first\n")
        PlaylistCodec.write_playlist(path, "second\n")

        assert path.read_text() == "second\n"
        assert sorted(p.name for p in path.parent.iterdir()) == ["720.m3u8"]


if __name__ == "__main__":
    test_parse_engine_playlist()
    test_parse_uses_newest_entry()
    test_parse_rejects_incomplete_playlists()
    test_render_media_playlist()
    test_render_empty_window()
    test_render_with_base_url()
    test_media_sequence_round_trip()
    test_render_master_playlist_with_base_url()
    test_write_playlist_replaces_file()
    print("✓ Playlist codec tests passed")
    sys.exit(0)
