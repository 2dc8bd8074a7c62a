"""Static quality ladder used for every session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class RenditionProfile:
    """One fixed-quality output stream."""

    width: int
    height: int
    audio_bitrate_kbps: int
    video_bitrate_kbps: int
    max_rate_kbps: int
    buffer_size_kb: int

    @property
    def bandwidth(self) -> int:
        return self.video_bitrate_kbps * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


RENDITIONS = (
    RenditionProfile(640, 360, 96, 800, 856, 1200),
    RenditionProfile(842, 480, 128, 1400, 1498, 2100),
    RenditionProfile(1280, 720, 128, 2800, 2996, 4200),
    RenditionProfile(1920, 1080, 192, 5000, 5350, 7500),
)


def enabled_profiles(mask: int) -> List[RenditionProfile]:
    """Expand a resolution mask (bit i enables profile i) in table order."""
    return [profile for index, profile in enumerate(RENDITIONS) if mask & (1 << index)]


def profile_for_height(height: int) -> Optional[RenditionProfile]:
    for profile in RENDITIONS:
        if profile.height == height:
            return profile
    return None
