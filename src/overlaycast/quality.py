"""Quality tiers and orientation handling.

Each tier stores its canonical (landscape) resolution. Portrait output
uses the same tier with width and height swapped.
"""

from dataclasses import dataclass
from enum import Enum


class Orientation(Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"

    @classmethod
    def from_size(cls, width: int, height: int) -> "Orientation":
        """Derive orientation from pixel dimensions. Square counts as landscape."""
        return cls.PORTRAIT if height > width else cls.LANDSCAPE

    @classmethod
    def parse(cls, value: "str | Orientation") -> "Orientation":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown orientation: '{value}'. "
                f"Valid: {sorted(o.value for o in cls)}"
            ) from None


@dataclass(frozen=True)
class QualityProfile:
    tier: str
    width: int
    height: int
    video_bitrate: int       # bits per second
    audio_bitrate: int       # bits per second
    label: str

    def dimensions(self, orientation: Orientation) -> tuple[int, int]:
        """Return (width, height) for the given orientation."""
        if orientation is Orientation.PORTRAIT:
            return self.height, self.width
        return self.width, self.height

    @property
    def video_bitrate_arg(self) -> str:
        """Bitrate formatted for ffmpeg, e.g. '5000k'."""
        return f"{self.video_bitrate // 1000}k"

    @property
    def audio_bitrate_arg(self) -> str:
        return f"{self.audio_bitrate // 1000}k"


QUALITY_PROFILES: dict[str, QualityProfile] = {
    "480p": QualityProfile("480p", 854, 480, 2_500_000, 96_000, "SD (480p)"),
    "720p": QualityProfile("720p", 1280, 720, 5_000_000, 128_000, "HD (720p)"),
    "1080p": QualityProfile("1080p", 1920, 1080, 8_000_000, 192_000, "Full HD (1080p)"),
}

DEFAULT_TIER = "720p"


def get_profile(tier: str) -> QualityProfile:
    """Look up a quality profile by tier name.

    Raises:
        ValueError: Unknown tier.
    """
    if tier not in QUALITY_PROFILES:
        raise ValueError(
            f"Unknown quality tier: '{tier}'. Valid: {sorted(QUALITY_PROFILES)}"
        )
    return QUALITY_PROFILES[tier]
