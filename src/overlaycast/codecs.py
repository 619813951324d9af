"""Container/codec preferences and ffmpeg encoder probing.

The preference list is plain data, tried in order. Whether a candidate is
usable is decided by a pluggable predicate; the default asks the bundled
ffmpeg which encoders it was built with.
"""

import functools
import subprocess
from dataclasses import dataclass

import imageio_ffmpeg

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


@dataclass(frozen=True)
class CodecChoice:
    mime_type: str
    extension: str
    video_codec: str
    audio_codec: str

    @property
    def faststart(self) -> bool:
        return self.extension in ("mp4", "m4v", "mov")


DEFAULT_CODEC_PREFERENCES: tuple[CodecChoice, ...] = (
    CodecChoice("video/mp4", "mp4", "libx264", "aac"),
    CodecChoice("video/webm", "webm", "libvpx-vp9", "libopus"),
    CodecChoice("video/webm", "webm", "libvpx", "libvorbis"),
    CodecChoice("video/mp4", "mp4", "mpeg4", "aac"),
)


def parse_encoder_listing(text: str) -> frozenset[str]:
    """Extract encoder names from `ffmpeg -encoders` output.

    Entries follow a '------' separator line and look like
    ' V....D libx264    libx264 H.264 / AVC ...'.
    """
    names = set()
    started = False
    for line in text.splitlines():
        stripped = line.strip()
        if not started:
            started = stripped.startswith("------")
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return frozenset(names)


@functools.lru_cache(maxsize=1)
def available_encoders() -> frozenset[str]:
    """Encoders compiled into the bundled ffmpeg (cached per process)."""
    result = subprocess.run(
        [_FFMPEG, "-hide_banner", "-encoders"],
        check=True, capture_output=True, text=True,
    )
    return parse_encoder_listing(result.stdout)


def ffmpeg_supports(choice: CodecChoice) -> bool:
    encoders = available_encoders()
    return choice.video_codec in encoders and choice.audio_codec in encoders


def negotiate_codecs(
    preferences=DEFAULT_CODEC_PREFERENCES, is_supported=ffmpeg_supports,
) -> list[CodecChoice]:
    """Return the supported candidates, preference order preserved."""
    return [choice for choice in preferences if is_supported(choice)]


def parse_codec_preferences(entries: list[dict]) -> tuple[CodecChoice, ...]:
    """Build CodecChoice tuples from config dicts.

    Each entry needs 'mime', 'extension', 'video' and 'audio' keys.
    """
    choices = []
    for i, entry in enumerate(entries):
        missing = [k for k in ("mime", "extension", "video", "audio") if k not in entry]
        if missing:
            raise ValueError(f"Codec {i}: missing required field(s) {missing}")
        choices.append(CodecChoice(
            mime_type=str(entry["mime"]),
            extension=str(entry["extension"]).lstrip("."),
            video_codec=str(entry["video"]),
            audio_codec=str(entry["audio"]),
        ))
    if not choices:
        raise ValueError("Codec preference list must not be empty")
    return tuple(choices)
