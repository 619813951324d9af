"""Shared test fixtures and fakes for overlaycast tests."""

import asyncio
import subprocess
import time
from pathlib import Path

import numpy as np
import pytest
import imageio_ffmpeg
from PIL import Image

from overlaycast.capture import CameraSource, CaptureSession

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


def _make_video(out: Path, size: str, audio: bool = True, duration: int = 2) -> Path:
    cmd = [
        _FFMPEG, "-y",
        "-f", "lavfi", "-i", f"color=c=blue:s={size}:d={duration}:r=10",
    ]
    if audio:
        cmd += ["-f", "lavfi", "-i", "sine=frequency=440:sample_rate=44100", "-shortest"]
    cmd += ["-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p"]
    cmd += ["-c:a", "aac", "-b:a", "32k"] if audio else ["-an"]
    cmd.append(str(out))
    subprocess.run(cmd, check=True, capture_output=True)
    return out


@pytest.fixture
def source_video(tmp_path):
    """A 2-second landscape test video (320x240, 10fps) with a tone soundtrack."""
    return _make_video(tmp_path / "source.mp4", "320x240")


@pytest.fixture
def portrait_video(tmp_path):
    """A 2-second portrait test video (240x320, 10fps) with audio."""
    return _make_video(tmp_path / "portrait.mp4", "240x320")


@pytest.fixture
def silent_video(tmp_path):
    """A 2-second landscape test video without an audio stream."""
    return _make_video(tmp_path / "silent.mp4", "320x240", audio=False)


def make_frame_overlay(path: Path, size: tuple[int, int], color, border: int = 40) -> Path:
    """Write an RGBA overlay: opaque *color* border, fully transparent center."""
    w, h = size
    rgba = np.zeros((h, w, 4), dtype=np.uint8)
    rgba[:border, :] = (*color, 255)
    rgba[-border:, :] = (*color, 255)
    rgba[:, :border] = (*color, 255)
    rgba[:, -border:] = (*color, 255)
    Image.fromarray(rgba, "RGBA").save(path)
    return path


@pytest.fixture
def overlay_files(tmp_path):
    """Red portrait overlay and green landscape overlay as PNG paths."""
    portrait = make_frame_overlay(tmp_path / "portrait.png", (720, 1280), (255, 0, 0))
    landscape = make_frame_overlay(tmp_path / "landscape.png", (1280, 720), (0, 255, 0))
    return portrait, landscape


# ── Fakes ────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock that only advances when something sleeps on it."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class FakeCapture:
    """Stands in for cv2.VideoCapture; yields a constant BGR frame."""

    def __init__(self, size=(640, 480), opened=True):
        w, h = size
        self.frame = np.zeros((h, w, 3), dtype=np.uint8)
        self.frame[:, :, 0] = 200    # blue channel in BGR
        self.opened = opened
        self.props = {}
        self.release_count = 0

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        time.sleep(0.005)    # camera cadence
        return True, self.frame

    def release(self):
        self.release_count += 1


class FakeAudioStream:
    """Stands in for sounddevice.InputStream; blocks are pushed by emit()."""

    def __init__(self, samplerate, channels, dtype, callback):
        self.samplerate = samplerate
        self.channels = channels
        self.callback = callback
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def emit(self, block: np.ndarray) -> None:
        self.callback(block, len(block), None, None)


class FakeDevices:
    """Builds camera sources wired to fake devices and remembers them."""

    def __init__(self, frame_size=(640, 480), opened=True):
        self.frame_size = frame_size
        self.opened = opened
        self.captures: list[FakeCapture] = []
        self.streams: list[FakeAudioStream] = []
        self.sources: list[CameraSource] = []

    def capture_factory(self, device):
        cap = FakeCapture(self.frame_size, opened=self.opened)
        self.captures.append(cap)
        return cap

    def audio_stream_factory(self, **kwargs):
        stream = FakeAudioStream(**kwargs)
        self.streams.append(stream)
        return stream

    def camera_factory(self, constraints):
        source = CameraSource(
            constraints,
            capture_factory=self.capture_factory,
            audio_stream_factory=self.audio_stream_factory,
        )
        self.sources.append(source)
        return source

    def close_all(self) -> None:
        for source in self.sources:
            source.close()

    def session(self, **kwargs) -> CaptureSession:
        return CaptureSession(camera_factory=self.camera_factory, **kwargs)


@pytest.fixture
def devices():
    fake = FakeDevices()
    yield fake
    fake.close_all()


class FakeWriter:
    """Stands in for moviepy's FFMPEG_VideoWriter; records frame shapes and corner pixels."""

    instances: list = []
    fail_codecs: set = set()
    fail_on_write = False

    def __init__(self, filename, size, fps, codec="libx264", preset="medium",
                 bitrate=None, ffmpeg_params=None):
        if codec in self.fail_codecs:
            raise OSError(f"Unknown encoder '{codec}'")
        self.filename = filename
        self.size = size
        self.fps = fps
        self.codec = codec
        self.bitrate = bitrate
        self.frame_shapes = []
        self.corner_pixels = []
        self.close_count = 0
        type(self).instances.append(self)

    def write_frame(self, frame):
        if self.fail_on_write:
            raise OSError("Broken pipe")
        self.frame_shapes.append(frame.shape)
        self.corner_pixels.append(tuple(int(v) for v in frame[0, 0]))

    def close(self):
        self.close_count += 1
        Path(self.filename).write_bytes(b"fake-video")


@pytest.fixture
def fake_writer():
    """A fresh FakeWriter subclass per test (isolated class state)."""

    class Writer(FakeWriter):
        instances = []
        fail_codecs = set()
        fail_on_write = False

    return Writer
