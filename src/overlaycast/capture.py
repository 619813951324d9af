"""Capture sources — live camera (+ microphone) or an uploaded file.

A CaptureSession owns at most one active source. Starting a new source
stops and releases the previous one; stop() is idempotent.

Camera capture requires optional dependencies: pip install overlaycast[camera]
Import-guarded so file export and stills work without OpenCV/PortAudio.
"""

import asyncio
import logging
import mimetypes
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from moviepy import VideoFileClip

from .quality import Orientation

logger = logging.getLogger(__name__)

# Import-guarded device dependencies.
try:
    import cv2
    _CV2_AVAILABLE = True
except ImportError:
    cv2 = None
    _CV2_AVAILABLE = False

try:
    import sounddevice as sd
    _SD_AVAILABLE = True
except (ImportError, OSError):
    # OSError: sounddevice installed but PortAudio library missing.
    sd = None
    _SD_AVAILABLE = False

# cv2.CAP_PROP_FRAME_WIDTH / cv2.CAP_PROP_FRAME_HEIGHT
_CAP_PROP_FRAME_WIDTH = 3
_CAP_PROP_FRAME_HEIGHT = 4


class CaptureMode(Enum):
    IDLE = "idle"
    CAMERA = "camera"
    UPLOAD = "upload"


class AcquisitionError(Exception):
    """Base class for capture source failures."""


class AccessError(AcquisitionError):
    """Camera/microphone permission denied, no device, or no driver."""


class FormatError(AcquisitionError):
    """Uploaded file has an unsupported type or cannot be decoded."""


# ── Camera ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class CameraConstraints:
    orientation: Orientation = Orientation.PORTRAIT
    device: int | str = 0
    audio: bool = True
    sample_rate: int = 48000
    channels: int = 1
    first_frame_timeout: float = 5.0

    @property
    def ideal_size(self) -> tuple[int, int]:
        """Requested (width, height): 720x1280 portrait, 1280x720 landscape."""
        if self.orientation is Orientation.PORTRAIT:
            return 720, 1280
        return 1280, 720


def _default_capture_factory(device):
    if not _CV2_AVAILABLE:
        raise AccessError(
            "Camera capture requires extra dependencies. "
            "Install with: pip install overlaycast[camera]"
        )
    return cv2.VideoCapture(device)


def _default_audio_stream_factory(**kwargs):
    if not _SD_AVAILABLE:
        raise AccessError("Microphone capture requires the sounddevice package")
    return sd.InputStream(**kwargs)


class CameraSource:
    """Camera frames from a background reader thread plus optional mic blocks.

    read() is non-blocking and returns the most recent RGB frame. Mic
    blocks (float32, shape (frames, channels)) are pushed to listeners
    from the audio thread.
    """

    mode = CaptureMode.CAMERA
    paused = False
    is_still = False

    def __init__(
        self,
        constraints: CameraConstraints | None = None,
        capture_factory=None,
        audio_stream_factory=None,
    ):
        self.constraints = constraints or CameraConstraints()
        self._capture_factory = capture_factory or _default_capture_factory
        self._audio_stream_factory = audio_stream_factory or _default_audio_stream_factory
        self._capture = None
        self._stream = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._first_frame = threading.Event()
        self._lock = threading.Lock()
        self._frame: np.ndarray | None = None
        self._listeners: list = []
        self._closed = False
        self.ended = False
        self.has_audio = False

    # Video ─────────────────────────────────────────────────────────

    def open(self) -> None:
        """Open the device and block until the first frame arrives.

        Raises:
            AccessError: No device, access denied, or no frames delivered.
        """
        c = self.constraints
        capture = self._capture_factory(c.device)
        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise AccessError(f"Camera {c.device!r} could not be opened")
        width, height = c.ideal_size
        capture.set(_CAP_PROP_FRAME_WIDTH, width)
        capture.set(_CAP_PROP_FRAME_HEIGHT, height)
        self._capture = capture

        self._thread = threading.Thread(
            target=self._reader_loop, name="camera-reader", daemon=True,
        )
        self._thread.start()
        if not self._first_frame.wait(c.first_frame_timeout):
            self.close()
            raise AccessError(f"Camera {c.device!r} delivered no frames")

        if c.audio:
            self._open_microphone()
        logger.info(
            "Camera %r opened at %dx%d (audio=%s)",
            c.device, *self.size, self.has_audio,
        )

    def _reader_loop(self) -> None:
        while not self._stop_event.is_set():
            ok, frame = self._capture.read()
            if not ok or frame is None:
                time.sleep(0.01)
                continue
            rgb = np.ascontiguousarray(frame[:, :, 2::-1])   # BGR -> RGB
            with self._lock:
                self._frame = rgb
            self._first_frame.set()

    def read(self) -> np.ndarray | None:
        with self._lock:
            return self._frame

    @property
    def size(self) -> tuple[int, int]:
        frame = self.read()
        if frame is None:
            return self.constraints.ideal_size
        return frame.shape[1], frame.shape[0]

    @property
    def orientation(self) -> Orientation:
        return Orientation.from_size(*self.size)

    # Audio ─────────────────────────────────────────────────────────

    def _open_microphone(self) -> None:
        c = self.constraints
        try:
            self._stream = self._audio_stream_factory(
                samplerate=c.sample_rate,
                channels=c.channels,
                dtype="float32",
                callback=self._on_audio,
            )
            self._stream.start()
        except Exception as e:
            # PortAudio raises its own error types for missing/denied devices.
            logger.warning("Microphone unavailable, continuing video-only: %s", e)
            self._stream = None
            return
        self.has_audio = True

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Microphone callback status: %s", status)
        block = np.array(indata, dtype=np.float32, copy=True)
        for listener in list(self._listeners):
            listener(block)

    def add_audio_listener(self, listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_audio_listener(self, listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def sample_rate(self) -> int:
        return self.constraints.sample_rate

    @property
    def channels(self) -> int:
        return self.constraints.channels

    # Teardown ──────────────────────────────────────────────────────

    def close(self) -> bool:
        """Release the camera and microphone. Returns False if already closed."""
        if self._closed:
            return False
        self._closed = True
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self._listeners.clear()
        self.has_audio = False
        self.ended = True
        return True


# ── Uploaded file ────────────────────────────────────────────────


def detect_mime_type(path: str | Path) -> str | None:
    mime, _ = mimetypes.guess_type(str(path))
    return mime


class FileSource:
    """Frames from an uploaded video (moviepy) or a single image (Pillow).

    Video frames are pulled sequentially via read(); `ended` flips once
    the clip is exhausted. Images return the same frame forever.
    """

    mode = CaptureMode.UPLOAD

    def __init__(
        self,
        path: str | Path,
        mime_type: str | None = None,
        clip_factory=VideoFileClip,
    ):
        self.path = Path(path)
        self.mime_type = mime_type or detect_mime_type(self.path)
        self._clip_factory = clip_factory
        self._clip = None
        self._image: np.ndarray | None = None
        self._frames = None
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._closed = False
        self.ended = False
        self.fps: float | None = None
        self.duration: float | None = None
        self.has_audio = False

    @property
    def is_still(self) -> bool:
        return self.mime_type is not None and self.mime_type.startswith("image/")

    def open(self) -> None:
        """Validate the MIME prefix and decode media metadata.

        Raises:
            FormatError: Not a video/image, missing, or undecodable.
        """
        mime = self.mime_type or ""
        if not (mime.startswith("video/") or mime.startswith("image/")):
            raise FormatError(
                f"Unsupported file type for {self.path.name}: {mime or 'unknown'}. "
                "Expected a video/* or image/* file."
            )
        if not self.path.is_file():
            raise FormatError(f"File not found: {self.path}")

        if self.is_still:
            try:
                with Image.open(self.path) as img:
                    img = ImageOps.exif_transpose(img)
                    self._image = np.asarray(img.convert("RGB"))
            except (UnidentifiedImageError, OSError) as e:
                raise FormatError(f"Cannot decode image {self.path.name}: {e}") from e
            return

        try:
            self._clip = self._clip_factory(str(self.path))
        except (OSError, KeyError, IndexError, ValueError) as e:
            raise FormatError(f"Cannot decode video {self.path.name}: {e}") from e
        self.fps = self._clip.fps
        self.duration = self._clip.duration
        self.has_audio = self._clip.audio is not None
        logger.debug(
            "Opened %s: %dx%d, %.2fs, fps=%s, audio=%s",
            self.path.name, *self.size, self.duration or 0.0, self.fps, self.has_audio,
        )

    @property
    def size(self) -> tuple[int, int]:
        if self._image is not None:
            return self._image.shape[1], self._image.shape[0]
        if self._clip is not None:
            w, h = self._clip.size
            return int(w), int(h)
        raise RuntimeError("FileSource.size requested before open()")

    @property
    def orientation(self) -> Orientation:
        """Orientation from the media's own dimensions, not the display."""
        return Orientation.from_size(*self.size)

    # Playback ──────────────────────────────────────────────────────

    def start(self, fps: float) -> None:
        """(Re)start sequential frame delivery at *fps*."""
        if self._clip is not None:
            self._frames = self._clip.iter_frames(fps=fps, dtype="uint8")
            self.ended = False

    def read(self) -> np.ndarray | None:
        if self._image is not None:
            return self._image
        if self.ended or self._clip is None:
            return None
        if self._frames is None:
            self.start(self.fps or 30)
        try:
            return next(self._frames)
        except StopIteration:
            self.ended = True
            return None

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    async def wait_resumed(self) -> None:
        await self._resumed.wait()

    def close(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        self._frames = None
        if self._clip is not None:
            self._clip.close()
            self._clip = None
        self._image = None
        self.ended = True
        self._resumed.set()
        return True


# ── Session ──────────────────────────────────────────────────────


class CaptureSession:
    """Owns the single active capture source and the display orientation."""

    def __init__(
        self,
        orientation: Orientation = Orientation.PORTRAIT,
        camera_factory=CameraSource,
        file_factory=FileSource,
    ):
        self.orientation = orientation
        self.mode = CaptureMode.IDLE
        self.source: CameraSource | FileSource | None = None
        self.last_error: str | None = None
        self._camera_factory = camera_factory
        self._file_factory = file_factory

    def set_display_orientation(self, orientation: Orientation) -> None:
        self.orientation = Orientation.parse(orientation)

    async def start_camera(
        self, constraints: CameraConstraints | None = None,
    ) -> CameraSource:
        """Stop any current source and open the camera.

        Raises:
            AccessError: The session stays IDLE with last_error set.
        """
        self.stop()
        constraints = constraints or CameraConstraints(orientation=self.orientation)
        source = self._camera_factory(constraints)
        try:
            await asyncio.to_thread(source.open)
        except AccessError as e:
            source.close()
            self.last_error = str(e)
            logger.warning("Camera access failed: %s", e)
            raise
        self.source = source
        self.mode = CaptureMode.CAMERA
        self.last_error = None
        return source

    async def start_from_file(
        self, path: str | Path, mime_type: str | None = None,
    ) -> FileSource:
        """Stop any current source and open an uploaded file.

        Raises:
            FormatError: The session stays IDLE with last_error set.
        """
        self.stop()
        source = self._file_factory(path, mime_type)
        try:
            await asyncio.to_thread(source.open)
        except FormatError as e:
            source.close()
            self.last_error = str(e)
            logger.warning("Rejected upload: %s", e)
            raise
        self.source = source
        self.mode = CaptureMode.UPLOAD
        self.last_error = None
        return source

    def stop(self) -> bool:
        """Release the active source. Returns False if nothing was active."""
        source, self.source = self.source, None
        self.mode = CaptureMode.IDLE
        if source is None:
            return False
        source.close()
        logger.debug("Capture source stopped (%s)", source.mode.value)
        return True
