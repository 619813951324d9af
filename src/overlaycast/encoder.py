"""Encoder session — frames in, one encoded file out.

Frames are handed to moviepy's FFMPEG_VideoWriter on a dedicated writer
thread through a bounded FIFO queue, so frame order is preserved and at
most MAX_PENDING_FRAMES frames wait in memory. Async producers use
submit_frame(), which waits off the event loop while the queue is full.
A session is opened once and closed once; close() flushes the queue and
surfaces any writer error.

Audio is muxed afterwards with a stream-copy ffmpeg pass.
"""

import asyncio
import logging
import queue
import subprocess
import threading
from pathlib import Path

import imageio_ffmpeg
import numpy as np
from moviepy.video.io.ffmpeg_writer import FFMPEG_VideoWriter

from .codecs import CodecChoice

logger = logging.getLogger(__name__)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()
_SENTINEL = object()

MAX_PENDING_FRAMES = 8
_PUT_TIMEOUT = 0.1


class EncoderError(RuntimeError):
    """Encoder could not be constructed, or failed while writing."""


class EncoderSession:
    def __init__(
        self,
        path: str | Path,
        size: tuple[int, int],
        fps: float,
        codec: CodecChoice,
        bitrate: str | None = None,
        preset: str = "medium",
        writer_factory=FFMPEG_VideoWriter,
        max_pending: int = MAX_PENDING_FRAMES,
    ):
        self.path = Path(path)
        self.size = size
        self.fps = fps
        self.codec = codec
        self.bitrate = bitrate
        self.preset = preset
        self._writer_factory = writer_factory
        self._writer = None
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None
        self._closed = False
        self.frames_written = 0

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._closed

    def open(self) -> None:
        """Start the ffmpeg writer process.

        Raises:
            EncoderError: The writer could not be constructed.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._writer = self._writer_factory(
                str(self.path), self.size, self.fps,
                codec=self.codec.video_codec,
                preset=self.preset,
                bitrate=self.bitrate,
                ffmpeg_params=["-pix_fmt", "yuv420p"],
            )
        except (OSError, ValueError) as e:
            raise EncoderError(
                f"Cannot start {self.codec.video_codec} encoder: {e}"
            ) from e
        self._thread = threading.Thread(
            target=self._drain, name="encoder-writer", daemon=True,
        )
        self._thread.start()
        logger.debug(
            "Encoder opened: %s %dx%d@%sfps (%s)",
            self.path.name, *self.size, self.fps, self.codec.video_codec,
        )

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _SENTINEL:
                return
            if self._error is not None:
                continue
            try:
                self._writer.write_frame(item)
            except Exception as e:
                # Kept for close(); the thread keeps draining so producers never stall.
                self._error = e

    def _put(self, item) -> bool:
        """Blocking put that gives up once the session is closed."""
        while True:
            try:
                self._queue.put(item, timeout=_PUT_TIMEOUT)
                return True
            except queue.Full:
                if self._closed:
                    return False

    def _prepare(self, frame: np.ndarray) -> np.ndarray:
        if not self.is_open:
            raise EncoderError("write_frame on a closed encoder session")
        return np.array(frame, dtype=np.uint8, copy=True)

    def write_frame(self, frame: np.ndarray) -> None:
        """Queue one RGB frame, blocking while the queue is full. The array is copied."""
        if self._put(self._prepare(frame)):
            self.frames_written += 1

    async def submit_frame(self, frame: np.ndarray) -> None:
        """Queue one RGB frame without blocking the event loop.

        Returns at once while there is room; otherwise waits in a worker
        thread until the writer has drained a frame.
        """
        item = self._prepare(frame)
        try:
            self._queue.put_nowait(item)
            queued = True
        except queue.Full:
            queued = await asyncio.to_thread(self._put, item)
        if queued:
            self.frames_written += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> bool:
        """Flush queued frames and finish the file.

        Returns False if the session was already closed (no-op).

        Raises:
            EncoderError: A frame write or the final flush failed.
        """
        if self._closed or self._writer is None:
            return False
        self._closed = True
        self._queue.put(_SENTINEL)
        self._thread.join()
        try:
            self._writer.close()
        except OSError as e:
            if self._error is None:
                self._error = e
        if self._error is not None:
            raise EncoderError(f"Encoding {self.path.name} failed: {self._error}") from self._error
        logger.debug("Encoder closed: %s (%d frames)", self.path.name, self.frames_written)
        return True

    def discard(self) -> None:
        """Close (ignoring write errors) and delete the partial file."""
        try:
            self.close()
        except EncoderError as e:
            logger.debug("Discarding failed encode: %s", e)
        self.path.unlink(missing_ok=True)


def open_encoder(
    stem: str | Path,
    size: tuple[int, int],
    fps: float,
    candidates: list[CodecChoice],
    bitrate: str | None = None,
    preset: str = "medium",
    writer_factory=FFMPEG_VideoWriter,
) -> EncoderSession:
    """Open the first candidate codec that constructs successfully.

    Args:
        stem: Output path without extension; the codec's extension is added.
        size: (width, height) of encoded frames.
        fps: Output frame rate.
        candidates: Codec choices in preference order.

    Raises:
        EncoderError: Every candidate failed (or none were given).
    """
    stem = Path(stem)
    failures = []
    for choice in candidates:
        session = EncoderSession(
            stem.with_name(f"{stem.name}.{choice.extension}"),
            size, fps, choice,
            bitrate=bitrate, preset=preset, writer_factory=writer_factory,
        )
        try:
            session.open()
        except EncoderError as e:
            logger.warning("Codec %s unavailable, trying next: %s", choice.video_codec, e)
            failures.append(choice.video_codec)
            continue
        return session
    raise EncoderError(
        f"No usable video encoder. Tried: {failures or 'no candidates'}"
    )


def mux_audio(
    video_path: str | Path,
    audio_path: str | Path,
    output_path: str | Path,
    codec: CodecChoice,
    audio_bitrate: str,
) -> None:
    """Combine encoded video with a WAV soundtrack.

    Video is stream-copied. Audio is encoded with the codec's audio
    encoder and padded or cut to the video's length.
    """
    cmd = [
        _FFMPEG, "-y",
        "-i", str(video_path),
        "-i", str(audio_path),
        "-map", "0:v:0", "-map", "1:a:0",
        "-c:v", "copy",
        "-c:a", codec.audio_codec, "-b:a", audio_bitrate,
        "-af", "apad",
        "-shortest",
    ]
    if codec.faststart:
        cmd += ["-movflags", "+faststart"]
    cmd.append(str(output_path))
    subprocess.run(cmd, check=True, capture_output=True)
