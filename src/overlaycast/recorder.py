"""Recording/export controller — the capture-to-artifact state machine.

States:
    IDLE -> COUNTDOWN -> RECORDING -> FINALIZING -> IDLE     (live camera)
    IDLE -> PROCESSING -> FINALIZING -> IDLE                 (uploaded file)

Entering RECORDING opens exactly one encoder session; FINALIZING closes
it exactly once. Live frames are paced to the controller's clock, so the
encoded duration follows wall time and the duration ceiling holds no
matter what the UI does. Every exit path (normal finish, failure,
cancellation, close) runs the same teardown().
"""

import asyncio
import logging
import math
import subprocess
import time
from enum import Enum
from pathlib import Path

import numpy as np
from moviepy.video.io.ffmpeg_writer import FFMPEG_VideoWriter
from PIL import Image

from .artifact import ExportArtifact, build_filename
from .audio import AudioExtractionError, AudioGraph
from .capture import AccessError, CaptureMode, CaptureSession, FileSource
from .codecs import DEFAULT_CODEC_PREFERENCES, ffmpeg_supports, negotiate_codecs
from .compositor import Surface, composite_frame
from .encoder import EncoderError, EncoderSession, mux_audio, open_encoder
from .hd_export import export_png
from .overlay_asset import OverlayAsset
from .quality import Orientation, QualityProfile
from .render_loop import RenderLoop

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30
DEFAULT_COUNTDOWN = 3
DEFAULT_MAX_DURATION = 60.0
_EPS = 1e-6


class RecordingState(Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    PROCESSING = "processing"


_TRANSITIONS = {
    RecordingState.IDLE: {
        RecordingState.COUNTDOWN, RecordingState.RECORDING, RecordingState.PROCESSING,
    },
    RecordingState.COUNTDOWN: {RecordingState.RECORDING, RecordingState.IDLE},
    RecordingState.RECORDING: {RecordingState.FINALIZING},
    RecordingState.FINALIZING: {RecordingState.IDLE},
    RecordingState.PROCESSING: {RecordingState.FINALIZING, RecordingState.IDLE},
}


class InvalidTransition(RuntimeError):
    """A state change outside the allowed graph was attempted."""


class ExportError(RuntimeError):
    """Finalization failed; no artifact was produced."""


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecordingController:
    """Drives one capture session from countdown (or upload) to artifact.

    Args:
        session: Capture session holding the active source.
        overlay: Campaign overlay (both orientations).
        profile: Output quality tier.
        work_dir: Directory for intermediate files and artifacts.
        app_name: Prefix for artifact filenames.
        campaign_title: Campaign name used in artifact filenames.
        fps: Output frame rate.
        countdown_seconds: Length of the pre-recording countdown.
        max_duration: Recording ceiling in seconds.
        codec_preferences: CodecChoice candidates in preference order.
        is_supported: Predicate deciding whether a CodecChoice is usable.
        audio: Audio graph; a default one is created when omitted.
        writer_factory: Frame writer class (moviepy's FFMPEG_VideoWriter).
        preset: ffmpeg encoder preset.
        clock: Monotonic time source in seconds.
        sleep: Awaitable sleep used for countdown and frame pacing.
        timestamp: Callable returning unix milliseconds for filenames.
        on_countdown: Callback receiving each remaining countdown second.
        on_state_change: Callback receiving (old_state, new_state).
    """

    def __init__(
        self,
        session: CaptureSession,
        overlay: OverlayAsset,
        profile: QualityProfile,
        *,
        work_dir: str | Path,
        app_name: str = "overlaycast",
        campaign_title: str = "",
        fps: int = DEFAULT_FPS,
        countdown_seconds: int = DEFAULT_COUNTDOWN,
        max_duration: float = DEFAULT_MAX_DURATION,
        codec_preferences=DEFAULT_CODEC_PREFERENCES,
        is_supported=ffmpeg_supports,
        audio: AudioGraph | None = None,
        writer_factory=FFMPEG_VideoWriter,
        preset: str = "medium",
        clock=time.monotonic,
        sleep=asyncio.sleep,
        timestamp=_now_ms,
        on_countdown=None,
        on_state_change=None,
    ):
        self.session = session
        self.overlay = overlay
        self.profile = profile
        self.work_dir = Path(work_dir)
        self.app_name = app_name
        self.campaign_title = campaign_title
        self.fps = fps
        self.countdown_seconds = countdown_seconds
        self.max_duration = max_duration
        self.codec_preferences = tuple(codec_preferences)
        self.is_supported = is_supported
        self.audio = audio or AudioGraph()
        self.writer_factory = writer_factory
        self.preset = preset
        self._clock = clock
        self._sleep = sleep
        self._timestamp = timestamp
        self.on_countdown = on_countdown
        self.on_state_change = on_state_change

        self._state = RecordingState.IDLE
        self._render_loop = RenderLoop(sleep=sleep)
        self._surface: Surface | None = None
        self._encoder: EncoderSession | None = None
        self._record_task: asyncio.Task | None = None
        self._preview_task: asyncio.Task | None = None
        self._finalizing = False
        self._stop_requested = False
        self._started_at = 0.0
        self._orientation = session.orientation
        self._dest_size = profile.dimensions(session.orientation)
        self._file_audio: Path | None = None
        self.last_artifact: ExportArtifact | None = None
        self.warnings: list[str] = []

    # ── State ──────────────────────────────────────────────────────

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def max_frames(self) -> int:
        return round(self.max_duration * self.fps)

    @property
    def frames_written(self) -> int:
        return self._encoder.frames_written if self._encoder is not None else 0

    def _transition(self, new: RecordingState) -> None:
        old = self._state
        if new not in _TRANSITIONS[old]:
            raise InvalidTransition(f"Cannot go from {old.value} to {new.value}")
        self._state = new
        logger.debug("State %s -> %s", old.value, new.value)
        if self.on_state_change is not None:
            self.on_state_change(old, new)

    # ── Rendering ──────────────────────────────────────────────────

    def _render(self, frame: np.ndarray | None, orientation: Orientation, size) -> np.ndarray:
        """Composite with the overlay variant for *orientation*."""
        self.overlay.poll(orientation)
        if self._surface is None or self._surface.size != size:
            self._surface = Surface(size)
        return composite_frame(
            frame, self.overlay.for_orientation(orientation), size, surface=self._surface,
        )

    def start_preview(self, on_frame) -> asyncio.Task:
        """Run the live preview loop in the background.

        on_frame receives (composited_frame, audio_level) once per tick,
        using the current display orientation. Stopped by teardown().
        """
        source = self.session.source
        if source is None:
            raise AccessError("Preview needs an active capture source")
        if self.session.mode is CaptureMode.CAMERA:
            self.audio.connect(source)

        def render(frame):
            orientation = self.session.orientation
            return self._render(frame, orientation, self.profile.dimensions(orientation))

        self._preview_task = asyncio.get_running_loop().create_task(
            self._render_loop.run_preview(source, render, on_frame, meter=self.audio.meter)
        )
        return self._preview_task

    # ── Live recording ─────────────────────────────────────────────

    async def start_countdown(self) -> bool:
        """Count down, then start recording with no gap after zero.

        Returns False if not IDLE or if cancelled during the countdown.
        """
        if self._state is not RecordingState.IDLE:
            return False
        self._transition(RecordingState.COUNTDOWN)
        for remaining in range(self.countdown_seconds, 0, -1):
            if self._state is not RecordingState.COUNTDOWN:
                return False
            if self.on_countdown is not None:
                self.on_countdown(remaining)
            await self._sleep(1.0)
        if self._state is not RecordingState.COUNTDOWN:
            return False
        return self.start_recording()

    def start_recording(self) -> bool:
        """Open the encoder and start the recording loop.

        No-op (returns False) unless IDLE or COUNTDOWN. Must be called
        from a running event loop.

        Raises:
            AccessError: No active camera source.
            EncoderError: No codec candidate could be opened.
        """
        if self._state not in (RecordingState.IDLE, RecordingState.COUNTDOWN):
            return False
        source = self.session.source
        try:
            if self.session.mode is not CaptureMode.CAMERA or source is None:
                raise AccessError("Recording needs an active camera source")
            self._orientation = self.session.orientation
            self._dest_size = self.profile.dimensions(self._orientation)
            self._encoder = self._open_encoder("recording")
        except (AccessError, EncoderError):
            if self._state is RecordingState.COUNTDOWN:
                self._transition(RecordingState.IDLE)
            raise

        self._transition(RecordingState.RECORDING)
        self.last_artifact = None
        self.warnings = []
        self._stop_requested = False
        if source.has_audio:
            self.audio.connect(source)
            self.audio.start_capture(
                self._encoder.path.with_suffix(".wav"), source.sample_rate, source.channels,
            )
        self._started_at = self._clock()
        self._record_task = asyncio.get_running_loop().create_task(self._record_loop())
        logger.info(
            "Recording started: %dx%d %s (%s)",
            *self._dest_size, self._orientation.value, self._encoder.codec.video_codec,
        )
        return True

    def _open_encoder(self, prefix: str) -> EncoderSession:
        candidates = negotiate_codecs(self.codec_preferences, self.is_supported)
        return open_encoder(
            self.work_dir / f"{prefix}-{self._timestamp()}",
            self._dest_size, self.fps, candidates,
            bitrate=self.profile.video_bitrate_arg,
            preset=self.preset,
            writer_factory=self.writer_factory,
        )

    async def _write_until(self, target: int) -> None:
        """Write the current composite until *target* frames exist."""
        encoder = self._encoder
        if encoder is None or encoder.frames_written >= target:
            return
        source = self.session.source
        raw = source.read() if source is not None else None
        frame = self._render(raw, self._orientation, self._dest_size)
        # finalize() may take the encoder while a full queue holds us up.
        while encoder.frames_written < target and self._encoder is encoder:
            await encoder.submit_frame(frame)

    async def _record_loop(self) -> ExportArtifact | None:
        capped = False
        try:
            while self._state is RecordingState.RECORDING and not self._stop_requested:
                elapsed = self._clock() - self._started_at
                if elapsed >= self.max_duration:
                    capped = True
                    break
                due = min(int(elapsed * self.fps + _EPS) + 1, self.max_frames)
                await self._write_until(due)
                await self._sleep(1 / self.fps)

            if self._state is RecordingState.RECORDING:
                if capped:
                    logger.info("Maximum duration of %.0fs reached, finalizing", self.max_duration)
                    target = self.max_frames
                else:
                    elapsed = min(self._clock() - self._started_at, self.max_duration)
                    target = max(1, math.ceil(elapsed * self.fps - _EPS))
                await self._write_until(target)
        except BaseException:
            self.teardown()
            raise
        return await self.finalize()

    async def stop(self) -> ExportArtifact | None:
        """Stop recording and return the artifact.

        Cancels a running countdown. Repeated calls are harmless.
        """
        if self._state is RecordingState.COUNTDOWN:
            self.cancel()
            return None
        self._stop_requested = True
        artifact = await self._join_record_task()
        return artifact or self.last_artifact

    async def wait(self) -> ExportArtifact | None:
        """Wait for the current recording to end on its own (duration cap)."""
        await self._join_record_task()
        return self.last_artifact

    async def _join_record_task(self) -> ExportArtifact | None:
        task = self._record_task
        if task is None or task.cancelled():
            return None
        try:
            return await task
        except asyncio.CancelledError:
            # Cancelled by teardown(); only propagate our own cancellation.
            if not task.cancelled():
                raise
            return None

    # ── File export ────────────────────────────────────────────────

    async def process_file(
        self, path: str | Path, mime_type: str | None = None,
    ) -> ExportArtifact | None:
        """Export an uploaded video (or image) with the overlay applied.

        Orientation, and with it the overlay variant and output size,
        comes from the media's own dimensions. Returns None if the
        controller is busy.

        Raises:
            FormatError: Unsupported or undecodable upload.
            EncoderError: No usable codec.
            ExportError: Finalization failed.
        """
        if self._state is not RecordingState.IDLE:
            return None
        self._transition(RecordingState.PROCESSING)
        self.last_artifact = None
        self.warnings = []
        self._stop_requested = False
        try:
            source = await self.session.start_from_file(path, mime_type)
            self._orientation = source.orientation
            self._dest_size = self.profile.dimensions(self._orientation)
            if (self.overlay.for_orientation(self._orientation) is None
                    and not self.overlay.has_failed(self._orientation)):
                await self.overlay.load([self._orientation])

            if source.is_still:
                return self._finish_still(source)

            self._encoder = self._open_encoder("export")
            if source.has_audio:
                await self._prepare_file_audio(source)
            else:
                self._warn(f"{source.path.name} has no audio track, exporting video only")

            source.start(self.fps)
            orientation, size = self._orientation, self._dest_size
            written = await self._render_loop.run_export(
                source,
                lambda frame: self._render(frame, orientation, size),
                self._write_export_frame,
            )
            if self._state is not RecordingState.PROCESSING:
                return self.last_artifact
            if written == 0:
                raise ExportError(f"{source.path.name} produced no video frames")
            return await self.finalize()
        except BaseException:
            self.teardown()
            raise

    async def _write_export_frame(self, frame: np.ndarray) -> None:
        if self._encoder is not None:
            await self._encoder.submit_frame(frame)

    async def _prepare_file_audio(self, source: FileSource) -> None:
        try:
            self._file_audio = await asyncio.to_thread(
                self.audio.extract_from_file, source.path, self._encoder.path.parent,
            )
        except AudioExtractionError as e:
            self._warn(f"{e}; exporting video only")
            return
        self.audio.start_monitor(self._file_audio)

    def _finish_still(self, source: FileSource) -> ExportArtifact:
        frame = self._render(source.read(), self._orientation, self._dest_size)
        self._transition(RecordingState.FINALIZING)
        try:
            filename = build_filename(
                self.app_name, self.campaign_title, self.profile.tier, "png",
                self._orientation.value, self._timestamp(),
            )
            artifact = export_png(Image.fromarray(frame.copy()), self.work_dir, filename)
        finally:
            self.session.stop()
            self._transition(RecordingState.IDLE)
        self.last_artifact = artifact
        return artifact

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    # ── Finalization ───────────────────────────────────────────────

    async def finalize(self) -> ExportArtifact | None:
        """Close the encoder, mux audio, and build the artifact.

        Runs at most once per recording/export; concurrent or repeated
        calls return None without side effects. Always ends in IDLE.

        Raises:
            ExportError: Encoding failed; partial files are deleted.
        """
        if self._finalizing or self._state not in (
            RecordingState.RECORDING, RecordingState.PROCESSING,
        ):
            return None
        self._finalizing = True
        self._stop_requested = True
        processing = self._state is RecordingState.PROCESSING
        self._transition(RecordingState.FINALIZING)

        encoder, self._encoder = self._encoder, None
        if encoder is None:
            self._finalizing = False
            self._transition(RecordingState.IDLE)
            return None
        if processing:
            self._render_loop.stop()
            audio_path, self._file_audio = self._file_audio, None
            self.audio.stop_monitor()
        else:
            audio_path = self.audio.stop_capture()

        filename = build_filename(
            self.app_name, self.campaign_title, self.profile.tier,
            encoder.codec.extension, self._orientation.value, self._timestamp(),
        )
        try:
            artifact = await asyncio.to_thread(
                self._assemble, encoder, audio_path, self.work_dir / filename,
            )
        except (EncoderError, OSError) as e:
            encoder.discard()
            if audio_path is not None:
                audio_path.unlink(missing_ok=True)
            logger.error("Finalizing %s failed: %s", filename, e)
            raise ExportError(f"Could not finalize {filename}: {e}") from e
        finally:
            if processing:
                self.session.stop()
            self._finalizing = False
            if self._state is RecordingState.FINALIZING:
                self._transition(RecordingState.IDLE)

        self.last_artifact = artifact
        logger.info(
            "Export ready: %s (%dx%d, %d frames, audio=%s)",
            filename, *artifact.dimensions, encoder.frames_written, artifact.has_audio,
        )
        return artifact

    def _assemble(
        self, encoder: EncoderSession, audio_path: Path | None, output: Path,
    ) -> ExportArtifact:
        encoder.close()
        has_audio = False
        if audio_path is not None:
            try:
                mux_audio(
                    encoder.path, audio_path, output, encoder.codec,
                    self.profile.audio_bitrate_arg,
                )
                has_audio = True
            except subprocess.CalledProcessError as e:
                stderr = e.stderr.decode(errors="replace").strip().splitlines() if e.stderr else []
                self._warn(
                    f"Audio mux failed ({stderr[-1] if stderr else e.returncode}), "
                    "exporting video only"
                )
                output.unlink(missing_ok=True)
            audio_path.unlink(missing_ok=True)
        if has_audio:
            encoder.path.unlink(missing_ok=True)
        else:
            encoder.path.replace(output)

        if output.stat().st_size == 0:
            output.unlink()
            raise EncoderError(f"{output.name} is empty")
        return ExportArtifact(
            path=output,
            mime_type=encoder.codec.mime_type,
            suggested_filename=output.name,
            dimensions=encoder.size,
            orientation_label=self._orientation.value,
            has_audio=has_audio,
        )

    # ── Teardown ───────────────────────────────────────────────────

    def teardown(self) -> None:
        """Release capture hardware, loops, encoder and audio. Repeatable.

        A finalization already in progress is left to complete.
        """
        self._stop_requested = True
        self._render_loop.stop()
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._record_task, self._preview_task):
            if task is not None and task is not current and not task.done() and not self._finalizing:
                task.cancel()
        self._preview_task = None

        if not self._finalizing:
            encoder, self._encoder = self._encoder, None
            if encoder is not None:
                encoder.discard()
            self.audio.teardown()
            if self._file_audio is not None:
                self._file_audio.unlink(missing_ok=True)
                self._file_audio = None
        self.session.stop()

        if self._state is RecordingState.RECORDING:
            self._transition(RecordingState.FINALIZING)
            self._transition(RecordingState.IDLE)
        elif self._state in (RecordingState.COUNTDOWN, RecordingState.PROCESSING):
            self._transition(RecordingState.IDLE)

    def cancel(self) -> None:
        """Abort whatever is running, discarding partial output."""
        logger.info("Cancelled in state %s", self._state.value)
        self.teardown()

    def close(self) -> None:
        """Final teardown: also releases the overlay images."""
        self.teardown()
        self.overlay.release()
