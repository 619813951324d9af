"""Audio graph — live mic tap, level meter, file extraction, monitoring.

Live camera sessions: microphone blocks flow from the capture source to
the level meter and, while recording, into a WAV file whose first sample
is aligned with the recording start.

File exports: the soundtrack is extracted with ffmpeg through a unity
gain volume filter. An optional near-silent monitor plays it back on the
local output device. Extraction failures degrade to a video-only export.
"""

import logging
import subprocess
import threading
import wave
from pathlib import Path

import imageio_ffmpeg
import numpy as np

logger = logging.getLogger(__name__)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

# Import-guarded playback device.
try:
    import sounddevice as sd
    _SD_AVAILABLE = True
except (ImportError, OSError):
    sd = None
    _SD_AVAILABLE = False

METER_SENSITIVITY = 6.0     # RMS multiplier before clamping to [0, 1]
METER_DECAY = 0.85          # per-sample falloff when the signal drops


class AudioExtractionError(Exception):
    """The source has no decodable audio stream."""


# ── Level meter ──────────────────────────────────────────────────


class LevelMeter:
    """Normalized input level in [0, 1], purely observational.

    push() runs on the audio thread and stores the latest block RMS.
    sample() runs at the preview cadence and applies instant attack
    with exponential decay.
    """

    def __init__(self, sensitivity: float = METER_SENSITIVITY, decay: float = METER_DECAY):
        self.sensitivity = sensitivity
        self.decay = decay
        self._latest = 0.0
        self.level = 0.0

    def push(self, block: np.ndarray) -> None:
        if block.size == 0:
            return
        rms = float(np.sqrt(np.mean(np.square(block, dtype=np.float64))))
        self._latest = max(0.0, min(1.0, rms * self.sensitivity))

    def sample(self) -> float:
        target = self._latest
        self.level = target if target >= self.level else max(target, self.level * self.decay)
        return self.level

    def reset(self) -> None:
        self._latest = 0.0
        self.level = 0.0


# ── WAV capture ──────────────────────────────────────────────────


def _to_pcm16(block: np.ndarray) -> bytes:
    clipped = np.clip(block, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


class AudioGraph:
    """Routes one capture source's audio to the meter and the recorder.

    connect() is idempotent per source, so pausing and resuming a source
    can never double-connect it.
    """

    def __init__(self, gain: float = 1.0, monitor_gain: float = 0.0):
        self.gain = gain
        self.monitor_gain = monitor_gain
        self.meter = LevelMeter()
        self._source = None
        self._lock = threading.Lock()
        self._wav: wave.Wave_write | None = None
        self._wav_path: Path | None = None
        self._frames_captured = 0
        self._monitoring = False

    @property
    def connected(self) -> bool:
        return self._source is not None

    def connect(self, source) -> bool:
        """Tap *source*'s microphone. Returns False if already connected to it."""
        if self._source is source:
            return False
        self.disconnect()
        if not getattr(source, "has_audio", False):
            logger.debug("Source has no audio input, meter stays at zero")
            return False
        source.add_audio_listener(self._on_block)
        self._source = source
        return True

    def disconnect(self) -> None:
        if self._source is not None:
            self._source.remove_audio_listener(self._on_block)
            self._source = None
        self.meter.reset()

    def _on_block(self, block: np.ndarray) -> None:
        self.meter.push(block)
        with self._lock:
            if self._wav is not None:
                if self.gain != 1.0:
                    block = block * self.gain
                self._wav.writeframes(_to_pcm16(block))
                self._frames_captured += len(block)

    # Recording ─────────────────────────────────────────────────────

    def start_capture(self, path: str | Path, sample_rate: int, channels: int) -> None:
        """Begin writing blocks to a 16-bit WAV file from this instant."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        wav = wave.open(str(path), "wb")
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        with self._lock:
            self._wav = wav
            self._wav_path = path
            self._frames_captured = 0
        logger.debug("Audio capture started: %s (%d Hz, %d ch)", path, sample_rate, channels)

    @property
    def capturing(self) -> bool:
        return self._wav is not None

    def stop_capture(self) -> Path | None:
        """Close the WAV file. Returns its path, or None if nothing was captured."""
        with self._lock:
            wav, self._wav = self._wav, None
            path, self._wav_path = self._wav_path, None
            captured = self._frames_captured
        if wav is None:
            return None
        wav.close()
        if captured == 0:
            logger.warning("No microphone samples arrived during recording")
            path.unlink(missing_ok=True)
            return None
        return path

    # File soundtrack ───────────────────────────────────────────────

    def extract_from_file(self, source: str | Path, work_dir: str | Path) -> Path:
        """Extract the soundtrack of *source* to a WAV at unity gain.

        Raises:
            AudioExtractionError: No audio stream or ffmpeg failure.
        """
        wav_path = Path(work_dir) / "soundtrack.wav"
        cmd = [
            _FFMPEG, "-y",
            "-i", str(source),
            "-vn",
            "-af", f"volume={self.gain}",
            "-acodec", "pcm_s16le",
            str(wav_path),
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {e.returncode}"
            raise AudioExtractionError(f"Audio extraction failed for {source}: {detail}") from e
        return wav_path

    def start_monitor(self, wav_path: str | Path) -> bool:
        """Play *wav_path* at monitor_gain on the default output device.

        Returns False when monitoring is disabled or no device is available.
        """
        if self.monitor_gain <= 0:
            return False
        if not _SD_AVAILABLE:
            logger.debug("sounddevice unavailable, skipping monitor playback")
            return False
        with wave.open(str(wav_path), "rb") as wav:
            rate = wav.getframerate()
            channels = wav.getnchannels()
            pcm = np.frombuffer(wav.readframes(wav.getnframes()), dtype="<i2")
        data = pcm.reshape(-1, channels).astype(np.float32) / 32768.0
        sd.play(data * self.monitor_gain, rate)
        self._monitoring = True
        return True

    def stop_monitor(self) -> None:
        if self._monitoring:
            sd.stop()
            self._monitoring = False

    def teardown(self) -> None:
        """Stop capture and monitoring and release the source tap."""
        path = self._wav_path
        if self.stop_capture() is None and path is not None:
            path.unlink(missing_ok=True)
        self.stop_monitor()
        self.disconnect()
