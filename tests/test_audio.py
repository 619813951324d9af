"""Tests for the audio graph: level meter, WAV capture and extraction."""

import wave
from unittest.mock import patch

import numpy as np
import pytest

from overlaycast.audio import AudioExtractionError, AudioGraph, LevelMeter


class _FakeMicSource:
    has_audio = True

    def __init__(self):
        self.listeners = []

    def add_audio_listener(self, listener):
        if listener not in self.listeners:
            self.listeners.append(listener)

    def remove_audio_listener(self, listener):
        self.listeners.remove(listener)

    def emit(self, block):
        for listener in list(self.listeners):
            listener(block)


def _sine(n, amplitude=0.5):
    t = np.arange(n) / 48000
    return (amplitude * np.sin(2 * np.pi * 440 * t)).astype(np.float32).reshape(-1, 1)


class TestLevelMeter:
    def test_silence_is_zero(self):
        meter = LevelMeter()
        meter.push(np.zeros((512, 1), dtype=np.float32))
        assert meter.sample() == 0.0

    def test_level_is_normalized(self):
        meter = LevelMeter()
        meter.push(np.ones((512, 1), dtype=np.float32))
        assert meter.sample() == 1.0

    def test_quiet_signal_proportional(self):
        meter = LevelMeter(sensitivity=1.0)
        meter.push(_sine(4800, amplitude=0.5))
        assert meter.sample() == pytest.approx(0.5 / np.sqrt(2), rel=0.01)

    def test_decays_after_signal_stops(self):
        meter = LevelMeter(decay=0.5)
        meter.push(np.ones((16, 1), dtype=np.float32))
        assert meter.sample() == 1.0
        meter.push(np.zeros((16, 1), dtype=np.float32))
        assert meter.sample() == 0.5
        assert meter.sample() == 0.25


class TestAudioGraph:
    def test_connect_is_idempotent(self):
        graph = AudioGraph()
        source = _FakeMicSource()
        assert graph.connect(source) is True
        assert graph.connect(source) is False
        assert len(source.listeners) == 1

    def test_connect_skips_sources_without_audio(self):
        graph = AudioGraph()
        source = _FakeMicSource()
        source.has_audio = False
        assert graph.connect(source) is False
        assert not graph.connected

    def test_blocks_feed_meter(self):
        graph = AudioGraph()
        source = _FakeMicSource()
        graph.connect(source)
        source.emit(np.ones((64, 1), dtype=np.float32))
        assert graph.meter.sample() == 1.0

    def test_capture_writes_only_after_start(self, tmp_path):
        graph = AudioGraph()
        source = _FakeMicSource()
        graph.connect(source)
        source.emit(_sine(1000))              # before capture: metered only
        graph.start_capture(tmp_path / "mic.wav", 48000, 1)
        source.emit(_sine(4800))
        source.emit(_sine(4800))
        path = graph.stop_capture()

        with wave.open(str(path), "rb") as wav:
            assert wav.getframerate() == 48000
            assert wav.getnchannels() == 1
            assert wav.getnframes() == 9600

    def test_empty_capture_returns_none(self, tmp_path):
        graph = AudioGraph()
        graph.start_capture(tmp_path / "mic.wav", 48000, 1)
        assert graph.stop_capture() is None
        assert not (tmp_path / "mic.wav").exists()

    def test_teardown_disconnects(self, tmp_path):
        graph = AudioGraph()
        source = _FakeMicSource()
        graph.connect(source)
        graph.start_capture(tmp_path / "mic.wav", 48000, 1)
        graph.teardown()
        assert source.listeners == []
        assert not graph.capturing


class TestExtraction:
    def test_extracts_soundtrack(self, source_video, tmp_path):
        wav_path = AudioGraph().extract_from_file(source_video, tmp_path)
        with wave.open(str(wav_path), "rb") as wav:
            duration = wav.getnframes() / wav.getframerate()
        assert 1.5 < duration < 2.5

    def test_no_audio_stream_raises(self, silent_video, tmp_path):
        with pytest.raises(AudioExtractionError):
            AudioGraph().extract_from_file(silent_video, tmp_path)


class TestMonitor:
    def test_disabled_by_default(self, tmp_path):
        assert AudioGraph().start_monitor(tmp_path / "x.wav") is False

    def test_plays_at_monitor_gain(self, tmp_path):
        wav_path = tmp_path / "tone.wav"
        with wave.open(str(wav_path), "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(8000)
            wav.writeframes((np.full(800, 16384, dtype="<i2")).tobytes())

        with patch("overlaycast.audio.sd") as mock_sd, \
                patch("overlaycast.audio._SD_AVAILABLE", True):
            graph = AudioGraph(monitor_gain=0.01)
            assert graph.start_monitor(wav_path) is True
            data, rate = mock_sd.play.call_args[0]
            graph.stop_monitor()
            mock_sd.stop.assert_called_once()

        assert rate == 8000
        assert data.max() == pytest.approx(0.005, rel=0.01)
