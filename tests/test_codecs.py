"""Tests for codec preference negotiation."""

import pytest

from overlaycast.codecs import (
    DEFAULT_CODEC_PREFERENCES,
    CodecChoice,
    ffmpeg_supports,
    negotiate_codecs,
    parse_codec_preferences,
    parse_encoder_listing,
)

_LISTING = """\
Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC (codec h264)
 V....D libvpx-vp9           libvpx VP9 (codec vp9)
 A....D aac                  AAC (Advanced Audio Coding)
 A....D libopus              libopus Opus (codec opus)
"""


class TestParseEncoderListing:
    def test_names_after_separator(self):
        names = parse_encoder_listing(_LISTING)
        assert names == {"libx264", "libvpx-vp9", "aac", "libopus"}

    def test_legend_lines_ignored(self):
        assert "=" not in parse_encoder_listing(_LISTING)

    def test_empty_output(self):
        assert parse_encoder_listing("") == frozenset()


class TestNegotiate:
    def test_preference_order_preserved(self):
        supported = negotiate_codecs(is_supported=lambda c: True)
        assert supported == list(DEFAULT_CODEC_PREFERENCES)
        assert supported[0].mime_type == "video/mp4"

    def test_unsupported_skipped(self):
        supported = negotiate_codecs(is_supported=lambda c: c.extension == "webm")
        assert [c.video_codec for c in supported] == ["libvpx-vp9", "libvpx"]

    def test_nothing_supported(self):
        assert negotiate_codecs(is_supported=lambda c: False) == []

    def test_bundled_ffmpeg_has_an_mp4_encoder(self):
        supported = negotiate_codecs()
        assert any(c.extension == "mp4" for c in supported)
        assert all(ffmpeg_supports(c) for c in supported)


class TestCodecChoice:
    def test_faststart_for_mp4_only(self):
        assert CodecChoice("video/mp4", "mp4", "libx264", "aac").faststart
        assert not CodecChoice("video/webm", "webm", "libvpx", "libvorbis").faststart


class TestParseCodecPreferences:
    def test_valid(self):
        choices = parse_codec_preferences([
            {"mime": "video/webm", "extension": ".webm", "video": "libvpx", "audio": "libvorbis"},
        ])
        assert choices == (CodecChoice("video/webm", "webm", "libvpx", "libvorbis"),)

    def test_missing_field(self):
        with pytest.raises(ValueError, match="Codec 0: missing"):
            parse_codec_preferences([{"mime": "video/mp4", "extension": "mp4"}])

    def test_empty_list(self):
        with pytest.raises(ValueError, match="must not be empty"):
            parse_codec_preferences([])
