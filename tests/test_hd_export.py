"""Tests for HD still and PDF document export."""

import datetime
import re

import numpy as np
import pytest
from PIL import Image

from overlaycast.hd_export import (
    DocumentFormat,
    PhotoTransform,
    PhotoZone,
    WatermarkStatus,
    export_batch_pdf,
    export_pdf,
    export_png,
    layout_pdf_page,
    mm_to_px,
    participant_values,
    place_photo,
    render_still,
    watermark_required,
)
from overlaycast.overlay_asset import AssetHandle
from overlaycast.overlays import FieldKind, TextLayer

_PAGE_RE = re.compile(rb"/Type\s*/Page(?![s\w])")


class TestWatermarkRequired:
    @pytest.mark.parametrize("status", ["none", "pending", None, "", "REMOVED", "paid"])
    def test_kept_unless_removed(self, status):
        assert watermark_required(status) is True

    def test_removed(self):
        assert watermark_required("removed") is False
        assert watermark_required(WatermarkStatus.REMOVED) is False


class TestDocumentFormat:
    def test_sizes(self):
        assert DocumentFormat.A4_LANDSCAPE.hd_size == (3508, 2480)
        assert DocumentFormat.SQUARE.hd_size == (2400, 2400)
        assert DocumentFormat.BADGE.design_size == (500, 300)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown document format"):
            DocumentFormat.parse("letter")


class TestRenderStill:
    def test_watermark_in_lower_right_until_removed(self):
        kept = np.asarray(render_still(None, None, DocumentFormat.SQUARE,
                                       watermark_status="pending", size=(600, 600)))
        removed = np.asarray(render_still(None, None, DocumentFormat.SQUARE,
                                          watermark_status="removed", size=(600, 600)))
        assert kept[450:, 300:].any()
        assert not removed.any()

    def test_default_size_is_print_resolution(self):
        still = render_still(None, None, DocumentFormat.SQUARE, watermark_status="removed")
        assert still.size == (2400, 2400)

    def test_overlay_and_text(self):
        overlay = AssetHandle("mem", Image.new("RGBA", (10, 10), (0, 0, 255, 255)))
        layer = TextLayer(value="x", x=300, y=300, font_size=40,
                          color="#ffffff", kind=FieldKind.NAME)
        still = render_still(
            Image.new("RGB", (50, 50)), overlay, DocumentFormat.SQUARE,
            text_layers=[layer], field_values={FieldKind.NAME: "Ada"},
            watermark_status="removed", size=(600, 600),
        )
        pixels = np.asarray(still)
        assert tuple(pixels[5, 5]) == (0, 0, 255)
        assert (pixels[280:320, 260:340] == 255).all(axis=2).any()


RED = (255, 0, 0)
BLUE = (0, 0, 255)
BLACK = (0, 0, 0)


def _photo(size=(100, 100), color=RED):
    return Image.new("RGB", size, color)


def _still(photo, **kwargs):
    return np.asarray(render_still(
        photo, None, DocumentFormat.SQUARE, watermark_status="removed",
        size=(200, 200), **kwargs,
    ))


def _is(pixel, color):
    return all(abs(int(p) - c) <= 8 for p, c in zip(pixel, color))


class TestPhotoPlacement:
    def test_transform_cover_fits_instead_of_letterbox(self):
        wide = _photo((300, 100))
        letterboxed = _still(wide)
        covered = _still(wide, photo_transform=PhotoTransform())
        assert _is(letterboxed[0, 100], BLACK)
        assert (covered[:, :, 0] >= 247).all()

    def test_pan_in_design_units(self):
        # Square design canvas is 600 wide, so 300 units move half the canvas.
        pixels = _still(_photo(), photo_transform=PhotoTransform(offset_x=300))
        assert _is(pixels[100, 10], BLACK)
        assert _is(pixels[100, 190], RED)

    def test_zoom_magnifies_center(self):
        photo = _photo(color=BLUE)
        photo.paste(RED, (25, 25, 75, 75))
        plain = _still(photo, photo_transform=PhotoTransform())
        zoomed = _still(photo, photo_transform=PhotoTransform(zoom=2.0))
        assert _is(plain[100, 10], BLUE)
        assert _is(zoomed[100, 10], RED)

    def test_rotation_is_clockwise(self):
        photo = _photo(color=BLUE)
        photo.paste(RED, (0, 0, 100, 50))    # top half
        pixels = _still(photo, photo_transform=PhotoTransform(rotation=90))
        assert _is(pixels[100, 180], RED)
        assert _is(pixels[100, 20], BLUE)

    def test_circle_zone_clips(self):
        pixels = _still(_photo(), photo_zone=PhotoZone("circle", 50, 50, 30, 30))
        assert _is(pixels[100, 100], RED)
        assert _is(pixels[100, 75], RED)
        assert _is(pixels[100, 140], BLACK)
        assert _is(pixels[75, 75], BLACK)

    def test_rect_zone_keeps_corners(self):
        pixels = _still(_photo(), photo_zone=PhotoZone("rect", 50, 50, 30, 30))
        assert _is(pixels[75, 75], RED)
        assert _is(pixels[100, 135], BLACK)

    def test_zone_position_in_percent(self):
        zone = PhotoZone("rect", 25, 75, 20, 20)
        assert zone.box((200, 400)) == (50.0, 300.0, 40.0, 80.0)

    def test_zoom_must_be_positive(self):
        with pytest.raises(ValueError, match="zoom"):
            place_photo(_photo(), (200, 200), PhotoTransform(zoom=0))


class TestParticipantValues:
    def test_formats_date_and_serial(self):
        values = participant_values("Ada", serial=7, title="Speaker",
                                    date=datetime.date(2026, 3, 9))
        assert values[FieldKind.NAME] == "Ada"
        assert values[FieldKind.DATE] == "09/03/2026"
        assert values[FieldKind.SERIAL] == "0007"
        assert values[FieldKind.TITLE] == "Speaker"

    def test_serial_optional(self):
        assert FieldKind.SERIAL not in participant_values("Ada")


class TestPdfLayout:
    def test_a4_at_300_dpi(self):
        assert mm_to_px(210) == 2480
        assert mm_to_px(297) == 3508

    def test_landscape_page_for_wide_image(self):
        (page_w, page_h), (x, y, w, h) = layout_pdf_page((3508, 2480))
        assert (page_w, page_h) == (3508, 2480)
        margin = mm_to_px(10)
        assert x >= margin and y >= margin
        assert x + w <= page_w - margin and y + h <= page_h - margin

    def test_portrait_page_centered(self):
        (page_w, page_h), (x, y, w, h) = layout_pdf_page((1000, 1000))
        assert (page_w, page_h) == (2480, 3508)
        assert w == h
        assert abs((page_w - w) / 2 - x) <= 1
        assert abs((page_h - h) / 2 - y) <= 1


class TestExports:
    def test_png_round_trip(self, tmp_path):
        still = render_still(None, None, DocumentFormat.SQUARE, watermark_status="removed")
        artifact = export_png(still, tmp_path, "still.png")
        assert artifact.mime_type == "image/png"
        with Image.open(artifact.path) as img:
            assert img.size == (2400, 2400)

    def test_pdf_single_page(self, tmp_path):
        still = render_still(None, None, DocumentFormat.BADGE, size=(500, 300))
        artifact = export_pdf(still, tmp_path, "doc.pdf")
        data = artifact.read_bytes()
        assert data.startswith(b"%PDF")
        assert len(_PAGE_RE.findall(data)) == 1
        assert artifact.dimensions == (3508, 2480)

    def test_batch_one_page_per_participant(self, tmp_path):
        layer = TextLayer(value="", x=250, y=150, kind=FieldKind.NAME, color="#fff")
        people = [participant_values(n) for n in ("Ada", "Grace", "Edsger")]
        artifact = export_batch_pdf(
            None, None, DocumentFormat.BADGE, [layer], people, tmp_path, "batch.pdf",
        )
        assert len(_PAGE_RE.findall(artifact.read_bytes())) == 3

    def test_batch_needs_participants(self, tmp_path):
        with pytest.raises(ValueError, match="at least one"):
            export_batch_pdf(None, None, DocumentFormat.BADGE, [], [], tmp_path, "x.pdf")
