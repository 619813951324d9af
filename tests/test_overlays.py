"""Tests for text layers and the watermark label."""

import numpy as np
import pytest

from overlaycast.overlays import (
    OVERLAY_MARGIN_FRAC,
    FieldKind,
    TextLayer,
    apply_watermark,
    blend_patch,
    compute_overlay_position,
    draw_text_layers,
    render_label_patch,
)


class TestComputeOverlayPosition:
    """Test 3x3 grid position computation."""

    def test_top_left(self):
        x, y = compute_overlay_position("top-left", 100, 30, 1920, 1080)
        assert x == int(1920 * OVERLAY_MARGIN_FRAC)
        assert y == int(1080 * OVERLAY_MARGIN_FRAC)

    def test_bottom_right(self):
        x, y = compute_overlay_position("bottom-right", 100, 30, 1920, 1080)
        assert x == 1920 - int(1920 * OVERLAY_MARGIN_FRAC) - 100
        assert y == 1080 - int(1080 * OVERLAY_MARGIN_FRAC) - 30

    def test_middle_center(self):
        x, y = compute_overlay_position("middle-center", 100, 30, 1920, 1080)
        assert x == (1920 - 100) // 2
        assert y == (1080 - 30) // 2

    def test_invalid_position(self):
        with pytest.raises(ValueError, match="Unknown position"):
            compute_overlay_position("upper-left", 10, 10, 100, 100)


class TestRenderLabelPatch:
    def test_returns_rgba(self):
        patch = render_label_patch("overlaycast", 24)
        assert patch.ndim == 3 and patch.shape[2] == 4

    def test_background_is_semi_transparent(self):
        patch = render_label_patch("overlaycast", 24)
        corner_alpha = patch[patch.shape[0] // 2, 2, 3]
        assert 0 < corner_alpha < 255

    def test_padding_grows_with_font(self):
        small = render_label_patch("A", 12)
        large = render_label_patch("A", 120)
        assert large.shape[0] > small.shape[0]


class TestBlendPatch:
    def test_opaque_patch_replaces_pixels(self):
        frame = np.zeros((20, 20, 3), dtype=np.uint8)
        patch = np.full((5, 5, 4), 255, dtype=np.uint8)
        blend_patch(frame, patch, 2, 2)
        assert (frame[2:7, 2:7] == 255).all()
        assert frame[0, 0].sum() == 0

    def test_transparent_patch_is_noop(self):
        frame = np.full((20, 20, 3), 77, dtype=np.uint8)
        patch = np.zeros((5, 5, 4), dtype=np.uint8)
        blend_patch(frame, patch, 0, 0)
        assert (frame == 77).all()

    def test_clamped_to_bounds(self):
        frame = np.zeros((10, 10, 3), dtype=np.uint8)
        patch = np.full((4, 4, 4), 255, dtype=np.uint8)
        blend_patch(frame, patch, 50, 50)
        assert (frame[6:10, 6:10] == 255).all()


class TestWatermark:
    def test_drawn_in_lower_right(self):
        frame = np.zeros((400, 600, 3), dtype=np.uint8)
        apply_watermark(frame, "overlaycast")
        assert frame[200:, 300:].any()
        assert not frame[:200, :300].any()


class TestTextLayers:
    def test_layers_scale_to_destination(self):
        layer = TextLayer(value="Hi", x=100, y=50, font_size=20, color="#ffffff")
        frame = np.zeros((200, 400, 3), dtype=np.uint8)
        draw_text_layers(frame, [layer], design_size=(200, 100))
        ys, xs = np.nonzero(frame.sum(axis=2))
        assert abs(xs.mean() - 200) < 10
        assert abs(ys.mean() - 100) < 10

    def test_field_values_replace_non_custom(self):
        named = TextLayer(value="Placeholder", x=50, y=50, kind=FieldKind.NAME, color="#fff")
        blank = np.zeros((100, 100, 3), dtype=np.uint8)
        frame_a = blank.copy()
        frame_b = blank.copy()
        draw_text_layers(frame_a, [named], (100, 100), {FieldKind.NAME: "Ada"})
        draw_text_layers(frame_b, [named], (100, 100), {FieldKind.NAME: "Grace Hopper"})
        assert not np.array_equal(frame_a, frame_b)

    def test_custom_ignores_field_values(self):
        custom = TextLayer(value="Fixed", x=50, y=50, color="#fff")
        frame_a = np.zeros((100, 100, 3), dtype=np.uint8)
        frame_b = frame_a.copy()
        draw_text_layers(frame_a, [custom], (100, 100))
        draw_text_layers(frame_b, [custom], (100, 100), {FieldKind.NAME: "Other"})
        assert np.array_equal(frame_a, frame_b)
