"""Per-frame composition: letterboxed source + overlay + optional text.

Pure with respect to its inputs: the same frame, overlay and destination
size always produce the same pixels. The destination surface is cleared
to opaque black before every draw, so letterbox bands never carry
stale content from a previous frame.
"""

from dataclasses import dataclass

import numpy as np
from PIL import Image

from .overlay_asset import AssetHandle
from .overlays import FieldKind, TextLayer, apply_watermark, draw_text_layers


@dataclass(frozen=True)
class Placement:
    """Where the scaled source lands on the destination surface."""

    x: int
    y: int
    width: int
    height: int


def compute_letterbox(
    src_w: int, src_h: int, dst_w: int, dst_h: int,
) -> Placement:
    """Fit the source inside the destination, preserving aspect ratio.

    A source wider than the destination fits the width and is centered
    vertically; otherwise it fits the height and is centered horizontally.
    """
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Source dimensions must be positive, got {src_w}x{src_h}")
    src_aspect = src_w / src_h
    dst_aspect = dst_w / dst_h

    if src_aspect > dst_aspect:
        width = dst_w
        height = min(dst_h, max(1, round(dst_w / src_aspect)))
        return Placement(0, (dst_h - height) // 2, width, height)

    height = dst_h
    width = min(dst_w, max(1, round(dst_h * src_aspect)))
    return Placement((dst_w - width) // 2, 0, width, height)


class Surface:
    """A reusable RGB destination buffer."""

    def __init__(self, size: tuple[int, int]):
        self.size = size
        self.pixels = np.zeros((size[1], size[0], 3), dtype=np.uint8)

    def clear(self) -> None:
        self.pixels.fill(0)


def composite_frame(
    frame: np.ndarray | None,
    overlay: AssetHandle | None,
    dest_size: tuple[int, int],
    *,
    surface: Surface | None = None,
    text_layers: list[TextLayer] | None = None,
    design_size: tuple[int, int] | None = None,
    field_values: dict[FieldKind, str] | None = None,
    watermark: str | None = None,
) -> np.ndarray:
    """Compose one output frame.

    Args:
        frame: Source RGB frame (h, w, 3). None renders bands/overlay only.
        overlay: Overlay for the destination's orientation, or None.
        dest_size: (width, height) of the output.
        surface: Reused destination buffer; allocated when omitted or
            when its size differs from dest_size.
        text_layers: Document text layers (stills only).
        design_size: Canvas size the text layers were authored on.
            Defaults to dest_size (no scaling).
        field_values: Values for non-custom text layers.
        watermark: Watermark label text, or None for no watermark.

    Returns:
        The surface's pixel array, shape (h, w, 3), dtype uint8.
    """
    if surface is None or surface.size != dest_size:
        surface = Surface(dest_size)
    surface.clear()
    out = surface.pixels
    dst_w, dst_h = dest_size

    if frame is not None:
        src_h, src_w = frame.shape[:2]
        p = compute_letterbox(src_w, src_h, dst_w, dst_h)
        if (p.width, p.height) == (src_w, src_h):
            scaled = frame[:, :, :3]
        else:
            scaled = np.asarray(
                Image.fromarray(frame[:, :, :3]).resize((p.width, p.height), Image.BILINEAR)
            )
        out[p.y:p.y + p.height, p.x:p.x + p.width] = scaled

    if overlay is not None:
        premult, inv_alpha = overlay.blend_planes(dest_size)
        blended = out.astype(np.float32)
        blended *= inv_alpha
        blended += premult
        np.clip(blended, 0, 255, out=blended)
        out[:] = blended.astype(np.uint8)

    if text_layers:
        draw_text_layers(out, text_layers, design_size or dest_size, field_values)

    if watermark:
        apply_watermark(out, watermark)

    return out
