"""Text layers and the watermark label.

Two kinds of text end up on exported frames:
  - Text layers: positioned document fields (participant name, date,
    serial...) authored on a design canvas and drawn anchor-centered,
    scaled to the destination size.
  - Watermark: a semi-transparent label pinned to a 3x3 grid position
    (lower-right by default), drawn on a dark rounded-rect patch.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np
from PIL import Image, ImageDraw

from .common import draw_centered_text, load_font, resolve_color


# ── Constants ────────────────────────────────────────────────────

OVERLAY_MARGIN_FRAC = 0.03       # margin from edges as fraction of frame dimension
OVERLAY_BG_ALPHA = 153           # ~60% opacity (0.6 * 255)
WATERMARK_TEXT_ALPHA = 204       # ~80% opacity
WATERMARK_HEIGHT_FRAC = 0.03     # watermark font size as fraction of frame height
OVERLAY_PADDING_X = 12           # minimum horizontal padding inside the patch
OVERLAY_PADDING_Y = 6            # minimum vertical padding inside the patch
OVERLAY_BORDER_RADIUS = 6        # minimum rounded corner radius

VALID_POSITIONS = {
    f"{v}-{h}"
    for v in ("top", "middle", "bottom")
    for h in ("left", "center", "right")
}


class FieldKind(Enum):
    """What a text layer displays. CUSTOM uses the layer's literal value."""

    NAME = "name"
    DATE = "date"
    SERIAL = "serial"
    TITLE = "title"
    CUSTOM = "custom"


@dataclass
class TextLayer:
    """A text field positioned on the design canvas (center anchor)."""

    value: str
    x: float
    y: float
    font_size: float = 24
    color: str = "#000000"
    weight: str = "normal"
    kind: FieldKind = FieldKind.CUSTOM
    label: str = ""

    @property
    def bold(self) -> bool:
        return self.weight in ("bold", "700", "800", "900")


# ── Position computation ─────────────────────────────────────────


def compute_overlay_position(
    position: str,
    patch_w: int,
    patch_h: int,
    frame_w: int,
    frame_h: int,
) -> tuple[int, int]:
    """Compute (x, y) for a patch on a 3x3 grid.

    Margin is OVERLAY_MARGIN_FRAC of the frame dimension from each edge.

    Args:
        position: One of the 9 grid positions (e.g. "bottom-right").
        patch_w: Rendered patch width.
        patch_h: Rendered patch height.
        frame_w: Target frame width.
        frame_h: Target frame height.

    Returns:
        (x, y) top-left corner for placing the patch.
    """
    if position not in VALID_POSITIONS:
        raise ValueError(
            f"Unknown position: '{position}'. Valid: {sorted(VALID_POSITIONS)}"
        )
    margin_x = int(frame_w * OVERLAY_MARGIN_FRAC)
    margin_y = int(frame_h * OVERLAY_MARGIN_FRAC)

    vert, horiz = position.split("-", 1)
    if horiz == "left":
        x = margin_x
    elif horiz == "right":
        x = frame_w - margin_x - patch_w
    else:  # center
        x = (frame_w - patch_w) // 2

    if vert == "top":
        y = margin_y
    elif vert == "bottom":
        y = frame_h - margin_y - patch_h
    else:  # middle
        y = (frame_h - patch_h) // 2

    return x, y


# ── Patch rendering ──────────────────────────────────────────────


def render_label_patch(
    text: str,
    font_size: int,
    color: tuple[int, int, int] = (255, 255, 255),
    text_alpha: int = WATERMARK_TEXT_ALPHA,
    bg_alpha: int = OVERLAY_BG_ALPHA,
) -> np.ndarray:
    """Render text on a semi-transparent dark rounded rect.

    Padding and corner radius grow with the font so the label keeps its
    proportions on print-resolution canvases.

    Returns:
        numpy array of shape (h, w, 4), dtype uint8 (RGBA).
    """
    font = load_font(font_size)
    pad_x = max(OVERLAY_PADDING_X, font_size // 2)
    pad_y = max(OVERLAY_PADDING_Y, font_size // 4)
    radius = max(OVERLAY_BORDER_RADIUS, font_size // 3)

    draw_tmp = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    bbox = draw_tmp.textbbox((0, 0), text, font=font)
    text_w = bbox[2] - bbox[0]
    text_h = bbox[3] - bbox[1]

    patch_w = text_w + 2 * pad_x
    patch_h = text_h + 2 * pad_y

    img = Image.new("RGBA", (patch_w, patch_h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle(
        [(0, 0), (patch_w - 1, patch_h - 1)],
        radius=radius,
        fill=(0, 0, 0, bg_alpha),
    )
    draw.text((pad_x - bbox[0], pad_y - bbox[1]), text, fill=(*color, text_alpha), font=font)
    return np.array(img)


def blend_patch(frame: np.ndarray, patch: np.ndarray, x: int, y: int) -> None:
    """Alpha-blend an RGBA patch onto an RGB frame in place (clamped to bounds)."""
    frame_h, frame_w = frame.shape[:2]
    patch_h, patch_w = patch.shape[:2]
    x = max(0, min(x, frame_w - patch_w))
    y = max(0, min(y, frame_h - patch_h))
    patch = patch[: frame_h - y, : frame_w - x]
    patch_h, patch_w = patch.shape[:2]

    alpha = patch[:, :, 3:4].astype(np.float32) / 255.0
    rgb = patch[:, :, :3].astype(np.float32)
    dest = frame[y:y + patch_h, x:x + patch_w].astype(np.float32)
    blended = dest * (1 - alpha) + rgb * alpha
    frame[y:y + patch_h, x:x + patch_w] = blended.astype(np.uint8)


# ── Frame-level drawing ──────────────────────────────────────────


def apply_watermark(
    frame: np.ndarray, text: str, position: str = "bottom-right",
) -> None:
    """Draw the watermark label onto *frame* in place."""
    frame_h, frame_w = frame.shape[:2]
    font_size = max(12, int(frame_h * WATERMARK_HEIGHT_FRAC))
    patch = render_label_patch(text, font_size)
    x, y = compute_overlay_position(
        position, patch.shape[1], patch.shape[0], frame_w, frame_h,
    )
    blend_patch(frame, patch, x, y)


def draw_text_layers(
    frame: np.ndarray,
    layers: list[TextLayer],
    design_size: tuple[int, int],
    values: dict[FieldKind, str] | None = None,
) -> None:
    """Draw text layers onto *frame* in place.

    Layer coordinates and font sizes are in design-canvas units and are
    scaled by dest/design per axis (font size follows the x scale).
    Non-custom layers take their text from *values* when present.
    """
    if not layers:
        return
    frame_h, frame_w = frame.shape[:2]
    scale_x = frame_w / design_size[0]
    scale_y = frame_h / design_size[1]
    values = values or {}

    img = Image.fromarray(frame)
    draw = ImageDraw.Draw(img)
    for layer in layers:
        text = values.get(layer.kind, layer.value) if layer.kind is not FieldKind.CUSTOM else layer.value
        if not text:
            continue
        font = load_font(round(layer.font_size * scale_x), bold=layer.bold)
        draw_centered_text(
            draw, text, (layer.x * scale_x, layer.y * scale_y), font,
            resolve_color(layer.color),
        )
    frame[:] = np.asarray(img)
