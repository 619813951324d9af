"""overlaycast.common — shared drawing utilities.

Contains: color parsing, path variable resolution, font loading and
text measurement. Used by the compositor, the still exporter and the
config loader.
"""

import re
from pathlib import Path

from PIL import ImageDraw, ImageFont


# ── Font paths ─────────────────────────────────────────────────────
# Inter preferred for event branding, DejaVu Sans as fallback.

FONT_PATHS = [
    Path.home() / ".local/share/fonts/Inter.ttc",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]

BOLD_FONT_PATHS = [
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
]


# ── Color utilities ────────────────────────────────────────────────

def parse_hex_color(hex_str: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB', 'RRGGBB' or '#RGB' string to (R, G, B) tuple."""
    hex_str = hex_str.lstrip("#")
    if len(hex_str) == 3:
        hex_str = "".join(c * 2 for c in hex_str)
    if len(hex_str) != 6 or not all(c in "0123456789abcdefABCDEF" for c in hex_str):
        raise ValueError(f"Invalid hex color: '#{hex_str}'")
    return (int(hex_str[0:2], 16), int(hex_str[2:4], 16), int(hex_str[4:6], 16))


def resolve_color(
    value: str | tuple | list, palette: dict[str, tuple[int, int, int]] | None = None,
) -> tuple[int, int, int]:
    """Resolve a color reference — palette key, inline hex, or RGB triple.

    Palette keys are tried first. Otherwise the value is parsed as hex.
    Raises ValueError for anything else.
    """
    if isinstance(value, (tuple, list)):
        if len(value) != 3:
            raise ValueError(f"RGB color must have 3 components, got {value}")
        return tuple(int(c) for c in value)
    if palette and value in palette:
        return palette[value]
    try:
        return parse_hex_color(value)
    except ValueError:
        raise ValueError(
            f"Unknown color: '{value}'. Not in palette and not a hex value."
        ) from None


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return paths[key]
    return re.sub(r"\$\{(\w+)\}", _replace, text)


# ── Font loading ───────────────────────────────────────────────────

def load_font(
    size: int, bold: bool = False,
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load Inter (or fallback) at the given size.

    Inter.ttc has no bold face reachable by index, so bold tries a
    dedicated bold file first and otherwise bumps the size slightly.
    """
    size = max(1, int(size))
    if bold:
        for font_path in BOLD_FONT_PATHS:
            if font_path.exists():
                try:
                    return ImageFont.truetype(str(font_path), size=size)
                except OSError:
                    continue
        size += max(2, size // 12)
    for font_path in FONT_PATHS:
        if font_path.exists():
            try:
                return ImageFont.truetype(str(font_path), size=size, index=0)
            except (OSError, IndexError):
                continue
    # Last resort: Pillow's bundled default font.
    return ImageFont.load_default(size=size)


# ── Text measurement ───────────────────────────────────────────────

def measure_text(draw: ImageDraw.ImageDraw, text: str, font) -> tuple[int, int, int, int]:
    """Return (width, height, x_offset, y_offset) of text's ink bounds."""
    bbox = draw.textbbox((0, 0), text, font=font)
    return bbox[2] - bbox[0], bbox[3] - bbox[1], bbox[0], bbox[1]


def draw_centered_text(
    draw: ImageDraw.ImageDraw,
    text: str,
    center: tuple[float, float],
    font,
    fill: tuple[int, ...],
) -> None:
    """Draw text so that its ink box is centered on *center*."""
    w, h, ox, oy = measure_text(draw, text, font)
    x = center[0] - w / 2 - ox
    y = center[1] - h / 2 - oy
    draw.text((x, y), text, fill=fill, font=font)
