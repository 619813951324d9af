"""HD still and document export.

Runs the frame compositor once at print resolution (300 DPI) for the
chosen document format, adds text layers and, unless the watermark has
been paid off, the watermark label. A user photo can be zoomed, rotated
and panned, and optionally clipped to a circular or rectangular zone. Results are saved as PNG or as an
A4 PDF page with the raster centered inside a 10 mm margin.
"""

import datetime
import logging
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import numpy as np
from PIL import Image, ImageChops, ImageDraw

from .artifact import ExportArtifact
from .compositor import composite_frame
from .overlay_asset import AssetHandle
from .overlays import FieldKind, TextLayer
from .quality import Orientation

logger = logging.getLogger(__name__)

PDF_DPI = 300
A4_MM = (210, 297)
PDF_MARGIN_MM = 10
DEFAULT_WATERMARK_TEXT = "overlaycast"


class WatermarkStatus(Enum):
    NONE = "none"
    PENDING = "pending"
    REMOVED = "removed"

    @classmethod
    def parse(cls, value) -> "WatermarkStatus | None":
        """Map a raw status value to a member; unknown values give None."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


def watermark_required(status) -> bool:
    """True unless the status is exactly 'removed'.

    Missing or unrecognized statuses keep the watermark.
    """
    return WatermarkStatus.parse(status) is not WatermarkStatus.REMOVED


class DocumentFormat(Enum):
    A4_LANDSCAPE = "a4-landscape"
    A4_PORTRAIT = "a4-portrait"
    SQUARE = "square"
    BADGE = "badge"
    PHOTO = "photo"

    @property
    def hd_size(self) -> tuple[int, int]:
        return HD_SIZES[self]

    @property
    def design_size(self) -> tuple[int, int]:
        """Canvas size text layers are authored on."""
        return DESIGN_SIZES[self]

    @classmethod
    def parse(cls, value) -> "DocumentFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown document format: '{value}'. Valid: {sorted(f.value for f in cls)}"
            ) from None


HD_SIZES = {
    DocumentFormat.A4_LANDSCAPE: (3508, 2480),
    DocumentFormat.A4_PORTRAIT: (2480, 3508),
    DocumentFormat.SQUARE: (2400, 2400),
    DocumentFormat.BADGE: (2000, 1200),
    DocumentFormat.PHOTO: (2400, 2400),
}

DESIGN_SIZES = {
    DocumentFormat.A4_LANDSCAPE: (800, 566),
    DocumentFormat.A4_PORTRAIT: (566, 800),
    DocumentFormat.SQUARE: (600, 600),
    DocumentFormat.BADGE: (500, 300),
    DocumentFormat.PHOTO: (400, 400),
}


# ── User photo placement ─────────────────────────────────────────


VALID_ZONE_SHAPES = {"circle", "rect"}
ZONE_CORNER_RADIUS = 10 / 540    # rounded rect corners, as a fraction of canvas width


@dataclass(frozen=True)
class PhotoTransform:
    """User adjustments to a photo: zoom, clockwise rotation, pan.

    Offsets are in design-canvas units, like text layer positions.
    """

    zoom: float = 1.0
    rotation: float = 0.0
    offset_x: float = 0.0
    offset_y: float = 0.0


@dataclass(frozen=True)
class PhotoZone:
    """Where the photo shows through: center and size in percent of the canvas."""

    shape: str = "circle"
    x: float = 50.0
    y: float = 50.0
    width: float = 30.0
    height: float = 30.0

    def box(self, canvas_size: tuple[int, int]) -> tuple[float, float, float, float]:
        """(center_x, center_y, width, height) in pixels."""
        w, h = canvas_size
        return (self.x / 100 * w, self.y / 100 * h,
                self.width / 100 * w, self.height / 100 * h)


def _zone_mask(zone: PhotoZone, canvas_size: tuple[int, int]) -> Image.Image:
    cx, cy, zw, zh = zone.box(canvas_size)
    mask = Image.new("L", canvas_size, 0)
    draw = ImageDraw.Draw(mask)
    if zone.shape == "circle":
        r = min(zw, zh) / 2
        draw.ellipse([cx - r, cy - r, cx + r, cy + r], fill=255)
    else:
        radius = ZONE_CORNER_RADIUS * canvas_size[0]
        draw.rounded_rectangle(
            [cx - zw / 2, cy - zh / 2, cx + zw / 2, cy + zh / 2], radius=radius, fill=255,
        )
    return mask


def place_photo(
    photo: Image.Image,
    canvas_size: tuple[int, int],
    transform: PhotoTransform | None = None,
    zone: PhotoZone | None = None,
    design_size: tuple[int, int] | None = None,
) -> np.ndarray:
    """Cover-fit *photo* into the canvas (or zone), then zoom, rotate and pan.

    Without a zone the photo covers the whole canvas. With one it covers
    the zone's box and is clipped to the zone's circle or rounded rect.
    Uncovered pixels are black.

    Returns:
        RGB array of shape (h, w, 3).
    """
    transform = transform or PhotoTransform()
    if transform.zoom <= 0:
        raise ValueError(f"Photo zoom must be > 0, got {transform.zoom}")
    canvas_w, canvas_h = canvas_size
    design_w, design_h = design_size or canvas_size
    sx, sy = canvas_w / design_w, canvas_h / design_h

    if zone is not None:
        cx, cy, box_w, box_h = zone.box(canvas_size)
    else:
        cx, cy, box_w, box_h = canvas_w / 2, canvas_h / 2, canvas_w, canvas_h

    src = photo.convert("RGBA")
    scale = max(box_w / src.width, box_h / src.height) * transform.zoom
    scaled = src.resize(
        (max(1, round(src.width * scale)), max(1, round(src.height * scale))),
        Image.LANCZOS,
    )
    if transform.rotation:
        # Pillow rotates counter-clockwise.
        scaled = scaled.rotate(-transform.rotation, resample=Image.BICUBIC, expand=True)

    # The pan is applied in the rotated, zoomed frame of the photo.
    theta = math.radians(transform.rotation)
    ox, oy = transform.offset_x * sx * transform.zoom, transform.offset_y * sy * transform.zoom
    dx = ox * math.cos(theta) - oy * math.sin(theta)
    dy = ox * math.sin(theta) + oy * math.cos(theta)

    layer = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
    x = round(cx + dx - scaled.width / 2)
    y = round(cy + dy - scaled.height / 2)
    layer.paste(scaled, (x, y), scaled)
    if zone is not None:
        layer.putalpha(ImageChops.multiply(layer.getchannel("A"), _zone_mask(zone, canvas_size)))

    canvas = Image.new("RGB", canvas_size, (0, 0, 0))
    canvas.paste(layer, (0, 0), layer)
    return np.asarray(canvas)


# ── Rendering ────────────────────────────────────────────────────


def render_still(
    background: Image.Image | np.ndarray | None,
    overlay: AssetHandle | None,
    fmt: DocumentFormat,
    *,
    text_layers: list[TextLayer] | None = None,
    field_values: dict[FieldKind, str] | None = None,
    watermark_status=None,
    watermark_text: str = DEFAULT_WATERMARK_TEXT,
    size: tuple[int, int] | None = None,
    photo_transform: PhotoTransform | None = None,
    photo_zone: PhotoZone | None = None,
) -> Image.Image:
    """Compose one high-resolution still.

    Args:
        background: Photo or frame under the overlay. Letterboxed as is,
            or cover-fitted when a photo transform or zone is given.
        overlay: Overlay handle, or None.
        fmt: Document format; decides the output and design sizes.
        text_layers: Positioned text fields on the design canvas.
        field_values: Values for NAME/DATE/SERIAL/TITLE layers.
        watermark_status: Payment status; see watermark_required().
        watermark_text: Label used when the watermark is drawn.
        size: Override the format's HD size.
        photo_transform: Zoom, rotation and pan of the background photo.
        photo_zone: Clip the photo to a circle or rounded rect.

    Returns:
        RGB Pillow image.
    """
    dest_size = size or fmt.hd_size
    if background is not None and (photo_transform is not None or photo_zone is not None):
        if isinstance(background, np.ndarray):
            background = Image.fromarray(background)
        background = place_photo(
            background, dest_size, photo_transform, photo_zone, fmt.design_size,
        )
    elif isinstance(background, Image.Image):
        background = np.asarray(background.convert("RGB"))
    pixels = composite_frame(
        background, overlay, dest_size,
        text_layers=text_layers,
        design_size=fmt.design_size,
        field_values=field_values,
        watermark=watermark_text if watermark_required(watermark_status) else None,
    )
    return Image.fromarray(pixels.copy())


def participant_values(
    name: str,
    serial: int | str | None = None,
    title: str = "",
    date: datetime.date | None = None,
) -> dict[FieldKind, str]:
    date = date or datetime.date.today()
    values = {
        FieldKind.NAME: name,
        FieldKind.DATE: date.strftime("%d/%m/%Y"),
        FieldKind.TITLE: title,
    }
    if serial is not None:
        values[FieldKind.SERIAL] = f"{serial:04d}" if isinstance(serial, int) else str(serial)
    return values


# ── PDF page assembly ────────────────────────────────────────────


def mm_to_px(mm: float, dpi: int = PDF_DPI) -> int:
    return round(mm / 25.4 * dpi)


def layout_pdf_page(
    image_size: tuple[int, int], dpi: int = PDF_DPI,
) -> tuple[tuple[int, int], tuple[int, int, int, int]]:
    """Place an image on an A4 page.

    The page is landscape when the image is wider than tall. The image
    keeps its aspect ratio inside a PDF_MARGIN_MM margin and is centered.

    Returns:
        ((page_w, page_h), (x, y, w, h)) in pixels at *dpi*.
    """
    short, long_ = mm_to_px(A4_MM[0], dpi), mm_to_px(A4_MM[1], dpi)
    img_w, img_h = image_size
    page_w, page_h = (long_, short) if img_w > img_h else (short, long_)
    margin = mm_to_px(PDF_MARGIN_MM, dpi)
    avail_w, avail_h = page_w - 2 * margin, page_h - 2 * margin

    scale = min(avail_w / img_w, avail_h / img_h)
    w, h = round(img_w * scale), round(img_h * scale)
    x, y = (page_w - w) // 2, (page_h - h) // 2
    return (page_w, page_h), (x, y, w, h)


def compose_pdf_page(image: Image.Image, dpi: int = PDF_DPI) -> Image.Image:
    (page_w, page_h), (x, y, w, h) = layout_pdf_page(image.size, dpi)
    page = Image.new("RGB", (page_w, page_h), (255, 255, 255))
    placed = image.convert("RGB")
    if placed.size != (w, h):
        placed = placed.resize((w, h), Image.LANCZOS)
    page.paste(placed, (x, y))
    return page


# ── Artifacts ────────────────────────────────────────────────────


def export_png(image: Image.Image, work_dir: str | Path, filename: str) -> ExportArtifact:
    path = Path(work_dir) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, "PNG", dpi=(PDF_DPI, PDF_DPI))
    return ExportArtifact(
        path=path,
        mime_type="image/png",
        suggested_filename=filename,
        dimensions=image.size,
        orientation_label=Orientation.from_size(*image.size).value,
    )


def export_pdf(image: Image.Image, work_dir: str | Path, filename: str) -> ExportArtifact:
    """Save *image* as a single-page A4 PDF at 300 DPI."""
    return _save_pdf([compose_pdf_page(image)], work_dir, filename)


def export_batch_pdf(
    background,
    overlay: AssetHandle | None,
    fmt: DocumentFormat,
    text_layers: list[TextLayer],
    participants: list[dict[FieldKind, str]],
    work_dir: str | Path,
    filename: str,
    *,
    watermark_status=None,
    watermark_text: str = DEFAULT_WATERMARK_TEXT,
    photo_transform: PhotoTransform | None = None,
    photo_zone: PhotoZone | None = None,
) -> ExportArtifact:
    """Render one page per participant into a single multi-page PDF."""
    if not participants:
        raise ValueError("Batch export needs at least one participant")
    pages = []
    for values in participants:
        still = render_still(
            background, overlay, fmt,
            text_layers=text_layers,
            field_values=values,
            watermark_status=watermark_status,
            watermark_text=watermark_text,
            photo_transform=photo_transform,
            photo_zone=photo_zone,
        )
        pages.append(compose_pdf_page(still))
    logger.info("Rendered %d document pages", len(pages))
    return _save_pdf(pages, work_dir, filename)


def _save_pdf(pages: list[Image.Image], work_dir, filename: str) -> ExportArtifact:
    path = Path(work_dir) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    pages[0].save(
        path, "PDF", resolution=float(PDF_DPI),
        save_all=True, append_images=pages[1:],
    )
    return ExportArtifact(
        path=path,
        mime_type="application/pdf",
        suggested_filename=filename,
        dimensions=pages[0].size,
        orientation_label=Orientation.from_size(*pages[0].size).value,
    )
