"""CLI for HD stills and print documents (certificates, badges, photos).

Usage:
    overlaycast still --background photo.jpg --overlay frame.png --format square
    overlaycast still --config attestation.yaml --pdf --name "Ada Lovelace"
    overlaycast still --config attestation.yaml --participants names.txt
    overlaycast still --background selfie.jpg --zoom 1.3 --rotation 5 --offset-y -40

With --participants (one name per line) a single multi-page PDF is
produced, one page per participant.
"""

import argparse
import asyncio
import dataclasses
import tempfile
from pathlib import Path

from PIL import Image

from .artifact import build_filename
from .config import apply_overrides, load_config
from .delivery import DeliveryStrategy, desktop_capabilities
from .hd_export import (
    PhotoTransform,
    export_batch_pdf,
    export_pdf,
    export_png,
    participant_values,
    render_still,
    watermark_required,
)
from .overlay_asset import OverlayAsset
from .quality import Orientation


def _parse_args(args=None):
    parser = argparse.ArgumentParser(
        prog="overlaycast still",
        description="Render a high-resolution still or PDF document.",
    )
    parser.add_argument("--config", default=None, help="Path to campaign YAML config")
    parser.add_argument("--background", default=None, help="Photo to place under the overlay")
    parser.add_argument("--overlay", default=None, help="Overlay image (overrides config)")
    parser.add_argument(
        "--format", default=None,
        help="a4-landscape, a4-portrait, square, badge or photo",
    )
    parser.add_argument(
        "--watermark-status", default=None,
        help="none, pending or removed (only 'removed' drops the watermark)",
    )
    parser.add_argument("--zoom", type=float, default=None, help="Photo zoom factor")
    parser.add_argument("--rotation", type=float, default=None, help="Photo rotation in degrees, clockwise")
    parser.add_argument("--offset-x", type=float, default=None, help="Photo pan, design-canvas units")
    parser.add_argument("--offset-y", type=float, default=None, help="Photo pan, design-canvas units")
    parser.add_argument("--name", default=None, help="Value for 'name' text layers")
    parser.add_argument("--participants", default=None, help="Text file, one name per line")
    parser.add_argument("--pdf", action="store_true", help="Export an A4 PDF instead of PNG")
    parser.add_argument("--output-dir", default=None, help="Where to save the result")
    parser.add_argument("--open", action="store_true", help="Open the result when done")
    return parser.parse_args(args)


def _photo_transform(parsed, configured: PhotoTransform | None) -> PhotoTransform | None:
    """Config transform with any --zoom/--rotation/--offset flags applied."""
    flags = {
        "zoom": parsed.zoom,
        "rotation": parsed.rotation,
        "offset_x": parsed.offset_x,
        "offset_y": parsed.offset_y,
    }
    flags = {k: v for k, v in flags.items() if v is not None}
    if not flags:
        return configured
    return dataclasses.replace(configured or PhotoTransform(), **flags)


def main(args=None):
    parsed = _parse_args(args)
    config = apply_overrides(
        load_config(parsed.config),
        document_format=parsed.format,
        watermark_status=parsed.watermark_status,
        output_dir=parsed.output_dir,
    )
    fmt = config["document_format"]
    orientation = Orientation.from_size(*fmt.hd_size)

    overlay = OverlayAsset(
        parsed.overlay or config["overlay_portrait"],
        parsed.overlay or config["overlay_landscape"],
    )
    asyncio.run(overlay.load([orientation]))
    handle = overlay.for_orientation(orientation)

    background = None
    if parsed.background:
        background = Image.open(parsed.background).convert("RGB")

    common = dict(
        text_layers=config["text_layers"],
        watermark_status=config["watermark_status"],
        watermark_text=config["watermark_text"],
        photo_transform=_photo_transform(parsed, config["photo_transform"]),
        photo_zone=config["photo_zone"],
    )
    w, h = fmt.hd_size
    print(f"Rendering {fmt.value} at {w}x{h}"
          f"{'' if watermark_required(config['watermark_status']) else ' (no watermark)'}")

    with tempfile.TemporaryDirectory() as work_dir:
        if parsed.participants:
            names = [
                line.strip()
                for line in Path(parsed.participants).read_text().splitlines()
                if line.strip()
            ]
            participants = [
                participant_values(name, serial=i + 1, title=config["campaign_title"])
                for i, name in enumerate(names)
            ]
            print(f"  {len(participants)} participants")
            filename = build_filename(
                config["app_name"], config["campaign_title"], fmt.value, "pdf",
            )
            artifact = export_batch_pdf(
                background, handle, fmt, common.pop("text_layers"), participants,
                work_dir, filename, **common,
            )
        else:
            values = participant_values(
                parsed.name or "", serial=1, title=config["campaign_title"],
            )
            # Blank values fall back to the layer's own placeholder text.
            values = {kind: text for kind, text in values.items() if text}
            still = render_still(background, handle, fmt, field_values=values, **common)
            ext = "pdf" if parsed.pdf else "png"
            filename = build_filename(
                config["app_name"], config["campaign_title"], fmt.value, ext,
            )
            export = export_pdf if parsed.pdf else export_png
            artifact = export(still, work_dir, filename)

        delivery = DeliveryStrategy(
            desktop_capabilities(config["output_dir"], open_after=parsed.open)
        ).deliver(artifact)

    print(f"Done: {delivery.location or artifact.suggested_filename}")


if __name__ == "__main__":
    main()
