"""CLI for applying the campaign overlay to an uploaded video or photo.

Usage:
    overlaycast export clip.mp4 --config campaign.yaml
    overlaycast export clip.mov --landscape-overlay frame-wide.png --quality 1080p
    overlaycast export photo.jpg --portrait-overlay frame.png --output-dir out/

The overlay variant and output orientation follow the media's own
dimensions.
"""

import argparse
import asyncio
import sys
import tempfile
from pathlib import Path

from .audio import AudioGraph
from .capture import CaptureSession, FormatError
from .config import apply_overrides, load_config
from .delivery import DeliveryStrategy, desktop_capabilities
from .encoder import EncoderError
from .overlay_asset import OverlayAsset
from .quality import get_profile
from .recorder import ExportError, RecordingController


def _parse_args(args=None):
    parser = argparse.ArgumentParser(
        prog="overlaycast export",
        description="Export a video or image with the campaign overlay applied.",
    )
    parser.add_argument("source", help="Path to the video or image file")
    parser.add_argument("--config", default=None, help="Path to campaign YAML config")
    parser.add_argument("--quality", default=None, help="Quality tier: 480p, 720p or 1080p")
    parser.add_argument("--portrait-overlay", default=None, help="Overlay for portrait media")
    parser.add_argument("--landscape-overlay", default=None, help="Overlay for landscape media")
    parser.add_argument("--fps", type=int, default=None, help="Output frame rate")
    parser.add_argument("--preset", default=None, help="ffmpeg encoder preset")
    parser.add_argument(
        "--monitor-gain", type=float, default=0.0,
        help="Play the soundtrack locally at this gain while exporting (default: off)",
    )
    parser.add_argument("--output-dir", default=None, help="Where to save the result")
    parser.add_argument("--open", action="store_true", help="Open the result when done")
    return parser.parse_args(args)


async def _export(config: dict, source: str, work_dir: str, monitor_gain: float):
    overlay = OverlayAsset(
        config["overlay_portrait"], config["overlay_landscape"],
        retry_interval=config["retry_interval"],
    )
    await overlay.load()
    controller = RecordingController(
        CaptureSession(), overlay, get_profile(config["quality"]),
        work_dir=work_dir,
        app_name=config["app_name"],
        campaign_title=config["campaign_title"],
        fps=config["fps"],
        codec_preferences=config["codecs"],
        audio=AudioGraph(monitor_gain=monitor_gain),
        preset=config["preset"],
    )
    try:
        artifact = await controller.process_file(source)
        for warning in controller.warnings:
            print(f"  WARN   {warning}")
        return artifact
    finally:
        controller.close()


def main(args=None):
    parsed = _parse_args(args)
    config = apply_overrides(
        load_config(parsed.config),
        quality=parsed.quality,
        overlay_portrait=parsed.portrait_overlay,
        overlay_landscape=parsed.landscape_overlay,
        fps=parsed.fps,
        preset=parsed.preset,
        output_dir=parsed.output_dir,
    )
    if not Path(parsed.source).exists():
        raise FileNotFoundError(f"Source not found: {parsed.source}")

    print(f"Exporting {parsed.source} at {get_profile(config['quality']).label}")
    with tempfile.TemporaryDirectory() as work_dir:
        try:
            artifact = asyncio.run(
                _export(config, parsed.source, work_dir, parsed.monitor_gain)
            )
        except FormatError as e:
            print(f"Unsupported file: {e}")
            sys.exit(1)
        except (EncoderError, ExportError) as e:
            print(f"Export failed: {e}")
            sys.exit(1)

        delivery = DeliveryStrategy(
            desktop_capabilities(config["output_dir"], open_after=parsed.open)
        ).deliver(artifact)

    w, h = artifact.dimensions
    print(f"Done: {delivery.location or artifact.suggested_filename} ({w}x{h})")


if __name__ == "__main__":
    main()
