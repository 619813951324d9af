"""CLI for live camera recording with the campaign overlay.

Usage:
    overlaycast record --config campaign.yaml
    overlaycast record --portrait-overlay frame.png --quality 1080p --duration 10
    overlaycast record --config campaign.yaml --orientation landscape --preview --open

Counts down, records until --duration elapses (or the configured
maximum is reached, or Ctrl-C), then saves the video to --output-dir.
"""

import argparse
import asyncio
import sys
import tempfile

from .audio import AudioGraph
from .capture import AccessError, CameraConstraints, CaptureSession, cv2
from .config import apply_overrides, load_config
from .delivery import DeliveryStrategy, desktop_capabilities
from .encoder import EncoderError
from .overlay_asset import OverlayAsset
from .quality import get_profile
from .recorder import ExportError, RecordingController

_METER_WIDTH = 20


def _parse_args(args=None):
    parser = argparse.ArgumentParser(
        prog="overlaycast record",
        description="Record the camera with the campaign overlay applied.",
    )
    parser.add_argument("--config", default=None, help="Path to campaign YAML config")
    parser.add_argument("--quality", default=None, help="Quality tier: 480p, 720p or 1080p")
    parser.add_argument("--orientation", default=None, help="portrait or landscape")
    parser.add_argument("--portrait-overlay", default=None, help="Overlay for portrait output")
    parser.add_argument("--landscape-overlay", default=None, help="Overlay for landscape output")
    parser.add_argument(
        "--duration", type=float, default=None,
        help="Stop after this many seconds (default: record until the maximum or Ctrl-C)",
    )
    parser.add_argument("--countdown", type=int, default=None, help="Countdown seconds")
    parser.add_argument("--device", default=None, help="Camera index or stream URL")
    parser.add_argument("--no-audio", action="store_true", help="Record without microphone")
    parser.add_argument("--preview", action="store_true", help="Show a live preview window")
    parser.add_argument("--output-dir", default=None, help="Where to save the recording")
    parser.add_argument("--open", action="store_true", help="Open the result when done")
    return parser.parse_args(args)


def _show_preview(frame, level):
    """Display a frame with an input level bar in an OpenCV window."""
    bgr = frame[:, :, ::-1].copy()
    bar_w = int(bgr.shape[1] * 0.3 * level)
    cv2.rectangle(bgr, (10, 10), (10 + bar_w, 24), (80, 220, 80), -1)
    cv2.imshow("overlaycast", bgr)
    cv2.waitKey(1)


def _print_level(frame, level):
    filled = int(round(level * _METER_WIDTH))
    sys.stdout.write("\r  mic [" + "#" * filled + " " * (_METER_WIDTH - filled) + "]")
    sys.stdout.flush()


async def _record(config: dict, parsed, work_dir: str):
    session = CaptureSession(orientation=config["orientation"])
    overlay = OverlayAsset(
        config["overlay_portrait"], config["overlay_landscape"],
        retry_interval=config["retry_interval"],
    )
    await overlay.load()

    device = config["device"]
    if isinstance(device, str) and device.isdigit():
        device = int(device)
    await session.start_camera(CameraConstraints(
        orientation=config["orientation"],
        device=device,
        audio=config["audio"],
        sample_rate=config["sample_rate"],
    ))

    controller = RecordingController(
        session, overlay, get_profile(config["quality"]),
        work_dir=work_dir,
        app_name=config["app_name"],
        campaign_title=config["campaign_title"],
        fps=config["fps"],
        countdown_seconds=config["countdown"],
        max_duration=config["max_duration"],
        codec_preferences=config["codecs"],
        audio=AudioGraph(),
        preset=config["preset"],
        on_countdown=lambda n: print(f"  {n}..."),
    )
    try:
        controller.start_preview(_show_preview if parsed.preview else _print_level)
        await controller.start_countdown()
        print("  REC")
        if parsed.duration is not None:
            await asyncio.sleep(min(parsed.duration, config["max_duration"]))
            artifact = await controller.stop()
        else:
            artifact = await controller.wait()
        print()
        for warning in controller.warnings:
            print(f"  WARN   {warning}")
        return artifact
    finally:
        controller.close()
        if parsed.preview:
            cv2.destroyAllWindows()


def main(args=None):
    parsed = _parse_args(args)
    config = apply_overrides(
        load_config(parsed.config),
        quality=parsed.quality,
        orientation=parsed.orientation,
        overlay_portrait=parsed.portrait_overlay,
        overlay_landscape=parsed.landscape_overlay,
        countdown=parsed.countdown,
        device=parsed.device,
        output_dir=parsed.output_dir,
        audio=False if parsed.no_audio else None,
    )
    if parsed.preview and cv2 is None:
        print("Live preview requires OpenCV: pip install overlaycast[camera]")
        sys.exit(1)

    profile = get_profile(config["quality"])
    print(f"Recording {profile.label}, {config['orientation'].value}")

    with tempfile.TemporaryDirectory() as work_dir:
        try:
            artifact = asyncio.run(_record(config, parsed, work_dir))
        except AccessError as e:
            print(f"Camera unavailable: {e}")
            sys.exit(1)
        except (EncoderError, ExportError) as e:
            print(f"Recording failed: {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            print("\nCancelled.")
            sys.exit(130)

        if artifact is None:
            print("No recording produced.")
            sys.exit(1)
        delivery = DeliveryStrategy(
            desktop_capabilities(config["output_dir"], open_after=parsed.open)
        ).deliver(artifact)

    print(f"Done: {delivery.location or artifact.suggested_filename} ({delivery.method.value})")


if __name__ == "__main__":
    main()
