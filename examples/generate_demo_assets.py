#!/usr/bin/env python3
"""Generate demo overlays, clips and a campaign config for overlaycast.

Creates in examples/demo-assets/:
  - frame-portrait.png / frame-landscape.png: transparent frames with a
    colored border and a title banner, one per orientation.
  - clip-landscape.mp4 / clip-portrait.mp4: short color clips with a
    moving marker and a tone soundtrack.
  - campaign.yaml: config pointing at the frames.

Usage:
    python examples/generate_demo_assets.py
    # Then export:
    overlaycast export examples/demo-assets/clip-landscape.mp4 \
        --config examples/demo-assets/campaign.yaml --output-dir examples/demo-renders/
"""

import numpy as np
from moviepy import AudioClip, VideoClip
from pathlib import Path
from PIL import Image, ImageDraw, ImageFont

OUTPUT_DIR = Path(__file__).resolve().parent / "demo-assets"
FPS = 30
BORDER_COLOR = (177, 19, 77, 255)
TITLE = "Summer Fest 2026"

FRAMES = [
    ("frame-portrait.png", (720, 1280)),
    ("frame-landscape.png", (1280, 720)),
]

# name, size, background color, duration
CLIPS = [
    ("clip-landscape.mp4", (640, 360), (60, 60, 180), 3.0),
    ("clip-portrait.mp4", (360, 640), (60, 160, 60), 3.0),
]

CONFIG = f"""\
paths:
  assets: "{OUTPUT_DIR}"
app:
  name: overlaycast
campaign:
  title: "{TITLE}"
capture:
  quality: 720p
  orientation: portrait
overlay:
  portrait: "${{assets}}/frame-portrait.png"
  landscape: "${{assets}}/frame-landscape.png"
export:
  output_dir: demo-renders
  format: square
  watermark_status: pending
text_layers:
  - {{value: "Participant", kind: name, x: 300, y: 520, font_size: 36, color: "#ffffff", weight: bold}}
"""


def _load_font(size: int):
    try:
        return ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", size
        )
    except OSError:
        return ImageFont.load_default()


def _make_frame(size: tuple[int, int]) -> Image.Image:
    """Transparent center, solid border, title banner along the bottom."""
    w, h = size
    border = max(w, h) // 40
    banner_h = h // 10
    img = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rectangle([(0, 0), (w - 1, h - 1)], outline=BORDER_COLOR, width=border)
    draw.rectangle([(0, h - banner_h), (w, h)], fill=BORDER_COLOR)
    font = _load_font(banner_h // 2)
    bbox = draw.textbbox((0, 0), TITLE, font=font)
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    draw.text(
        ((w - tw) / 2 - bbox[0], h - banner_h + (banner_h - th) / 2 - bbox[1]),
        TITLE,
        fill=(255, 255, 255, 255),
        font=font,
    )
    return img


def _make_clip(size, color, duration) -> VideoClip:
    w, h = size
    marker = max(w, h) // 12

    def frame(t):
        img = np.empty((h, w, 3), dtype=np.uint8)
        img[:] = color
        x = int((w - marker) * (t / duration))
        img[h // 2 - marker // 2:h // 2 + marker // 2, x:x + marker] = 255
        return img

    tone = AudioClip(
        lambda t: 0.2 * np.sin(2 * np.pi * 440 * t), duration=duration, fps=44100,
    )
    return VideoClip(frame, duration=duration).with_audio(tone)


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    for name, size in FRAMES:
        _make_frame(size).save(OUTPUT_DIR / name)
        print(f"  wrote {name} {size[0]}x{size[1]}")

    for name, size, color, duration in CLIPS:
        out = OUTPUT_DIR / name
        if out.exists():
            print(f"  skip {name} (exists)")
            continue
        _make_clip(size, color, duration).write_videofile(
            str(out), fps=FPS, codec="libx264", audio_codec="aac", logger=None,
        )
        print(f"  wrote {name} ({duration}s)")

    (OUTPUT_DIR / "campaign.yaml").write_text(CONFIG)
    print(f"\nDone. Assets in {OUTPUT_DIR}")


if __name__ == "__main__":
    main()
