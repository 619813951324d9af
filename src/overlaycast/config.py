"""Configuration loader — campaign, capture and export settings from YAML.

Every key is optional; missing keys take the defaults below. String
paths and URIs may use ${name} variables from a top-level `paths:` map.

Config schema:
  paths:
    assets: "/data/campaign"
  app:
    name: overlaycast
  campaign:
    title: "Summer Fest 2026"
  capture:
    quality: 720p            # 480p | 720p | 1080p
    orientation: portrait    # portrait | landscape
    fps: 30
    countdown: 3
    max_duration: 60
    audio: true
    device: 0
    sample_rate: 48000
    preset: medium
  overlay:
    portrait: "${assets}/frame-portrait.png"
    landscape: "https://cdn.example.com/frame-landscape.png"
    retry_interval: 1.0
  codecs:                    # tried in order
    - {mime: video/mp4, extension: mp4, video: libx264, audio: aac}
  export:
    output_dir: exports
    format: a4-landscape     # a4-landscape | a4-portrait | square | badge | photo
    watermark_status: none   # none | pending | removed
    watermark_text: overlaycast
    photo:                   # user photo adjustments for stills
      zoom: 1.2
      rotation: 0            # degrees, clockwise
      offset_x: 0            # design-canvas units
      offset_y: -20
    photo_zone:              # optional; clips the photo
      shape: circle          # circle | rect
      x: 50                  # center, percent of the canvas
      y: 45
      width: 40              # percent of the canvas
      height: 40
  text_layers:
    - {value: "Participant", kind: name, x: 400, y: 300, font_size: 32,
       color: "#1a1a1a", weight: bold}
"""

from pathlib import Path

import yaml

from .codecs import DEFAULT_CODEC_PREFERENCES, parse_codec_preferences
from .common import resolve_color, resolve_path_vars
from .hd_export import (
    DEFAULT_WATERMARK_TEXT,
    VALID_ZONE_SHAPES,
    DocumentFormat,
    PhotoTransform,
    PhotoZone,
)
from .overlay_asset import DEFAULT_RETRY_INTERVAL
from .overlays import FieldKind, TextLayer
from .quality import DEFAULT_TIER, QUALITY_PROFILES, Orientation
from .recorder import DEFAULT_COUNTDOWN, DEFAULT_FPS, DEFAULT_MAX_DURATION

VALID_WEIGHTS = {"normal", "bold", "400", "700", "800", "900"}


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config: '{name}' must be a mapping, got {type(value).__name__}")
    return value


def _resolve(value, paths: dict) -> str | None:
    if value is None:
        return None
    return resolve_path_vars(str(value), paths)


def _parse_text_layers(entries: list, paths: dict) -> list[TextLayer]:
    layers = []
    valid_kinds = sorted(k.value for k in FieldKind)
    for i, entry in enumerate(entries):
        for key in ("x", "y"):
            if key not in entry:
                raise ValueError(f"Text layer {i}: missing required field '{key}'")
        kind_raw = entry.get("kind", "custom")
        try:
            kind = FieldKind(kind_raw)
        except ValueError:
            raise ValueError(
                f"Text layer {i}: unknown kind '{kind_raw}'. Valid: {valid_kinds}"
            ) from None
        if kind is FieldKind.CUSTOM and not entry.get("value"):
            raise ValueError(f"Text layer {i}: custom layers need a 'value'")
        weight = str(entry.get("weight", "normal"))
        if weight not in VALID_WEIGHTS:
            raise ValueError(
                f"Text layer {i}: unknown weight '{weight}'. Valid: {sorted(VALID_WEIGHTS)}"
            )
        color = str(entry.get("color", "#000000"))
        resolve_color(color)
        font_size = float(entry.get("font_size", 24))
        if font_size <= 0:
            raise ValueError(f"Text layer {i}: font_size must be > 0, got {font_size}")
        layers.append(TextLayer(
            value=_resolve(entry.get("value", ""), paths),
            x=float(entry["x"]),
            y=float(entry["y"]),
            font_size=font_size,
            color=color,
            weight=weight,
            kind=kind,
            label=str(entry.get("label", "")),
        ))
    return layers


def _parse_photo_transform(export: dict) -> PhotoTransform | None:
    photo = export.get("photo")
    if photo is None:
        return None
    if not isinstance(photo, dict):
        raise ValueError(f"Config: 'export.photo' must be a mapping, got {type(photo).__name__}")
    transform = PhotoTransform(
        zoom=float(photo.get("zoom", 1.0)),
        rotation=float(photo.get("rotation", 0.0)),
        offset_x=float(photo.get("offset_x", 0.0)),
        offset_y=float(photo.get("offset_y", 0.0)),
    )
    if transform.zoom <= 0:
        raise ValueError(f"Config: export.photo.zoom must be > 0, got {transform.zoom}")
    return transform


def _parse_photo_zone(export: dict) -> PhotoZone | None:
    zone = export.get("photo_zone")
    if zone is None:
        return None
    if not isinstance(zone, dict):
        raise ValueError(f"Config: 'export.photo_zone' must be a mapping, got {type(zone).__name__}")
    shape = str(zone.get("shape", "circle"))
    if shape not in VALID_ZONE_SHAPES:
        raise ValueError(
            f"Config: unknown export.photo_zone.shape '{shape}'. Valid: {sorted(VALID_ZONE_SHAPES)}"
        )
    result = PhotoZone(
        shape=shape,
        x=float(zone.get("x", 50)),
        y=float(zone.get("y", 50)),
        width=float(zone.get("width", 30)),
        height=float(zone.get("height", 30)),
    )
    for key in ("width", "height"):
        value = getattr(result, key)
        if not 0 < value <= 100:
            raise ValueError(f"Config: export.photo_zone.{key} must be in (0, 100], got {value}")
    return result


def load_config(config_path: str | Path | None = None) -> dict:
    """Load, validate and normalize a config file.

    Args:
        config_path: YAML file, or None for pure defaults.

    Returns:
        Flat config dict with typed values (see module docstring).

    Raises:
        FileNotFoundError: config_path does not exist.
        ValueError: Invalid values.
    """
    raw = {}
    if config_path is not None:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError("Config: top level must be a mapping")

    paths = {str(k): str(v) for k, v in (raw.get("paths") or {}).items()}
    app = _section(raw, "app")
    campaign = _section(raw, "campaign")
    capture = _section(raw, "capture")
    overlay = _section(raw, "overlay")
    export = _section(raw, "export")

    quality = str(capture.get("quality", DEFAULT_TIER))
    if quality not in QUALITY_PROFILES:
        raise ValueError(
            f"Config: unknown capture.quality '{quality}'. Valid: {sorted(QUALITY_PROFILES)}"
        )
    orientation = Orientation.parse(capture.get("orientation", "portrait"))

    fps = int(capture.get("fps", DEFAULT_FPS))
    if fps <= 0:
        raise ValueError(f"Config: capture.fps must be > 0, got {fps}")
    countdown = int(capture.get("countdown", DEFAULT_COUNTDOWN))
    if countdown < 0:
        raise ValueError(f"Config: capture.countdown must be >= 0, got {countdown}")
    max_duration = float(capture.get("max_duration", DEFAULT_MAX_DURATION))
    if max_duration <= 0:
        raise ValueError(f"Config: capture.max_duration must be > 0, got {max_duration}")

    retry_interval = float(overlay.get("retry_interval", DEFAULT_RETRY_INTERVAL))
    if retry_interval < 0:
        raise ValueError(f"Config: overlay.retry_interval must be >= 0, got {retry_interval}")

    if "codecs" in raw:
        codecs = parse_codec_preferences(raw["codecs"] or [])
    else:
        codecs = DEFAULT_CODEC_PREFERENCES

    doc_format = DocumentFormat.parse(export.get("format", DocumentFormat.PHOTO.value))

    return {
        "app_name": str(app.get("name", "overlaycast")),
        "campaign_title": str(campaign.get("title", "")),
        "quality": quality,
        "orientation": orientation,
        "fps": fps,
        "countdown": countdown,
        "max_duration": max_duration,
        "audio": bool(capture.get("audio", True)),
        "device": capture.get("device", 0),
        "sample_rate": int(capture.get("sample_rate", 48000)),
        "preset": str(capture.get("preset", "medium")),
        "overlay_portrait": _resolve(overlay.get("portrait"), paths),
        "overlay_landscape": _resolve(overlay.get("landscape"), paths),
        "retry_interval": retry_interval,
        "codecs": codecs,
        "output_dir": _resolve(export.get("output_dir", "exports"), paths),
        "document_format": doc_format,
        "watermark_status": export.get("watermark_status", "none"),
        "watermark_text": str(export.get("watermark_text", DEFAULT_WATERMARK_TEXT)),
        "photo_transform": _parse_photo_transform(export),
        "photo_zone": _parse_photo_zone(export),
        "text_layers": _parse_text_layers(raw.get("text_layers") or [], paths),
    }


def apply_overrides(config: dict, **overrides) -> dict:
    """Return a copy of *config* with every non-None override applied.

    CLI flags take precedence over the config file.
    """
    merged = dict(config)
    for key, value in overrides.items():
        if value is None:
            continue
        if key not in merged:
            raise KeyError(f"Unknown config key: '{key}'")
        merged[key] = value
    if merged["quality"] not in QUALITY_PROFILES:
        raise ValueError(
            f"Unknown quality tier: '{merged['quality']}'. Valid: {sorted(QUALITY_PROFILES)}"
        )
    merged["orientation"] = Orientation.parse(merged["orientation"])
    merged["document_format"] = DocumentFormat.parse(merged["document_format"])
    return merged
