"""Export artifacts and their suggested filenames."""

import re
import time
from dataclasses import dataclass
from pathlib import Path


def build_filename(
    app_name: str,
    campaign_title: str,
    tier: str,
    extension: str,
    orientation_label: str | None = None,
    timestamp_ms: int | None = None,
) -> str:
    """Build '{app}-{title-dashed}-{tier}[-{orientation}]-{unix_ms}.{ext}'.

    Whitespace runs in the campaign title become single dashes.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    title = re.sub(r"\s+", "-", campaign_title.strip())
    parts = [app_name, title, tier]
    if orientation_label:
        parts.append(orientation_label)
    parts.append(str(timestamp_ms))
    return "-".join(p for p in parts if p) + f".{extension.lstrip('.')}"


@dataclass
class ExportArtifact:
    """A produced file waiting for delivery.

    The file at `path` is temporary; whoever delivers the artifact calls
    release() afterwards.
    """

    path: Path
    mime_type: str
    suggested_filename: str
    dimensions: tuple[int, int]
    orientation_label: str | None = None
    has_audio: bool = False

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    @property
    def released(self) -> bool:
        return not self.path.exists()

    def release(self) -> None:
        self.path.unlink(missing_ok=True)
