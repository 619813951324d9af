"""Delivery strategy — hand a finished artifact to the platform.

Preference order: a share target that accepts files, then opening the
file in a viewer, then a plain download (copy to the output directory).
The artifact's temporary file is released once delivery is done,
whichever path was taken.
"""

import logging
import shutil
import webbrowser
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from .artifact import ExportArtifact

logger = logging.getLogger(__name__)


class DeliveryMethod(Enum):
    SHARE = "share"
    OPEN = "open"
    DOWNLOAD = "download"


class ShareError(Exception):
    """The share target refused the file or the user dismissed it."""


@dataclass
class PlatformCapabilities:
    """What the host platform can do with a finished file.

    share: Sends the artifact to a share target; raises ShareError on
        refusal or dismissal.
    can_share_files: Whether the share target accepts this artifact.
    open_viewer: Opens the artifact; returns where the opened file lives,
        or None if the viewer was blocked.
    download: Saves the artifact; returns where it landed.
    """

    download: Callable[[ExportArtifact], Path | None]
    share: Callable[[ExportArtifact], None] | None = None
    can_share_files: Callable[[ExportArtifact], bool] | None = None
    open_viewer: Callable[[ExportArtifact], Path | None] | None = None


@dataclass(frozen=True)
class Delivery:
    method: DeliveryMethod
    location: Path | None = None


class DeliveryStrategy:
    def __init__(self, capabilities: PlatformCapabilities):
        self.capabilities = capabilities

    def deliver(self, artifact: ExportArtifact) -> Delivery:
        """Deliver *artifact* by the first method that works, then release it."""
        caps = self.capabilities
        try:
            if caps.share is not None and caps.can_share_files is not None and caps.can_share_files(artifact):
                try:
                    caps.share(artifact)
                    logger.info("Shared %s", artifact.suggested_filename)
                    return Delivery(DeliveryMethod.SHARE)
                except ShareError as e:
                    logger.info("Share failed (%s), falling back", e)

            if caps.open_viewer is not None:
                opened = caps.open_viewer(artifact)
                if opened is not None:
                    return Delivery(DeliveryMethod.OPEN, opened)
                logger.info("Viewer blocked, downloading %s instead", artifact.suggested_filename)

            location = caps.download(artifact)
            return Delivery(DeliveryMethod.DOWNLOAD, location)
        finally:
            artifact.release()


# ── Desktop platform ─────────────────────────────────────────────


def save_to_directory(artifact: ExportArtifact, output_dir: str | Path) -> Path:
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / artifact.suggested_filename
    shutil.copyfile(artifact.path, target)
    return target


def desktop_capabilities(
    output_dir: str | Path, open_after: bool = False,
) -> PlatformCapabilities:
    """Capabilities for the CLI: no share target, optional viewer, download."""

    def download(artifact):
        target = save_to_directory(artifact, output_dir)
        logger.info("Saved %s", target)
        return target

    def open_viewer(artifact):
        target = save_to_directory(artifact, output_dir)
        if not webbrowser.open(target.resolve().as_uri()):
            return None
        logger.info("Opened %s", target)
        return target

    return PlatformCapabilities(
        download=download,
        open_viewer=open_viewer if open_after else None,
    )
