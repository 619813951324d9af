"""Overlay asset loading and per-orientation selection.

An overlay is a transparent PNG (the event "frame") authored at the
destination aspect ratio. Campaigns may ship one per orientation. Remote
URIs are fetched with httpx; local paths, file:// URIs and base64 data
URIs are decoded directly with Pillow.

Loading never aborts a session: a failed orientation is logged, frames
are composited without it, and the loader re-attempts at most once per
retry interval while the render loop keeps polling.
"""

import asyncio
import base64
import io
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError

from .quality import Orientation

logger = logging.getLogger(__name__)

DEFAULT_RETRY_INTERVAL = 1.0     # seconds between reload attempts for a failed asset
FETCH_TIMEOUT = 30.0


class OverlayLoadError(Exception):
    """Overlay could not be fetched or decoded."""


# ── Loaded handle ────────────────────────────────────────────────


@dataclass
class AssetHandle:
    """A decoded RGBA overlay plus resized blend planes per destination size."""

    uri: str
    image: Image.Image
    _planes: dict = field(default_factory=dict, repr=False)

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def blend_planes(self, size: tuple[int, int]) -> tuple[np.ndarray, np.ndarray]:
        """Return (premultiplied_rgb, inverse_alpha) float32 planes at *size*.

        Computed once per size so per-frame blending is a multiply-add.
        """
        planes = self._planes.get(size)
        if planes is None:
            img = self.image
            if img.size != size:
                img = img.resize(size, Image.LANCZOS)
            rgba = np.asarray(img, dtype=np.float32)
            alpha = rgba[:, :, 3:4] / 255.0
            planes = (rgba[:, :, :3] * alpha, 1.0 - alpha)
            self._planes[size] = planes
        return planes


# ── Loading ──────────────────────────────────────────────────────


def _decode(data: bytes, uri: str) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise OverlayLoadError(f"Overlay '{uri}' is not a decodable image: {e}") from e
    except Image.DecompressionBombError as e:
        raise OverlayLoadError(f"Overlay '{uri}' is too large: {e}") from e
    return img.convert("RGBA")


def _read_local(path: Path, uri: str) -> Image.Image:
    if not path.is_file():
        raise OverlayLoadError(f"Overlay file not found: {path}")
    return _decode(path.read_bytes(), uri)


async def load_asset(
    uri: str, client: httpx.AsyncClient | None = None,
) -> AssetHandle:
    """Fetch and decode an overlay image.

    Args:
        uri: http(s) URL, file:// URI, data: URI, or local filesystem path.
        client: Optional shared httpx client. A short-lived one is
            created when omitted.

    Returns:
        AssetHandle holding the RGBA image.

    Raises:
        OverlayLoadError: Network failure, bad URL, missing file, or
            undecodable or oversized image data.
    """
    try:
        parsed = urlparse(uri)
    except ValueError as e:
        raise OverlayLoadError(f"Malformed overlay URI '{uri}': {e}") from e
    scheme = parsed.scheme.lower()

    if scheme in ("http", "https"):
        try:
            if client is not None:
                response = await client.get(uri)
            else:
                async with httpx.AsyncClient(
                    timeout=FETCH_TIMEOUT, follow_redirects=True,
                ) as owned:
                    response = await owned.get(uri)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise OverlayLoadError(f"Failed to fetch overlay '{uri}': {e}") from e
        image = _decode(response.content, uri)
    elif scheme == "data":
        header, _, payload = uri.partition(",")
        if not header.endswith(";base64"):
            raise OverlayLoadError("Only base64 data URIs are supported for overlays")
        try:
            raw = base64.b64decode(payload, validate=True)
        except ValueError as e:
            raise OverlayLoadError(f"Invalid base64 payload in data URI: {e}") from e
        image = _decode(raw, "data:")
    else:
        path = Path(unquote(parsed.path)) if scheme == "file" else Path(uri)
        image = await asyncio.to_thread(_read_local, path, uri)

    logger.debug("Loaded overlay %s (%dx%d)", uri[:80], *image.size)
    return AssetHandle(uri=uri, image=image)


# ── Per-orientation asset ────────────────────────────────────────


class OverlayAsset:
    """Portrait and landscape variants of a campaign overlay.

    Exactly one variant is used per frame: preview selects by the current
    display orientation, file export by the source media's orientation.
    A missing variant means frames of that orientation carry no overlay.
    """

    def __init__(
        self,
        portrait_uri: str | None = None,
        landscape_uri: str | None = None,
        *,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        loader=load_asset,
        clock=time.monotonic,
    ):
        self._uris = {
            Orientation.PORTRAIT: portrait_uri,
            Orientation.LANDSCAPE: landscape_uri,
        }
        self.retry_interval = retry_interval
        self._loader = loader
        self._clock = clock
        self._handles: dict[Orientation, AssetHandle] = {}
        self._failed_at: dict[Orientation, float] = {}
        self._pending: dict[Orientation, asyncio.Task] = {}

    def for_orientation(self, orientation: Orientation) -> AssetHandle | None:
        """The loaded handle for *orientation*, or None if absent or failed."""
        return self._handles.get(orientation)

    def has_failed(self, orientation: Orientation) -> bool:
        return orientation in self._failed_at

    async def load(self, orientations=None) -> None:
        """Load the requested variants (all configured ones by default).

        Never raises for load failures; see poll() for the retry policy.
        """
        targets = orientations or [o for o, uri in self._uris.items() if uri]
        await asyncio.gather(*(self._load_one(o) for o in targets))

    async def _load_one(self, orientation: Orientation) -> None:
        uri = self._uris[orientation]
        if not uri:
            return
        try:
            handle = await self._loader(uri)
        except OverlayLoadError as e:
            self._failed_at[orientation] = self._clock()
            logger.warning(
                "Overlay (%s) unavailable, compositing without it: %s",
                orientation.value, e,
            )
            return
        self._handles[orientation] = handle
        self._failed_at.pop(orientation, None)

    def poll(self, orientation: Orientation) -> None:
        """Schedule a background reload for a failed variant if one is due.

        Called once per rendered frame; must be called from a running
        event loop. At most one reload is in flight per orientation and
        attempts are spaced by retry_interval.
        """
        failed_at = self._failed_at.get(orientation)
        if failed_at is None:
            return
        task = self._pending.get(orientation)
        if task is not None and not task.done():
            return
        if self._clock() - failed_at < self.retry_interval:
            return
        logger.debug("Retrying overlay load (%s)", orientation.value)
        self._pending[orientation] = asyncio.get_running_loop().create_task(
            self._load_one(orientation)
        )

    def release(self) -> None:
        """Drop decoded images and cancel in-flight reloads."""
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        self._handles.clear()
        self._failed_at.clear()
