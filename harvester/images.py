"""Embedded image downloading, measuring and cropping."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from typing import List, Optional

import requests
from filetype import guess
from PIL import Image, UnidentifiedImageError

from .models import EmbeddedImage, ImageSegment

logger = logging.getLogger(__name__)

# Anything smaller is a spacer or tracking pixel
MIN_IMAGE_BYTES = 512
# Download ceiling; larger images are not worth tiling
MAX_IMAGE_BYTES = 120 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff"}


def detect_image_mime(data: bytes) -> Optional[str]:
    """Detect the image MIME type from the file signature."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/") and kind.extension.lower() in ALLOWED_IMAGE_TYPES:
        return kind.mime
    return None


def to_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def crop_to_data_url(data: bytes, segment: ImageSegment) -> str:
    """Crop one tile out of an encoded image and return it as a PNG data URL."""
    with Image.open(io.BytesIO(data)) as img:
        tile = img.crop(segment.box)
        if tile.mode not in ("RGB", "RGBA", "L"):
            tile = tile.convert("RGB")
        buffer = io.BytesIO()
        tile.save(buffer, format="PNG")
    return to_data_url(buffer.getvalue(), "image/png")


class ImageLoader:
    """
    Downloads images referenced from a detail body.

    Failures are logged and yield ``None``; a missing image never fails
    the record it belongs to.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
        min_bytes: int = MIN_IMAGE_BYTES,
        max_bytes: int = MAX_IMAGE_BYTES,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.min_bytes = min_bytes
        self.max_bytes = max_bytes

    def _sync_load(self, url: str) -> Optional[EmbeddedImage]:
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(f"[IMAGE] Failed to fetch {url}: {exc}")
            return None

        data = resp.content
        if len(data) < self.min_bytes:
            logger.debug(f"[IMAGE] Skipping {url}: response too small")
            return None
        if len(data) > self.max_bytes:
            logger.warning(f"[IMAGE] Skipping {url}: larger than {self.max_bytes} bytes")
            return None

        mime = detect_image_mime(data)
        if not mime:
            logger.warning(
                f"[IMAGE] Skipping {url}: unsupported type "
                f"(Content-Type={resp.headers.get('Content-Type', '')})"
            )
            return None

        try:
            with Image.open(io.BytesIO(data)) as img:
                width, height = img.size
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning(f"[IMAGE] Skipping {url}: cannot decode ({exc})")
            return None

        return EmbeddedImage(url=url, data=data, width=width, height=height, mime=mime)

    async def load(self, url: str) -> Optional[EmbeddedImage]:
        """Download and measure one image; runs the blocking fetch in an executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._sync_load, url)

    async def load_all(self, urls: List[str]) -> List[EmbeddedImage]:
        """Load images sequentially, skipping duplicates and failures."""
        images = []
        seen = set()
        for url in urls:
            if url in seen:
                continue
            seen.add(url)
            image = await self.load(url)
            if image is not None:
                images.append(image)
        return images

    def close(self) -> None:
        self.session.close()
