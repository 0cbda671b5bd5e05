"""
Document Enrichment Service
===========================
Turns a detail page's raw text plus its embedded images into the body
text that gets persisted.

Flow per record:
1. Each image is OCR'd. Oversized images are planned into tiles
   (``segments.plan_segments``), each tile is cropped with Pillow and
   OCR'd concurrently under a semaphore, then tiles are reassembled.
2. OCR text is appended to the directly extracted text.
3. The combination always goes through ``clean_text``.
4. A best-effort rewrite is attempted; on any failure the cleaned text
   is returned unchanged.

Every OCR and rewrite call goes through a ``RetryGateway``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .clients import DocumentUnderstanding, TextQuality
from .errors import ConfigurationError, HarvestError
from .images import crop_to_data_url, to_data_url
from .models import EmbeddedImage, ImageSegment, Provenance
from .retry import RetryGateway
from .segments import TilingLimits, needs_tiling, plan_segments, reassemble, tile_height_for
from .text_cleaner import clean_text

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentResult:
    """Enriched body text plus how it was produced."""
    text: str
    provenance: str = Provenance.TEXT.value
    segments: List[ImageSegment] = field(default_factory=list)
    rewritten: bool = False


class DocumentEnrichmentService:
    """Combines tiling, OCR, local cleaning and best-effort rewrite."""

    def __init__(
        self,
        ocr: Optional[DocumentUnderstanding],
        text_quality: Optional[TextQuality] = None,
        ocr_gateway: Optional[RetryGateway] = None,
        rewrite_gateway: Optional[RetryGateway] = None,
        limits: Optional[TilingLimits] = None,
        tile_concurrency: int = 4,
        rewrite_min_chars: int = 10,
    ):
        if tile_concurrency < 1:
            raise ConfigurationError(f"tile_concurrency must be >= 1, got {tile_concurrency}")
        self.ocr = ocr
        self.text_quality = text_quality
        self.ocr_gateway = ocr_gateway or RetryGateway()
        self.rewrite_gateway = rewrite_gateway or RetryGateway()
        self.limits = limits or TilingLimits()
        self.tile_concurrency = tile_concurrency
        self.rewrite_min_chars = rewrite_min_chars

    async def enrich(self, raw_text: str, images: Sequence[EmbeddedImage] = ()) -> EnrichmentResult:
        """
        Produce the persisted body text for one record.

        Args:
            raw_text: Text extracted directly from the detail page
            images: Downloaded embedded images, in page order

        Returns:
            EnrichmentResult; ``provenance`` is "text+ocr" when any OCR text
            was produced.

        Raises:
            ConfigurationError: OCR credentials or setup are broken
        """
        ocr_texts: List[str] = []
        all_segments: List[ImageSegment] = []

        if images and self.ocr is not None:
            for image in images:
                text, segments = await self._ocr_image(image)
                all_segments.extend(segments)
                if text.strip():
                    ocr_texts.append(text.strip())

        parts = [raw_text.strip()] if raw_text and raw_text.strip() else []
        parts.extend(ocr_texts)
        cleaned = clean_text("\n\n".join(parts))
        provenance = Provenance.TEXT_OCR.value if ocr_texts else Provenance.TEXT.value

        rewritten = await self._rewrite(cleaned)
        return EnrichmentResult(
            text=rewritten if rewritten is not None else cleaned,
            provenance=provenance,
            segments=all_segments,
            rewritten=rewritten is not None,
        )

    # ------------------------------------------------------------------
    # OCR
    # ------------------------------------------------------------------

    async def _ocr_image(self, image: EmbeddedImage):
        if image.width > 0 and image.height > 0 and needs_tiling(
            image.byte_size, image.width, image.height, self.limits
        ):
            segments = plan_segments(
                image.width,
                image.height,
                self.limits.max_width,
                tile_height_for(image.byte_size, image.height, self.limits),
                self.limits.overlap,
            )
            logger.info(
                f"[ENRICH] {image.url[:70]}: {image.width}x{image.height}, "
                f"{image.byte_size / (1024 * 1024):.1f} MB -> {len(segments)} tile(s)"
            )
            await self._ocr_tiles(image, segments)
            return reassemble(segments), segments

        image_ref = image.url if image.url.startswith(("http://", "https://")) else to_data_url(image.data, image.mime)
        try:
            text = await self.ocr_gateway.call(
                lambda: self.ocr.ocr(image_ref), operation=f"ocr {image.url[:60]}"
            )
        except ConfigurationError:
            raise
        except HarvestError as e:
            logger.warning(f"[ENRICH] OCR failed for {image.url[:70]}: {e}")
            return "", []
        return text or "", []

    async def _ocr_tiles(self, image: EmbeddedImage, segments: List[ImageSegment]) -> None:
        """OCR every tile with bounded concurrency; fills ``segment.text`` in place."""
        semaphore = asyncio.Semaphore(self.tile_concurrency)
        loop = asyncio.get_running_loop()

        async def process(segment: ImageSegment) -> str:
            async with semaphore:
                data_url = await loop.run_in_executor(None, crop_to_data_url, image.data, segment)
                return await self.ocr_gateway.call(
                    lambda: self.ocr.ocr(data_url),
                    operation=f"ocr tile {segment.index + 1}/{len(segments)}",
                )

        results = await asyncio.gather(
            *(process(segment) for segment in segments), return_exceptions=True
        )

        failed = 0
        for segment, result in zip(segments, results):
            if isinstance(result, ConfigurationError):
                raise result
            if isinstance(result, BaseException):
                failed += 1
                segment.text = ""
                logger.warning(f"[ENRICH] Tile {segment.index + 1} failed: {result}")
            else:
                segment.text = result or ""

        if failed:
            logger.warning(f"[ENRICH] {failed}/{len(segments)} tile(s) produced no text")

    # ------------------------------------------------------------------
    # Rewrite
    # ------------------------------------------------------------------

    async def _rewrite(self, cleaned: str) -> Optional[str]:
        """Rewritten text, or None when skipped or failed."""
        if self.text_quality is None or len(cleaned) < self.rewrite_min_chars:
            return None
        try:
            rewritten = await self.rewrite_gateway.call(
                lambda: self.text_quality.rewrite(cleaned), operation="rewrite"
            )
        except Exception as e:
            logger.warning(f"[ENRICH] Rewrite failed, keeping cleaned text: {e}")
            return None
        return rewritten if rewritten and rewritten.strip() else None
