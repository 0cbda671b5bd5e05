"""
Detail Harvester
Fetches one detail page, parses it, pulls its embedded images and runs the
result through enrichment. Returns None for anything that should simply be
tried again on a later run.
"""

from __future__ import annotations

import logging
from typing import Optional

from .enrichment import DocumentEnrichmentService
from .errors import SKIPPABLE_ERRORS, ConfigurationError, RetryExhaustedError
from .fetcher import PageFetcher
from .images import ImageLoader
from .models import DetailRecord
from .retry import RetryGateway
from .source import ListingSource, ParsedDetail

logger = logging.getLogger(__name__)


class DetailHarvester:
    """
    Harvests one detail URL into an enriched, not-yet-persisted record.

    Fetch + parse runs through its own gateway (2 retries, fixed 3 s by
    default). Not-found, malformed and unparseable pages are skipped
    without retrying; exhausted retries also yield None so the URL stays
    unknown to the store.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        source: ListingSource,
        enrichment: DocumentEnrichmentService,
        image_loader: Optional[ImageLoader] = None,
        gateway: Optional[RetryGateway] = None,
    ):
        self.fetcher = fetcher
        self.source = source
        self.enrichment = enrichment
        self.image_loader = image_loader
        self.gateway = gateway or RetryGateway(max_retries=2, initial_backoff=3.0, max_backoff=3.0)

    async def _fetch_and_parse(self, url: str) -> ParsedDetail:
        doc = await self.fetcher.fetch(url, wait_condition=self.source.detail_wait_selector)
        return self.source.parse_detail(doc)

    async def harvest(self, url: str) -> Optional[DetailRecord]:
        """
        Harvest ``url``.

        Returns:
            Enriched DetailRecord, or None if the item was skipped or every
            attempt failed

        Raises:
            ConfigurationError: fatal for the run
        """
        try:
            parsed = await self.gateway.call(
                lambda: self._fetch_and_parse(url), operation=f"detail {url[:70]}"
            )
        except ConfigurationError:
            raise
        except SKIPPABLE_ERRORS as e:
            logger.warning(f"[DETAIL] Skipping {url[:70]} ({type(e).__name__}): {e}")
            return None
        except RetryExhaustedError as e:
            logger.error(f"[DETAIL] Giving up on {url[:70]} for this run: {e.last_error}")
            return None

        images = []
        if parsed.image_urls and self.image_loader is not None:
            images = await self.image_loader.load_all(parsed.image_urls)

        enriched = await self.enrichment.enrich(parsed.body_text, images)

        record = DetailRecord(
            url=url,
            title=parsed.title,
            fields=parsed.fields,
            raw_text=parsed.body_text,
            body_text=enriched.text,
            provenance=enriched.provenance,
        )
        logger.info(
            f"[DETAIL] {record.title[:50] or url[:50]} "
            f"({len(record.body_text)} chars, {record.provenance}, {len(images)} image(s))"
        )
        return record
