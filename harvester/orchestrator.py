"""
Crawl Orchestrator
==================
Wires the pipeline together for one run:

    ListingWalker ──(new URLs per page)──> DetailHarvester ──> Store.insert
                                                                   │
    BatchEnrichmentScheduler <──────── unchecked records ──────────┘

All collaborators come from an explicit ``HarvestContext`` built once at
process start; nothing is looked up from module-level state.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from .clients import (
    ChatMatchScorer,
    DocumentUnderstanding,
    MatchScorer,
    MistralOCRClient,
    MistralTextQualityClient,
    TextQuality,
)
from .detail import DetailHarvester
from .enrichment import DocumentEnrichmentService
from .errors import ConfigurationError
from .fetcher import PageFetcher, PlaywrightFetcher, StaticFetcher
from .images import ImageLoader
from .models import BatchProgress, CandidateURL, RunReport
from .retry import RetryGateway
from .run_config import HarvestRunConfig
from .scheduler import BatchEnrichmentScheduler
from .source import ListingSource, SelectorListingSource
from .store import RecordStore, SQLiteRecordStore
from .utils import humanized_delay, truncate
from .walker import ListingWalker, PageRange

logger = logging.getLogger(__name__)


def _read_text(path: Optional[str]) -> str:
    if not path:
        return ""
    return Path(path).read_text(encoding="utf-8")


@dataclass
class HarvestContext:
    """Every collaborator one run needs, constructed once and passed in."""
    config: HarvestRunConfig
    store: RecordStore
    fetcher: Optional[PageFetcher] = None
    source: Optional[ListingSource] = None
    ocr: Optional[DocumentUnderstanding] = None
    text_quality: Optional[TextQuality] = None
    scorer: Optional[MatchScorer] = None
    image_loader: Optional[ImageLoader] = None
    profile: str = ""
    stop_event: threading.Event = field(default_factory=threading.Event)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_config(
        cls,
        config: HarvestRunConfig,
        need_crawl: bool = True,
        need_scoring: bool = False,
    ) -> "HarvestContext":
        """Build the production collaborators described by ``config``."""
        config.validate(need_crawl=need_crawl, need_scoring=need_scoring)

        store = SQLiteRecordStore(config.db_path)

        fetcher = source = image_loader = None
        ocr = text_quality = None
        if need_crawl:
            fetcher_config = config.to_fetcher_config()
            fetcher = PlaywrightFetcher(fetcher_config) if config.use_browser else StaticFetcher(fetcher_config)
            source = SelectorListingSource(config.to_source_config())
            image_loader = ImageLoader(timeout=config.timeout_seconds)
            if config.api_key:
                api_kwargs = dict(base_url=config.api_base_url, timeout=config.api_timeout)
                ocr = MistralOCRClient(config.api_key, model=config.ocr_model, **api_kwargs)
                if config.enable_rewrite:
                    text_quality = MistralTextQualityClient(
                        config.api_key, model=config.chat_model, **api_kwargs
                    )
            else:
                logger.warning("MISTRAL_API_KEY not set: images will not be OCR'd, text not rewritten")

        scorer = None
        profile = ""
        if need_scoring:
            scorer = ChatMatchScorer(
                config.api_key,
                instructions=_read_text(config.instructions_path),
                model=config.chat_model,
                base_url=config.api_base_url,
                timeout=config.api_timeout,
            )
            profile = _read_text(config.profile_path)

        return cls(
            config=config,
            store=store,
            fetcher=fetcher,
            source=source,
            ocr=ocr,
            text_quality=text_quality,
            scorer=scorer,
            image_loader=image_loader,
            profile=profile,
        )

    def close(self) -> None:
        for client in (self.ocr, self.text_quality, self.scorer, self.image_loader):
            if client is not None and hasattr(client, "close"):
                client.close()
        self.store.close()


class CrawlOrchestrator:
    """Runs crawl and scoring phases against one ``HarvestContext``."""

    def __init__(self, context: HarvestContext):
        self.context = context
        self.config = context.config

    # ------------------------------------------------------------------
    # Component builders
    # ------------------------------------------------------------------

    def _gateway(self, call_site: str) -> RetryGateway:
        return RetryGateway.from_policy(self.config.to_retry_policy(call_site), sleep=self.context.sleep)

    def _delay(self, base: float) -> float:
        return humanized_delay(base) if self.config.humanized_delay else base

    def build_walker(self) -> ListingWalker:
        return ListingWalker(
            fetcher=self.context.fetcher,
            source=self.context.source,
            store=self.context.store,
            thresholds=self.config.to_walker_thresholds(),
            stop_event=self.context.stop_event,
            sleep=self.context.sleep,
            page_delay=self.config.page_delay,
            delay_fn=self._delay,
        )

    def build_harvester(self) -> DetailHarvester:
        enrichment = DocumentEnrichmentService(
            ocr=self.context.ocr,
            text_quality=self.context.text_quality,
            ocr_gateway=self._gateway("ocr"),
            rewrite_gateway=self._gateway("rewrite"),
            limits=self.config.to_tiling_limits(),
            tile_concurrency=self.config.tile_concurrency,
            rewrite_min_chars=self.config.rewrite_min_chars,
        )
        return DetailHarvester(
            fetcher=self.context.fetcher,
            source=self.context.source,
            enrichment=enrichment,
            image_loader=self.context.image_loader,
            gateway=self._gateway("detail"),
        )

    def build_scheduler(self) -> BatchEnrichmentScheduler:
        if self.context.scorer is None:
            raise ConfigurationError("no scorer configured")
        return BatchEnrichmentScheduler(
            store=self.context.store,
            scorer=self.context.scorer,
            profile=self.context.profile,
            gateway=self._gateway("scoring"),
            cooldown=self.config.batch_cooldown,
            sleep=self.context.sleep,
            stop_event=self.context.stop_event,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def crawl(self, page_range: Optional[PageRange] = None) -> RunReport:
        """Walk listing pages and persist every newly harvested record."""
        if self.context.fetcher is None or self.context.source is None:
            raise ConfigurationError("crawl needs a fetcher and a listing source")

        page_range = page_range or self.config.to_page_range()
        walker = self.build_walker()
        harvester = self.build_harvester()
        report = RunReport()
        t_start = time.monotonic()

        async def on_new_urls(page_number: int, urls: List[CandidateURL]) -> None:
            for url in urls:
                if self.context.stop_event.is_set():
                    return
                record = await harvester.harvest(url)
                if record is None:
                    report.harvest_failures += 1
                elif self.context.store.insert(record) is not None:
                    report.records_saved += 1
                    report.saved_urls.append(url)
                if self.config.detail_delay > 0:
                    await self.context.sleep(self._delay(self.config.detail_delay))

        await self.context.fetcher.start()
        try:
            walk = await walker.walk(page_range, on_new_urls=on_new_urls)
        finally:
            await self.context.fetcher.close()

        report.pages_visited = walk.pages_visited
        report.urls_discovered = len(walk.urls)
        report.stop_reason = walk.stop_reason
        report.elapsed_sec = round(time.monotonic() - t_start, 2)
        self._log_crawl_summary(report)
        return report

    async def score(self, batch_size: Optional[int] = None) -> BatchProgress:
        """Run the batch scheduler over every unchecked record."""
        scheduler = self.build_scheduler()
        return await scheduler.run(batch_size or self.config.batch_size)

    async def run(self, page_range: Optional[PageRange] = None, score_after: bool = True) -> RunReport:
        """Crawl, then (optionally) score what is unchecked."""
        report = await self.crawl(page_range)
        if score_after and not self.context.stop_event.is_set():
            report.batch_progress = await self.score()
        return report

    def run_sync(self, page_range: Optional[PageRange] = None, score_after: bool = True) -> RunReport:
        """Synchronous wrapper for callers without an event loop."""
        return asyncio.run(self.run(page_range, score_after=score_after))

    def stop(self) -> None:
        """Ask the walker and scheduler to stop at their next checkpoint."""
        logger.info("Stop requested")
        self.context.stop_event.set()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _log_crawl_summary(self, report: RunReport) -> None:
        logger.info("=" * 60)
        logger.info("HARVEST SUMMARY")
        logger.info("=" * 60)
        logger.info(f"  Pages visited:    {report.pages_visited}")
        logger.info(f"  New URLs:         {report.urls_discovered}")
        logger.info(f"  Records saved:    {report.records_saved}")
        logger.info(f"  Not harvested:    {report.harvest_failures}")
        logger.info(f"  Stop reason:      {report.stop_reason}")
        logger.info(f"  Elapsed:          {report.elapsed_sec}s")
        for url in report.saved_urls[:5]:
            logger.info(f"    + {truncate(url, 70)}")
        if len(report.saved_urls) > 5:
            logger.info(f"    ... and {len(report.saved_urls) - 5} more")
        logger.info("=" * 60)
