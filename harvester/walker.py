"""
Listing Walker
==============
Walks listing pages in order, collecting candidate URLs the store has not
seen, until the range ends or a termination heuristic fires.

Termination is a pure state machine over ``CrawlState``:

    empty page              -> empty += 1            else empty = 0
    >= min_sample URLs, all
    already known           -> duplicate += 1        else duplicate = 0

    empty     >= empty_threshold      -> "exhausted-empty"
    duplicate >= duplicate_threshold  -> "exhausted-duplicate"

A page whose fetch fails counts as an empty page. Pages are strictly
sequential; cancellation is honored before every fetch.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Iterator, List, Optional, Set

from .errors import ConfigurationError, HarvestError
from .fetcher import PageFetcher
from .models import CandidateURL, CrawlState, PageOutcome, StopReason, WalkResult
from .source import ListingSource
from .store import RecordStore

logger = logging.getLogger(__name__)

NewUrlsCallback = Callable[[int, List[CandidateURL]], Awaitable[None]]


@dataclass(frozen=True)
class WalkerThresholds:
    empty_threshold: int = 3
    duplicate_threshold: int = 3
    min_sample: int = 5

    def __post_init__(self):
        if self.empty_threshold < 1 or self.duplicate_threshold < 1:
            raise ConfigurationError("termination thresholds must be >= 1")
        if self.min_sample < 1:
            raise ConfigurationError("min_sample must be >= 1")


@dataclass(frozen=True)
class PageRange:
    """Inclusive page range; ``end=None`` walks until a heuristic fires."""
    start: int = 1
    end: Optional[int] = None

    def __post_init__(self):
        if self.start < 1:
            raise ConfigurationError(f"start page must be >= 1, got {self.start}")
        if self.end is not None and self.end < self.start:
            raise ConfigurationError(f"end page {self.end} is before start page {self.start}")

    def pages(self) -> Iterator[int]:
        if self.end is None:
            return itertools.count(self.start)
        return iter(range(self.start, self.end + 1))


def advance(state: CrawlState, outcome: PageOutcome, thresholds: WalkerThresholds) -> CrawlState:
    """Next CrawlState after one page. Pure."""
    if outcome.url_count == 0:
        empty = state.consecutive_empty_pages + 1
    else:
        empty = 0

    if outcome.url_count >= thresholds.min_sample and outcome.known_count == outcome.url_count:
        duplicate = state.consecutive_duplicate_pages + 1
    else:
        duplicate = 0

    return replace(state, consecutive_empty_pages=empty, consecutive_duplicate_pages=duplicate)


def termination_reason(state: CrawlState, thresholds: WalkerThresholds) -> Optional[str]:
    """Stop reason if a heuristic fired, else None."""
    if state.consecutive_empty_pages >= thresholds.empty_threshold:
        return StopReason.EXHAUSTED_EMPTY.value
    if state.consecutive_duplicate_pages >= thresholds.duplicate_threshold:
        return StopReason.EXHAUSTED_DUPLICATE.value
    return None


async def _no_sleep(_: float) -> None:
    return None


class ListingWalker:
    """Sequential walk over listing pages with dedup and termination heuristics."""

    def __init__(
        self,
        fetcher: PageFetcher,
        source: ListingSource,
        store: RecordStore,
        thresholds: Optional[WalkerThresholds] = None,
        stop_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        page_delay: float = 0.0,
        delay_fn: Optional[Callable[[float], float]] = None,
    ):
        self.fetcher = fetcher
        self.source = source
        self.store = store
        self.thresholds = thresholds or WalkerThresholds()
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep or (asyncio.sleep if page_delay > 0 else _no_sleep)
        self.page_delay = page_delay
        self._delay_fn = delay_fn

    async def _fetch_candidates(self, page_number: int) -> Optional[List[CandidateURL]]:
        """Candidate URLs on one page, or None when the fetch failed."""
        url = self.source.page_url(page_number)
        try:
            doc = await self.fetcher.fetch(url, wait_condition=self.source.list_wait_selector)
            return self.source.extract_candidate_urls(doc)
        except ConfigurationError:
            raise
        except HarvestError as e:
            logger.warning(f"[WALK] Page {page_number} fetch failed ({type(e).__name__}): {e}")
            return None

    async def walk(
        self,
        page_range: PageRange,
        on_new_urls: Optional[NewUrlsCallback] = None,
    ) -> WalkResult:
        """
        Walk ``page_range`` and return the new candidate URLs in discovery order.

        Args:
            page_range: Pages to visit
            on_new_urls: Awaited after each page with that page's new URLs, so
                details can be harvested incrementally

        Returns:
            WalkResult with urls, stop_reason, pages_visited and final state
        """
        state = CrawlState()
        seen: Set[CandidateURL] = set()
        result = WalkResult()

        logger.info(
            f"[WALK] Starting at page {page_range.start} "
            f"(end={page_range.end if page_range.end is not None else 'open'})"
        )

        for page_number in page_range.pages():
            if self.stop_event.is_set():
                result.stop_reason = StopReason.CANCELLED.value
                logger.info(f"[WALK] Cancelled before page {page_number}")
                break

            candidates = await self._fetch_candidates(page_number)
            fetch_failed = candidates is None
            candidates = candidates or []
            result.pages_visited += 1

            known = self.store.exists_batch(set(candidates)) if candidates else set()
            outcome = PageOutcome(
                page_number=page_number,
                url_count=len(candidates),
                known_count=sum(1 for u in candidates if u in known),
                fetch_failed=fetch_failed,
            )
            state = advance(state, outcome, self.thresholds)

            new_urls = [u for u in candidates if u not in known and u not in seen]
            seen.update(new_urls)
            result.urls.extend(new_urls)

            logger.info(
                f"[WALK] Page {page_number}: {outcome.url_count} link(s), "
                f"{outcome.known_count} known, {len(new_urls)} new "
                f"(empty={state.consecutive_empty_pages}, "
                f"dup={state.consecutive_duplicate_pages})"
                f"{' [fetch failed, counted as empty]' if outcome.fetch_failed else ''}"
            )

            if new_urls and on_new_urls is not None:
                await on_new_urls(page_number, new_urls)

            reason = termination_reason(state, self.thresholds)
            if reason:
                result.stop_reason = reason
                logger.info(f"[WALK] Stopping after page {page_number}: {reason}")
                break

            if self.page_delay > 0:
                delay = self._delay_fn(self.page_delay) if self._delay_fn else self.page_delay
                await self._sleep(delay)
        else:
            result.stop_reason = StopReason.RANGE_COMPLETE.value

        result.state = state
        logger.info(
            f"[WALK] Done: {result.pages_visited} page(s), {len(result.urls)} new URL(s), "
            f"reason={result.stop_reason}"
        )
        return result
