"""
Shared fakes for the harvester tests.

Nothing here touches the network or a browser: fetchers, sources and the
external services are in-memory stand-ins, sleeps are recorded instead of
awaited, and stores are SQLite ``:memory:``.
"""

import io
from typing import Callable, Dict, List, Optional

import pytest
from PIL import Image

from harvester.clients import DocumentUnderstanding, MatchScorer, TextQuality
from harvester.errors import NotFoundError
from harvester.fetcher import FetchedDocument, PageFetcher
from harvester.models import DetailRecord, MatchResult
from harvester.source import ListingSource, ParsedDetail
from harvester.store import SQLiteRecordStore


LIST_BASE = "https://list.test/page/"


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeFetcher(PageFetcher):
    """Returns an empty document for every URL unless told to fail."""

    def __init__(self, failures: Optional[Dict[str, List[BaseException]]] = None):
        # url -> errors raised on successive calls, then success
        self.failures = failures or {}
        self.calls: List[str] = []
        self.started = False
        self.closed = False

    async def fetch(self, url, wait_condition=None, timeout=None):
        self.calls.append(url)
        pending = self.failures.get(url)
        if pending:
            raise pending.pop(0)
        return FetchedDocument(url=url, html="")

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True


class FakeSource(ListingSource):
    """Listing pages and detail pages defined by plain dicts."""

    def __init__(
        self,
        listings: Optional[Dict[int, List[str]]] = None,
        details: Optional[Dict[str, ParsedDetail]] = None,
        detail_errors: Optional[Dict[str, BaseException]] = None,
    ):
        self.listings = listings or {}
        self.details = details or {}
        self.detail_errors = detail_errors or {}

    def page_url(self, page_number):
        return f"{LIST_BASE}{page_number}"

    def extract_candidate_urls(self, doc):
        page_number = int(doc.url.rsplit("/", 1)[-1])
        return list(self.listings.get(page_number, []))

    def parse_detail(self, doc):
        if doc.url in self.detail_errors:
            raise self.detail_errors[doc.url]
        if doc.url in self.details:
            return self.details[doc.url]
        return ParsedDetail(title=f"Title {doc.url.rsplit('/', 1)[-1]}", body_text=f"Body of {doc.url}")


class FakeOCR(DocumentUnderstanding):
    """OCR stand-in; ``responder`` maps the call number and image ref to text or an error."""

    def __init__(self, responder: Optional[Callable[[int, str], object]] = None):
        self.responder = responder or (lambda n, ref: f"ocr text {n}")
        self.calls: List[str] = []

    async def ocr(self, image_ref):
        self.calls.append(image_ref)
        result = self.responder(len(self.calls), image_ref)
        if isinstance(result, BaseException):
            raise result
        return result


class FakeRewriter(TextQuality):
    def __init__(self, error: Optional[BaseException] = None, prefix: str = "REWRITTEN: "):
        self.error = error
        self.prefix = prefix
        self.calls: List[str] = []

    async def rewrite(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.prefix + text


class FakeScorer(MatchScorer):
    """Scores every record 50; fails on the call numbers in ``fail_on``."""

    def __init__(self, fail_on: Optional[Dict[int, BaseException]] = None):
        self.fail_on = fail_on or {}
        self.batches: List[List[int]] = []

    async def score(self, profile, batch):
        self.batches.append([r.id for r in batch])
        error = self.fail_on.get(len(self.batches))
        if error is not None:
            raise error
        return [
            MatchResult(id=r.id, score=50, reason="ok", strength="s", weakness="w", recommend=r.id % 2 == 0)
            for r in batch
        ]


def make_png(width: int, height: int, color=(255, 255, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def detail_urls(n: int, prefix: str = "https://site.test/item/") -> List[str]:
    return [f"{prefix}{i}" for i in range(n)]


def seed_records(store: SQLiteRecordStore, n: int) -> List[int]:
    return [store.insert(DetailRecord(url=url, title=f"t{i}")) for i, url in enumerate(detail_urls(n))]


@pytest.fixture
def store():
    s = SQLiteRecordStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def sleep():
    return RecordingSleep()
