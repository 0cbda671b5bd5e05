"""
Listing Source
==============
Site knowledge lives here, as configuration: how to build a listing page
URL, which anchors on it are detail links, and where title, structured
fields, body text and embedded images sit on a detail page.

``SelectorListingSource`` is driven entirely by CSS selectors and parses
with BeautifulSoup + lxml. Other sites plug in by subclassing
``ListingSource``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment

from .errors import ConfigurationError, ParseFailureError
from .fetcher import FetchedDocument
from .models import CandidateURL
from .utils import URLNormalizer

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"


@dataclass
class ParsedDetail:
    """What a detail page yields before enrichment."""
    title: str = ""
    fields: Dict[str, str] = field(default_factory=dict)
    body_text: str = ""
    image_urls: List[str] = field(default_factory=list)


@dataclass
class SourceConfig:
    """CSS selectors describing one listing site."""
    listing_url_template: str = ""          # must contain "{page}"
    link_selector: str = "a[href]"
    title_selector: str = "h1"
    body_selector: str = "main"
    field_selector: str = "dl"
    image_selector: str = "img[src]"
    list_wait_selector: Optional[str] = None
    detail_wait_selector: Optional[str] = None
    keep_params: Tuple[str, ...] = ()        # query params that identify an item

    def validate(self) -> None:
        if "{page}" not in self.listing_url_template:
            raise ConfigurationError(
                f"listing_url_template must contain '{{page}}': {self.listing_url_template!r}"
            )
        for name in ("link_selector", "title_selector", "body_selector"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} is empty")


class ListingSource(ABC):
    """Site-specific extraction behind a narrow interface."""

    list_wait_selector: Optional[str] = None
    detail_wait_selector: Optional[str] = None

    @abstractmethod
    def page_url(self, page_number: int) -> str:
        """URL of listing page ``page_number`` (1-based)."""

    @abstractmethod
    def extract_candidate_urls(self, doc: FetchedDocument) -> List[CandidateURL]:
        """Normalized detail URLs on a listing page, in page order, deduplicated."""

    @abstractmethod
    def parse_detail(self, doc: FetchedDocument) -> ParsedDetail:
        """Parse a detail page. Raises ParseFailureError if it has no content."""


class SelectorListingSource(ListingSource):
    """Listing source configured purely by CSS selectors."""

    # Never part of the item text
    STRIP_TAGS = {'script', 'style', 'noscript', 'template', 'svg', 'canvas', 'button', 'form'}

    def __init__(self, config: SourceConfig, normalizer: Optional[URLNormalizer] = None):
        config.validate()
        self.config = config
        self.normalizer = normalizer or URLNormalizer(keep_params=config.keep_params or None)
        self.list_wait_selector = config.list_wait_selector
        self.detail_wait_selector = config.detail_wait_selector

    def page_url(self, page_number: int) -> str:
        return self.config.listing_url_template.format(page=page_number)

    def extract_candidate_urls(self, doc: FetchedDocument) -> List[CandidateURL]:
        soup = BeautifulSoup(doc.html, _BS_PARSER)
        hrefs = [a.get('href', '') for a in soup.select(self.config.link_selector)]
        urls = self.normalizer.normalize_all(hrefs, base_url=doc.url)
        logger.debug(f"[LIST] {len(urls)} candidate(s) on {doc.url[:70]}")
        return urls

    def parse_detail(self, doc: FetchedDocument) -> ParsedDetail:
        soup = BeautifulSoup(doc.html, _BS_PARSER)
        self._remove_unwanted_elements(soup)

        title = self._extract_title(soup)
        fields = self._extract_fields(soup)

        body = soup.select_one(self.config.body_selector)
        body_text = ""
        image_urls: List[str] = []
        if body is not None:
            image_urls = self._extract_images(body, doc.url)
            body_text = body.get_text(separator='\n', strip=True)

        if not title and not body_text and not image_urls:
            raise ParseFailureError(f"no title or body found on {doc.url}")

        return ParsedDetail(title=title, fields=fields, body_text=body_text, image_urls=image_urls)

    def _remove_unwanted_elements(self, soup: BeautifulSoup) -> None:
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()
        for tag in self.STRIP_TAGS:
            for element in soup.find_all(tag):
                element.decompose()

    def _extract_title(self, soup: BeautifulSoup) -> str:
        node = soup.select_one(self.config.title_selector)
        if node:
            return ' '.join(node.get_text(separator=' ').split())
        og_title = soup.find('meta', property='og:title')
        if og_title and og_title.get('content'):
            return og_title['content'].strip()
        return ""

    def _extract_fields(self, soup: BeautifulSoup) -> Dict[str, str]:
        """Structured label/value pairs from ``<dt>``/``<dd>`` runs."""
        fields: Dict[str, str] = {}
        if not self.config.field_selector:
            return fields
        for container in soup.select(self.config.field_selector):
            for dt in container.find_all('dt'):
                dd = dt.find_next_sibling('dd')
                if dd is None:
                    continue
                label = ' '.join(dt.get_text(separator=' ').split())
                value = ' '.join(dd.get_text(separator=' ').split())
                if label and value and label not in fields:
                    fields[label] = value
        return fields

    def _extract_images(self, body, current_url: str) -> List[str]:
        urls = []
        for img in body.select(self.config.image_selector):
            src = (img.get('src') or img.get('data-src') or '').strip()
            if not src or src.startswith('data:'):
                continue
            absolute = urljoin(current_url, src)
            if absolute not in urls:
                urls.append(absolute)
        return urls
