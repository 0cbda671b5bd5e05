"""
Page Fetchers
=============
Retrieve listing and detail pages as HTML.

- ``PlaywrightFetcher``: one headless Chromium page reused for every
  fetch (listing and detail pages are strictly sequential), static
  fallback on navigation timeout.
- ``StaticFetcher``: plain ``requests`` with browser-like headers.

Both map transport failures onto the error taxonomy so callers can
decide whether to retry, skip, or abort.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from .errors import HarvestError, TransientNetworkError, error_for_status

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


@dataclass
class FetchedDocument:
    """HTML of one fetched page."""
    url: str
    html: str
    status: int = 200


@dataclass
class FetcherConfig:
    headless: bool = True
    timeout_seconds: float = 30.0
    enable_static_fallback: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080
    accept_language: str = "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7"


class PageFetcher(ABC):
    """Fetches one page at a time."""

    @abstractmethod
    async def fetch(
        self,
        url: str,
        wait_condition: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FetchedDocument:
        """
        Fetch ``url``.

        Args:
            url: Absolute page URL
            wait_condition: CSS selector that must appear before the HTML is
                captured (ignored by fetchers that do not render)
            timeout: Seconds; falls back to the fetcher's configured timeout

        Raises:
            HarvestError subclasses (transient, not-found, malformed, ...)
        """

    async def start(self) -> None:
        """Acquire resources (browser, session). No-op by default."""

    async def close(self) -> None:
        """Release resources. No-op by default."""


class StaticFetcher(PageFetcher):
    """``requests`` fetcher; blocking calls run in the default executor."""

    def __init__(self, config: Optional[FetcherConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or FetcherConfig()
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': self.config.user_agent,
            'Accept': 'text/html,application/xhtml+xml',
            'Accept-Language': self.config.accept_language,
        })

    def _sync_fetch(self, url: str, timeout: float) -> FetchedDocument:
        try:
            response = self.session.get(url, timeout=timeout)
        except requests.RequestException as e:
            raise TransientNetworkError(f"GET {url}: {e}") from e

        if response.status_code >= 400:
            raise error_for_status(response.status_code, f"GET {url} -> HTTP {response.status_code}")
        return FetchedDocument(url=response.url or url, html=response.text, status=response.status_code)

    async def fetch(
        self,
        url: str,
        wait_condition: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FetchedDocument:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self._sync_fetch, url, timeout or self.config.timeout_seconds
        )

    async def close(self) -> None:
        self.session.close()


class PlaywrightFetcher(PageFetcher):
    """
    Headless Chromium through async Playwright.

    A single page is opened in ``start()`` and reused; navigation timeouts
    fall back to ``StaticFetcher`` when ``enable_static_fallback`` is set.
    """

    def __init__(self, config: Optional[FetcherConfig] = None):
        self.config = config or FetcherConfig()
        self._static = StaticFetcher(self.config) if self.config.enable_static_fallback else None
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    async def start(self) -> None:
        if self._page is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=[
                '--disable-gpu',
                '--no-sandbox',
                '--disable-dev-shm-usage',
                '--disable-extensions',
                '--no-first-run',
            ]
        )
        self._context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport={
                'width': self.config.viewport_width,
                'height': self.config.viewport_height,
            },
            extra_http_headers={'Accept-Language': self.config.accept_language},
        )
        self._page = await self._context.new_page()
        logger.info(f"Playwright browser initialized (headless={self.config.headless})")

    async def fetch(
        self,
        url: str,
        wait_condition: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FetchedDocument:
        if self._page is None:
            await self.start()

        timeout_ms = int((timeout or self.config.timeout_seconds) * 1000)
        try:
            response = await self._page.goto(url, wait_until='domcontentloaded', timeout=timeout_ms)
            if response is not None and response.status >= 400:
                raise error_for_status(response.status, f"GET {url} -> HTTP {response.status}")
            if wait_condition:
                await self._page.wait_for_selector(wait_condition, timeout=timeout_ms)
            html = await self._page.content()
            return FetchedDocument(
                url=self._page.url or url,
                html=html,
                status=response.status if response is not None else 200,
            )

        except PlaywrightTimeout as e:
            logger.warning(f"[TIMEOUT] {url[:70]}")
            if self._static is not None:
                logger.info(f"[STATIC-FALLBACK] {url[:70]}")
                return await self._static.fetch(url, timeout=timeout)
            raise TransientNetworkError(f"navigation timeout: {url}") from e

        except HarvestError:
            raise

        except PlaywrightError as e:
            raise TransientNetworkError(f"browser error on {url}: {e}") from e

    async def close(self) -> None:
        for name in ('_page', '_context', '_browser'):
            resource = getattr(self, name)
            if resource is not None:
                try:
                    await resource.close()
                except PlaywrightError as e:
                    logger.debug(f"Error closing {name.strip('_')}: {e}")
                setattr(self, name, None)
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        if self._static is not None:
            await self._static.close()
