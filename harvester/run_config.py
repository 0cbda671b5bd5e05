"""
Harvest Run Configuration
=========================
Single source of truth for every harvester default and runtime limit.

Populated in layers: dataclass defaults, then ``HARVESTER_*`` environment
variables (``.env`` is loaded by ``__main__`` first), then CLI flags.
Per-component config objects are built *from* it via ``to_*`` helpers.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "HARVESTER_"


# ---------------------------------------------------------------------------
# Canonical defaults, the only place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Page range
    "start_page": 1,
    "end_page": None,                # None = walk until a heuristic fires
    # Termination heuristics
    "empty_threshold": 3,
    "duplicate_threshold": 3,
    "min_sample": 5,                 # pages with fewer URLs never count as duplicate
    # Pacing (seconds)
    "page_delay": 0.0,
    "detail_delay": 5.0,
    "humanized_delay": True,         # jitter delays by +/- 25%
    # Batch scoring
    "batch_size": 10,
    "batch_cooldown": 3.0,
    # Image tiling
    "max_image_bytes": 45 * 1024 * 1024,
    "max_tile_width": 4000,
    "max_tile_height": 4000,
    "tile_overlap": 200,
    "tile_concurrency": 4,
    "rewrite_min_chars": 10,
    # Retry policies per call site
    "api_max_retries": 3,
    "api_initial_backoff": 2.0,
    "api_max_backoff": 15.0,
    "detail_max_retries": 2,
    "detail_retry_delay": 3.0,
    # Fetcher
    "use_browser": True,
    "headless": True,
    "timeout_seconds": 30,
    "enable_static_fallback": True,
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    # Listing source selectors
    "listing_url_template": "",
    "link_selector": "a[href]",
    "title_selector": "h1",
    "body_selector": "main",
    "field_selector": "dl",
    "image_selector": "img[src]",
    "list_wait_selector": None,
    "detail_wait_selector": None,
    "keep_params": "",               # comma-separated query params identifying an item
    # Storage
    "db_path": "harvest.db",
    # External API
    "api_key": None,
    "api_base_url": "https://api.mistral.ai/v1",
    "api_timeout": 120,
    "ocr_model": "mistral-ocr-latest",
    "chat_model": "mistral-small-latest",
    "enable_rewrite": True,
    # Scoring inputs (opaque text files)
    "profile_path": None,
    "instructions_path": None,
}

# Environment names that do not follow the HARVESTER_<FIELD> pattern
_ENV_ALIASES = {
    "api_key": "MISTRAL_API_KEY",
}


def _coerce(name: str, raw: str):
    """Convert an environment string to the type of the field's default."""
    default = _DEFAULTS[name]
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if name == "end_page":
        return int(raw) if raw.strip() else None
    if default is None:
        return raw or None
    return raw


@dataclass
class HarvestRunConfig:
    """
    Unified configuration consumed by every harvester component.

    Populate via:
      - ``HarvestRunConfig()``                   -> all defaults
      - ``HarvestRunConfig.from_env()``          -> defaults + environment
      - ``cfg.with_cli_args(ns)``                -> overlay argparse values
    """

    # ---- Page range ----
    start_page: int = _DEFAULTS["start_page"]
    end_page: Optional[int] = _DEFAULTS["end_page"]

    # ---- Termination ----
    empty_threshold: int = _DEFAULTS["empty_threshold"]
    duplicate_threshold: int = _DEFAULTS["duplicate_threshold"]
    min_sample: int = _DEFAULTS["min_sample"]

    # ---- Pacing ----
    page_delay: float = _DEFAULTS["page_delay"]
    detail_delay: float = _DEFAULTS["detail_delay"]
    humanized_delay: bool = _DEFAULTS["humanized_delay"]

    # ---- Batch scoring ----
    batch_size: int = _DEFAULTS["batch_size"]
    batch_cooldown: float = _DEFAULTS["batch_cooldown"]

    # ---- Image tiling ----
    max_image_bytes: int = _DEFAULTS["max_image_bytes"]
    max_tile_width: int = _DEFAULTS["max_tile_width"]
    max_tile_height: int = _DEFAULTS["max_tile_height"]
    tile_overlap: int = _DEFAULTS["tile_overlap"]
    tile_concurrency: int = _DEFAULTS["tile_concurrency"]
    rewrite_min_chars: int = _DEFAULTS["rewrite_min_chars"]

    # ---- Retry ----
    api_max_retries: int = _DEFAULTS["api_max_retries"]
    api_initial_backoff: float = _DEFAULTS["api_initial_backoff"]
    api_max_backoff: float = _DEFAULTS["api_max_backoff"]
    detail_max_retries: int = _DEFAULTS["detail_max_retries"]
    detail_retry_delay: float = _DEFAULTS["detail_retry_delay"]

    # ---- Fetcher ----
    use_browser: bool = _DEFAULTS["use_browser"]
    headless: bool = _DEFAULTS["headless"]
    timeout_seconds: int = _DEFAULTS["timeout_seconds"]
    enable_static_fallback: bool = _DEFAULTS["enable_static_fallback"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Listing source ----
    listing_url_template: str = _DEFAULTS["listing_url_template"]
    link_selector: str = _DEFAULTS["link_selector"]
    title_selector: str = _DEFAULTS["title_selector"]
    body_selector: str = _DEFAULTS["body_selector"]
    field_selector: str = _DEFAULTS["field_selector"]
    image_selector: str = _DEFAULTS["image_selector"]
    list_wait_selector: Optional[str] = _DEFAULTS["list_wait_selector"]
    detail_wait_selector: Optional[str] = _DEFAULTS["detail_wait_selector"]
    keep_params: str = _DEFAULTS["keep_params"]

    # ---- Storage ----
    db_path: str = _DEFAULTS["db_path"]

    # ---- External API ----
    api_key: Optional[str] = _DEFAULTS["api_key"]
    api_base_url: str = _DEFAULTS["api_base_url"]
    api_timeout: int = _DEFAULTS["api_timeout"]
    ocr_model: str = _DEFAULTS["ocr_model"]
    chat_model: str = _DEFAULTS["chat_model"]
    enable_rewrite: bool = _DEFAULTS["enable_rewrite"]

    # ---- Scoring inputs ----
    profile_path: Optional[str] = _DEFAULTS["profile_path"]
    instructions_path: Optional[str] = _DEFAULTS["instructions_path"]

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HarvestRunConfig":
        """Defaults overlaid with ``HARVESTER_<FIELD>`` variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in _DEFAULTS:
            env_name = _ENV_ALIASES.get(name, ENV_PREFIX + name.upper())
            raw = environ.get(env_name)
            if raw is None:
                continue
            try:
                values[name] = _coerce(name, raw)
            except ValueError as e:
                raise ConfigurationError(f"{env_name}={raw!r} is not valid: {e}") from e
        return cls(**values)

    def with_cli_args(self, args) -> "HarvestRunConfig":
        """Copy with every non-None argparse attribute that names a field applied."""
        names = {f.name for f in dataclasses.fields(self)}
        overrides = {
            name: value
            for name, value in vars(args).items()
            if name in names and value is not None
        }
        return dataclasses.replace(self, **overrides)

    @classmethod
    def from_cli_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "HarvestRunConfig":
        """Environment first, then CLI flags on top (``__main__.py``)."""
        return cls.from_env(environ).with_cli_args(args)

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------
    def validate(self, need_crawl: bool = True, need_scoring: bool = False) -> None:
        """Raise ConfigurationError for anything that would fail mid-run."""
        if self.start_page < 1:
            raise ConfigurationError(f"start_page must be >= 1, got {self.start_page}")
        if self.end_page is not None and self.end_page < self.start_page:
            raise ConfigurationError(
                f"end_page ({self.end_page}) is before start_page ({self.start_page})"
            )
        for name in ("empty_threshold", "duplicate_threshold", "min_sample",
                     "batch_size", "tile_concurrency", "max_tile_width", "max_tile_height"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.tile_overlap < 0 or self.tile_overlap >= self.max_tile_height:
            raise ConfigurationError(
                f"tile_overlap must be in [0, max_tile_height), got {self.tile_overlap}"
            )
        if self.max_image_bytes < 1:
            raise ConfigurationError("max_image_bytes must be positive")

        if need_crawl and "{page}" not in (self.listing_url_template or ""):
            raise ConfigurationError(
                "listing_url_template must be set and contain '{page}' "
                "(HARVESTER_LISTING_URL_TEMPLATE or --listing-url)"
            )
        if need_scoring:
            if not self.api_key:
                raise ConfigurationError("MISTRAL_API_KEY is required for scoring")
            for name in ("profile_path", "instructions_path"):
                path = getattr(self, name)
                if not path or not os.path.isfile(path):
                    raise ConfigurationError(f"{name} must point to an existing file, got {path!r}")

    # -----------------------------------------------------------------------
    # Converters to component config objects
    # -----------------------------------------------------------------------
    def to_page_range(self):
        from .walker import PageRange
        return PageRange(start=self.start_page, end=self.end_page)

    def to_walker_thresholds(self):
        from .walker import WalkerThresholds
        return WalkerThresholds(
            empty_threshold=self.empty_threshold,
            duplicate_threshold=self.duplicate_threshold,
            min_sample=self.min_sample,
        )

    def to_fetcher_config(self):
        from .fetcher import FetcherConfig
        return FetcherConfig(
            headless=self.headless,
            timeout_seconds=float(self.timeout_seconds),
            enable_static_fallback=self.enable_static_fallback,
            user_agent=self.user_agent,
        )

    def to_source_config(self):
        from .source import SourceConfig
        return SourceConfig(
            listing_url_template=self.listing_url_template,
            link_selector=self.link_selector,
            title_selector=self.title_selector,
            body_selector=self.body_selector,
            field_selector=self.field_selector,
            image_selector=self.image_selector,
            list_wait_selector=self.list_wait_selector,
            detail_wait_selector=self.detail_wait_selector,
            keep_params=tuple(p.strip() for p in self.keep_params.split(",") if p.strip()),
        )

    def to_tiling_limits(self):
        from .segments import TilingLimits
        return TilingLimits(
            max_bytes=self.max_image_bytes,
            max_width=self.max_tile_width,
            max_height=self.max_tile_height,
            overlap=self.tile_overlap,
        )

    def to_retry_policy(self, call_site: str):
        """Policy for "ocr", "rewrite", "scoring" or "detail"."""
        from .retry import RetryPolicy
        if call_site == "detail":
            return RetryPolicy.fixed(self.detail_max_retries, self.detail_retry_delay)
        if call_site in ("ocr", "rewrite", "scoring"):
            return RetryPolicy(
                max_retries=self.api_max_retries,
                initial_backoff=self.api_initial_backoff,
                max_backoff=self.api_max_backoff,
            )
        raise ConfigurationError(f"unknown retry call site: {call_site!r}")

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        end = self.end_page if self.end_page is not None else "open"
        logger.info("=" * 60)
        logger.info("HARVEST RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Listing:          {self.listing_url_template or '(not set)'}")
        logger.info(f"  Pages:            {self.start_page} .. {end}")
        logger.info(f"  Stop after:       {self.empty_threshold} empty / "
                    f"{self.duplicate_threshold} duplicate page(s) (min sample {self.min_sample})")
        logger.info(f"  Delays:           page {self.page_delay}s, detail {self.detail_delay}s"
                    f"{' (humanized)' if self.humanized_delay else ''}")
        logger.info(f"  Fetcher:          {'Playwright' if self.use_browser else 'requests'}"
                    f" (timeout {self.timeout_seconds}s, static fallback {self.enable_static_fallback})")
        logger.info(f"  Tiling:           {self.max_tile_width}x{self.max_tile_height}, "
                    f"overlap {self.tile_overlap}px, {self.max_image_bytes // (1024 * 1024)} MB, "
                    f"{self.tile_concurrency} concurrent")
        logger.info(f"  Retry (API):      {self.api_max_retries}x, "
                    f"{self.api_initial_backoff}s -> {self.api_max_backoff}s")
        logger.info(f"  Retry (detail):   {self.detail_max_retries}x, {self.detail_retry_delay}s")
        logger.info(f"  Batch:            {self.batch_size} per batch, cooldown {self.batch_cooldown}s")
        logger.info(f"  Database:         {self.db_path}")
        logger.info(f"  API key:          {'set' if self.api_key else 'NOT SET'}")
        logger.info("=" * 60)
