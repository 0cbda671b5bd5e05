"""
Listing Harvester
Incrementally harvests paginated listing records, extracts each item at
most once, enriches oversized embedded images through a size-constrained
OCR service, and re-scores unchecked records in batches.

CLI Usage:
    python -m harvester crawl --listing-url "https://example.com/list?page={page}"
    python -m harvester score --profile profile.md --instructions rubric.md
    python -m harvester recent --limit 50 --output-csv recent.csv
"""

from .models import (
    DetailRecord,
    ImageSegment,
    EmbeddedImage,
    CrawlState,
    PageOutcome,
    WalkResult,
    BatchProgress,
    MatchResult,
    RunReport,
    StopReason,
    Provenance,
)
from .errors import (
    HarvestError,
    TransientNetworkError,
    RateLimitedError,
    ExternalServiceUnavailableError,
    NotFoundError,
    MalformedContentError,
    ParseFailureError,
    ConfigurationError,
    RetryExhaustedError,
)
from .segments import TilingLimits, plan_segments, needs_tiling, reassemble
from .retry import RetryGateway, RetryPolicy
from .text_cleaner import clean_text
from .enrichment import DocumentEnrichmentService, EnrichmentResult
from .store import RecordStore, SQLiteRecordStore
from .walker import ListingWalker, PageRange, WalkerThresholds, advance, termination_reason
from .detail import DetailHarvester
from .scheduler import BatchEnrichmentScheduler
from .orchestrator import CrawlOrchestrator, HarvestContext
from .run_config import HarvestRunConfig
from .utils import URLNormalizer

__all__ = [
    # Data model
    'DetailRecord',
    'ImageSegment',
    'EmbeddedImage',
    'CrawlState',
    'PageOutcome',
    'WalkResult',
    'BatchProgress',
    'MatchResult',
    'RunReport',
    'StopReason',
    'Provenance',
    # Errors
    'HarvestError',
    'TransientNetworkError',
    'RateLimitedError',
    'ExternalServiceUnavailableError',
    'NotFoundError',
    'MalformedContentError',
    'ParseFailureError',
    'ConfigurationError',
    'RetryExhaustedError',
    # Pipeline
    'TilingLimits',
    'plan_segments',
    'needs_tiling',
    'reassemble',
    'RetryGateway',
    'RetryPolicy',
    'clean_text',
    'DocumentEnrichmentService',
    'EnrichmentResult',
    'RecordStore',
    'SQLiteRecordStore',
    'ListingWalker',
    'PageRange',
    'WalkerThresholds',
    'advance',
    'termination_reason',
    'DetailHarvester',
    'BatchEnrichmentScheduler',
    'CrawlOrchestrator',
    'HarvestContext',
    'HarvestRunConfig',
    'URLNormalizer',
]

__version__ = '1.0.0'
