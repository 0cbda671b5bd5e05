"""
Harvest Data Model
==================
Plain dataclasses shared by every stage of the pipeline.

- ``DetailRecord``: one harvested item, enriched before first persistence
- ``ImageSegment``: one tile of an oversized image plus its OCR text
- ``CrawlState``: immutable termination counters for one listing walk
- ``BatchProgress``: counters for one scheduler invocation
- ``MatchResult``: scorer output applied back onto a record
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# A normalized absolute URL discovered on a listing page.
CandidateURL = str


class Provenance(str, Enum):
    """How the body text of a record was obtained."""
    TEXT = "text"
    TEXT_OCR = "text+ocr"


class StopReason(str, Enum):
    """Why a listing walk ended."""
    EXHAUSTED_EMPTY = "exhausted-empty"
    EXHAUSTED_DUPLICATE = "exhausted-duplicate"
    RANGE_COMPLETE = "range-complete"
    CANCELLED = "cancelled"


# String answers a scorer may give for a yes/no flag
_TRUE_STRINGS = {"true", "y", "yes", "1"}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DetailRecord:
    """A single harvested item."""
    url: str
    title: str = ""
    fields: Dict[str, str] = field(default_factory=dict)
    raw_text: str = ""
    body_text: str = ""
    provenance: str = Provenance.TEXT.value
    scraped_at: str = field(default_factory=_utcnow)

    # Assigned by the store
    id: Optional[int] = None

    # Match fields (written by the batch scheduler)
    checked: bool = False
    match_score: Optional[float] = None
    match_reason: str = ""
    strength: str = ""
    weakness: str = ""
    recommended: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    def to_flat_dict(self) -> dict:
        """Flat representation for CSV export."""
        flat = {k: v for k, v in asdict(self).items() if k != "fields"}
        for label, value in self.fields.items():
            flat[f"field:{label}"] = value
        return flat


@dataclass
class EmbeddedImage:
    """An image referenced from a detail body, downloaded and measured."""
    url: str
    data: bytes = b""
    width: int = 0
    height: int = 0
    mime: str = "image/png"

    @property
    def byte_size(self) -> int:
        return len(self.data)


@dataclass
class ImageSegment:
    """A tile rectangle over a source image plus its extracted text."""
    index: int
    left: int
    top: int
    width: int
    height: int
    text: str = ""

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def box(self) -> tuple:
        """Pillow crop box (left, upper, right, lower)."""
        return (self.left, self.top, self.right, self.bottom)


@dataclass(frozen=True)
class CrawlState:
    """Termination counters for one listing walk.

    Never mutated in place: ``walker.advance`` returns a new value per page.
    """
    consecutive_empty_pages: int = 0
    consecutive_duplicate_pages: int = 0


@dataclass(frozen=True)
class PageOutcome:
    """What a single listing page contributed to the walk."""
    page_number: int
    url_count: int = 0
    known_count: int = 0
    fetch_failed: bool = False


@dataclass
class WalkResult:
    """Result of ``ListingWalker.walk``."""
    urls: List[CandidateURL] = field(default_factory=list)
    stop_reason: str = StopReason.RANGE_COMPLETE.value
    pages_visited: int = 0
    state: CrawlState = field(default_factory=CrawlState)


@dataclass
class BatchProgress:
    """Counters for one scheduler invocation."""
    total_unmatched: int = 0
    total_processed: int = 0
    batch_number: int = 0
    stop_reason: str = ""


@dataclass
class MatchResult:
    """Scorer output for one record."""
    id: int
    score: float = 0.0
    reason: str = ""
    strength: str = ""
    weakness: str = ""
    recommend: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchResult":
        # Scorers answer with either ``recommend`` or the older ``apply_yn``.
        recommend = data.get("recommend", data.get("apply_yn", False))
        if isinstance(recommend, str):
            recommend = recommend.strip().lower() in _TRUE_STRINGS
        return cls(
            id=int(data["id"]),
            score=float(data.get("score", 0) or 0),
            reason=str(data.get("reason", "") or ""),
            strength=str(data.get("strength", "") or ""),
            weakness=str(data.get("weakness", "") or ""),
            recommend=bool(recommend),
        )


@dataclass
class RunReport:
    """Summary of one orchestrated run."""
    pages_visited: int = 0
    urls_discovered: int = 0
    records_saved: int = 0
    harvest_failures: int = 0
    stop_reason: str = ""
    batch_progress: Optional[BatchProgress] = None
    elapsed_sec: float = 0.0
    saved_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
