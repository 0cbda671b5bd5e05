"""
Utility Functions
URL canonicalization and small helpers shared by the listing and detail stages.
"""

import logging
import random
import re
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)


class URLNormalizer:
    """
    Turns raw hrefs into canonical candidate URLs.

    Two hrefs that point at the same item must produce the same string,
    otherwise the dedup store sees them as different records.
    """

    # Query parameters that identify the visitor, not the item
    TRACKING_PARAMS = {
        'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
        'fbclid', 'gclid', 'ref', 'mc_cid', 'mc_eid',
        '_ga', '_gid', 'dclid', 'zanpid', 'epik',
    }

    # Links to these are never detail pages
    SKIP_EXTENSIONS = {
        '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico',
        '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx', '.hwp',
        '.zip', '.rar', '.tar', '.gz', '.7z',
        '.mp3', '.mp4', '.avi', '.mov', '.webm',
        '.css', '.js', '.json', '.xml', '.rss',
    }

    def __init__(
        self,
        remove_tracking_params: bool = True,
        keep_params: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            remove_tracking_params: Drop TRACKING_PARAMS from the query
            keep_params: If given, keep only these query parameters
                (useful when a listing decorates item links with paging state)
        """
        self.remove_tracking_params = remove_tracking_params
        self.keep_params = {p.lower() for p in keep_params} if keep_params else None

    def normalize(self, url: str, base_url: str = None) -> Optional[str]:
        """
        Canonicalize ``url``, resolving it against ``base_url`` if relative.

        Returns:
            Canonical absolute URL, or None for non-http(s) or resource links
        """
        if not url:
            return None

        url = url.strip()
        if url.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:', '#')):
            return None

        if base_url:
            url = urljoin(base_url, url)

        try:
            parsed = urlparse(url)
        except ValueError:
            return None

        if parsed.scheme.lower() not in ('http', 'https') or not parsed.netloc:
            return None

        path = re.sub(r'/+', '/', parsed.path or '/')
        if path != '/' and path.endswith('/'):
            path = path.rstrip('/')

        lower_path = path.lower()
        if any(lower_path.endswith(ext) for ext in self.SKIP_EXTENSIONS):
            return None

        query = parsed.query
        if query:
            pairs = parse_qsl(query, keep_blank_values=True)
            if self.keep_params is not None:
                pairs = [(k, v) for k, v in pairs if k.lower() in self.keep_params]
            elif self.remove_tracking_params:
                pairs = [(k, v) for k, v in pairs if k.lower() not in self.TRACKING_PARAMS]
            query = urlencode(pairs, doseq=True)

        return urlunparse((
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            path,
            parsed.params,
            query,
            '',
        ))

    def normalize_all(self, urls: Iterable[str], base_url: str = None) -> List[str]:
        """Normalize many hrefs, dropping invalid ones and keeping first-seen order."""
        seen = set()
        result = []
        for raw in urls:
            normalized = self.normalize(raw, base_url)
            if normalized and normalized not in seen:
                seen.add(normalized)
                result.append(normalized)
        return result


def humanized_delay(base: float, spread: float = 0.25) -> float:
    """Jitter ``base`` by +/- ``spread`` so request timing is not metronomic."""
    if base <= 0:
        return 0.0
    return max(0.0, base + random.uniform(-base * spread, base * spread))


def truncate(text: str, limit: int = 80) -> str:
    """Shorten text for log lines."""
    if not text:
        return ""
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."
