"""
Local Text Cleaner
==================
Deterministic cleanup of scraped and OCR-produced text.

``clean_text`` is pure and total: it never raises, ``None`` becomes ``""``,
and the pass is iterated until the output stops changing, so
``clean_text(clean_text(s)) == clean_text(s)`` holds for every input.
"""

import html
import logging
import re

logger = logging.getLogger(__name__)

_BREAK_TAG_RE = re.compile(r'<\s*(?:br|/p|/div|/li|/tr|/h[1-6])\s*/?\s*>', re.IGNORECASE)
_TAG_RE = re.compile(r'<[^<>]*>')

_CHECKMARK_RE = re.compile(r'\$\s*\\checkmark\s*\$')
_PERCENT_RE = re.compile(r'\$\s*(\d+(?:\.\d+)?)\s*\\%\s*\$')

_TABLE_SEPARATOR_RE = re.compile(r'^\|?\s*:?-{2,}:?\s*(?:\|\s*:?-{2,}:?\s*)*\|?$')

_SYMBOL_RUN_RE = re.compile(r'(?<!\S)[~@#*=_^+]{2,}(?!\S)')
_JAMO_RUN_RE = re.compile(r'[ㄱ-ㅎㅏ-ㅣ]{2,}')

_LINK_RE = re.compile(r'(https?://\S+|[\w.%+-]+@[\w.-]+\.[A-Za-z]{2,})')

_HSPACE_RE = re.compile(r'[ \t\f\v　]+')
_LEADING_GLYPH_RE = re.compile(r'^(?:[-•*▶►■●★☆◆◇□○◎▷#·][ \t]*)+', re.MULTILINE)
_BLANK_LINES_RE = re.compile(r'\n{3,}')


def _unescape(text: str) -> str:
    """Decode entities until none remain (handles ``&amp;lt;`` style nesting)."""
    # Every decode that changes the text shortens it, so this terminates
    while True:
        decoded = html.unescape(text)
        if decoded == text:
            break
        text = decoded
    return text.replace('\xa0', ' ')


def _strip_tags(text: str) -> str:
    text = _BREAK_TAG_RE.sub('\n', text)
    while True:
        stripped = _TAG_RE.sub(' ', text)
        if stripped == text:
            return text
        text = stripped


def _flatten_tables(text: str) -> str:
    """Pipe-table rows become one line per non-empty cell; separator rows go."""
    lines = []
    for line in text.split('\n'):
        candidate = line.strip()
        if candidate.startswith('|') and candidate.count('|') >= 2:
            if _TABLE_SEPARATOR_RE.match(candidate):
                continue
            cells = [c.strip() for c in candidate.strip('|').split('|')]
            lines.extend(c for c in cells if c)
        else:
            lines.append(line)
    return '\n'.join(lines)


def _clean_once(text: str) -> str:
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = _unescape(text)
    text = _strip_tags(text)

    text = _CHECKMARK_RE.sub('✓', text)
    text = _PERCENT_RE.sub(r'\1%', text)

    text = _flatten_tables(text)

    text = _SYMBOL_RUN_RE.sub(' ', text)
    text = _JAMO_RUN_RE.sub('', text)

    text = _LINK_RE.sub(r' \1 ', text)

    text = '\n'.join(_HSPACE_RE.sub(' ', line).strip() for line in text.split('\n'))
    text = _LEADING_GLYPH_RE.sub('', text)

    text = _BLANK_LINES_RE.sub('\n\n', text)
    return text.strip()


def clean_text(text) -> str:
    """
    Clean a scraped or OCR-produced text.

    Steps: normalize newlines, decode entities, strip markup, convert LaTeX
    artefacts, flatten pipe tables, drop decoration symbol runs and stray
    jamo, pad links, collapse whitespace, strip leading bullets, cap blank
    lines at one.
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    # Run to a fixpoint. Passes never lengthen the text beyond one pad per
    # link, so the sequence settles; ``seen`` guards against a cycle.
    seen = set()
    while True:
        cleaned = _clean_once(text)
        if cleaned == text:
            return cleaned
        if cleaned in seen:
            logger.warning("[CLEAN] cleanup passes cycled; returning last result")
            return cleaned
        seen.add(text)
        text = cleaned
