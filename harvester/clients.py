"""
External API Clients
====================
Thin ``requests`` clients for the three external capabilities the pipeline
consumes through narrow interfaces:

    DocumentUnderstanding.ocr(image_ref) -> str
    TextQuality.rewrite(text) -> str
    MatchScorer.score(profile, batch) -> List[MatchResult]

The shipped implementations talk to a Mistral-style HTTP API. HTTP
failures are mapped onto the error taxonomy so the Retry Gateway can
decide what to retry; the clients themselves never retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .errors import (
    ConfigurationError,
    MalformedContentError,
    TransientNetworkError,
    error_for_status,
)
from .models import DetailRecord, MatchResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.mistral.ai/v1"
DEFAULT_OCR_MODEL = "mistral-ocr-latest"
DEFAULT_CHAT_MODEL = "mistral-small-latest"

REWRITE_INSTRUCTIONS = (
    "Rewrite the following text so it reads cleanly. Fix broken line wraps "
    "and spacing, keep every fact, number, URL and list item, do not add "
    "anything, and answer with the rewritten text only."
)

_JSON_ARRAY_RE = re.compile(r'\[[\s\S]*\]')
_JSON_OBJECT_RE = re.compile(r'\{[\s\S]*\}')


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class DocumentUnderstanding(ABC):
    """Turns an image (URL or data URL) into markdown-ish text."""

    @abstractmethod
    async def ocr(self, image_ref: str) -> str:
        ...


class TextQuality(ABC):
    """Best-effort readability rewrite of already-cleaned text."""

    @abstractmethod
    async def rewrite(self, text: str) -> str:
        ...


class MatchScorer(ABC):
    """Scores a batch of records against an opaque profile."""

    @abstractmethod
    async def score(self, profile: str, batch: List[DetailRecord]) -> List[MatchResult]:
        ...


# ---------------------------------------------------------------------------
# Mistral-style HTTP implementations
# ---------------------------------------------------------------------------

class MistralClient:
    """Shared session, auth and status mapping."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 120,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ConfigurationError("MISTRAL_API_KEY is not set")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def _sync_post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"POST {path}: {e}") from e
        except requests.RequestException as e:
            raise MalformedContentError(f"POST {path}: {e}") from e

        if resp.status_code >= 400:
            raise error_for_status(
                resp.status_code, f"POST {path} -> {resp.status_code}: {resp.text[:200]}"
            )

        try:
            return resp.json()
        except ValueError as e:
            raise MalformedContentError(f"POST {path}: response is not JSON") from e

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._sync_post, path, payload)

    async def _chat(self, model: str, system: str, user: str, temperature: float = 0.2) -> str:
        data = await self._post("/chat/completions", {
            "model": model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        })
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedContentError("chat response has no message content") from e

        # Newer models answer with a list of content chunks
        if isinstance(content, list):
            content = "".join(
                chunk.get("text", "") for chunk in content if isinstance(chunk, dict)
            )
        return content or ""

    def close(self) -> None:
        self.session.close()


class MistralOCRClient(MistralClient, DocumentUnderstanding):
    """OCR through the ``/ocr`` endpoint; pages are joined with blank lines."""

    def __init__(self, api_key: str, model: str = DEFAULT_OCR_MODEL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model

    async def ocr(self, image_ref: str) -> str:
        data = await self._post("/ocr", {
            "model": self.model,
            "document": {"type": "image_url", "image_url": image_ref},
        })
        pages = data.get("pages")
        if not isinstance(pages, list):
            raise MalformedContentError("OCR response has no pages")
        return "\n\n".join(
            page.get("markdown", "") for page in pages if isinstance(page, dict)
        ).strip()


class MistralTextQualityClient(MistralClient, TextQuality):

    def __init__(self, api_key: str, model: str = DEFAULT_CHAT_MODEL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model

    async def rewrite(self, text: str) -> str:
        rewritten = await self._chat(self.model, REWRITE_INSTRUCTIONS, text)
        if not rewritten.strip():
            raise MalformedContentError("rewrite returned empty text")
        return rewritten.strip()


def extract_json(text: str) -> Any:
    """
    Pull a JSON value out of a chat answer.

    Chat models wrap JSON in prose or code fences; try the whole text, then
    the widest array, then the widest object.
    """
    text = (text or "").strip()
    if text.startswith("```"):
        text = re.sub(r'^```(?:json)?\s*|\s*```$', '', text)

    candidates = [text]
    for pattern in (_JSON_ARRAY_RE, _JSON_OBJECT_RE):
        match = pattern.search(text)
        if match:
            candidates.append(match.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    raise MalformedContentError(f"no JSON found in answer: {text[:120]!r}")


class ChatMatchScorer(MistralClient, MatchScorer):
    """
    Scores records with a chat model driven by an opaque instructions text.

    The instructions decide the rubric; this class only frames the batch
    and parses the JSON array answer into ``MatchResult`` objects.
    """

    def __init__(self, api_key: str, instructions: str, model: str = DEFAULT_CHAT_MODEL, **kwargs):
        super().__init__(api_key, **kwargs)
        if not instructions or not instructions.strip():
            raise ConfigurationError("scoring instructions are empty")
        self.instructions = instructions
        self.model = model

    @staticmethod
    def format_batch(profile: str, batch: List[DetailRecord]) -> str:
        items = [
            {
                "id": record.id,
                "title": record.title,
                "fields": record.fields,
                "body": record.body_text,
            }
            for record in batch
        ]
        return (
            f"PROFILE:\n{profile}\n\n"
            f"ITEMS:\n{json.dumps(items, ensure_ascii=False)}\n\n"
            "Answer with a JSON array containing one object per item with keys "
            "id, score, reason, strength, weakness, recommend."
        )

    @staticmethod
    def parse_results(answer: str, batch: List[DetailRecord]) -> List[MatchResult]:
        parsed = extract_json(answer)
        if isinstance(parsed, dict):
            parsed = parsed.get("results", [parsed])
        if not isinstance(parsed, list):
            raise MalformedContentError("scorer answer is not a list")

        batch_ids = {record.id for record in batch}
        results = []
        for item in parsed:
            if not isinstance(item, dict) or "id" not in item:
                continue
            try:
                result = MatchResult.from_dict(item)
            except (TypeError, ValueError):
                logger.warning(f"[SCORE] Ignoring malformed result: {item!r}")
                continue
            if result.id in batch_ids:
                results.append(result)
        return results

    async def score(self, profile: str, batch: List[DetailRecord]) -> List[MatchResult]:
        answer = await self._chat(self.model, self.instructions, self.format_batch(profile, batch))
        results = self.parse_results(answer, batch)
        logger.info(f"[SCORE] {len(results)}/{len(batch)} records scored")
        return results
