"""
Error Taxonomy
==============
Every failure the pipeline reasons about is one of these classes.

Retry decisions are made on the *class* of the error, never on message
text, so the Retry Gateway and the Detail Harvester share one definition
of "transient":

    TransientNetworkError            retryable
    RateLimitedError                 retryable (with backoff)
    ExternalServiceUnavailableError  retryable up to the gateway cap
    NotFoundError                    skip this item
    MalformedContentError            skip this item
    ParseFailureError                skip this item (logged)
    ConfigurationError               fatal, aborts the run
"""

from __future__ import annotations

from typing import Optional


class HarvestError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(HarvestError):
    """Connection reset, DNS hiccup, navigation timeout."""


class RateLimitedError(HarvestError):
    """The remote side asked us to slow down (HTTP 429)."""


class ExternalServiceUnavailableError(HarvestError):
    """5xx-class answer from an external service."""


class NotFoundError(HarvestError):
    """The item no longer exists (404 / 410)."""


class MalformedContentError(HarvestError):
    """The remote answered, but with something we cannot use."""


class ParseFailureError(HarvestError):
    """A fetched document did not have the expected structure."""


class ConfigurationError(HarvestError):
    """Missing credentials, bad selector, invalid limit. Fatal for the run."""


class RetryExhaustedError(HarvestError):
    """Raised by the Retry Gateway once every attempt has failed."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


RETRYABLE_ERRORS = (
    TransientNetworkError,
    RateLimitedError,
    ExternalServiceUnavailableError,
)

SKIPPABLE_ERRORS = (
    NotFoundError,
    MalformedContentError,
    ParseFailureError,
)


def is_retryable(exc: BaseException) -> bool:
    """True for rate-limit, 5xx-class and transient network errors."""
    return isinstance(exc, RETRYABLE_ERRORS)


def error_for_status(status_code: int, message: str = "") -> HarvestError:
    """Map an HTTP status code onto the taxonomy."""
    text = message or f"HTTP {status_code}"
    if status_code == 429:
        return RateLimitedError(text, status_code)
    if 500 <= status_code < 600:
        return ExternalServiceUnavailableError(text, status_code)
    if status_code in (404, 410):
        return NotFoundError(text, status_code)
    if status_code in (401, 403):
        return ConfigurationError(text, status_code)
    if status_code == 408:
        return TransientNetworkError(text, status_code)
    return MalformedContentError(text, status_code)
