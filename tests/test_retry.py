"""
Tests for the retry gateway: attempt counts, backoff schedule, and the
retryable / non-retryable split.
"""

import asyncio

import pytest

from harvester.errors import (
    ConfigurationError,
    ExternalServiceUnavailableError,
    NotFoundError,
    RateLimitedError,
    RetryExhaustedError,
    TransientNetworkError,
)
from harvester.retry import RetryGateway, RetryPolicy, default_is_retryable

from conftest import RecordingSleep


def _flaky(errors, result="ok"):
    """Coroutine function raising ``errors`` in order, then returning ``result``."""
    pending = list(errors)
    calls = []

    async def op():
        calls.append(1)
        if pending:
            raise pending.pop(0)
        return result

    return op, calls


class TestRetryGateway:
    """Attempt and sleep accounting."""

    def test_success_first_try_never_sleeps(self):
        sleep = RecordingSleep()
        op, calls = _flaky([])
        assert asyncio.run(RetryGateway(sleep=sleep).call(op)) == "ok"
        assert len(calls) == 1
        assert sleep.delays == []

    def test_k_failures_then_success_sleeps_k_times(self):
        for k in range(4):
            sleep = RecordingSleep()
            op, calls = _flaky([RateLimitedError("429")] * k)
            result = asyncio.run(RetryGateway(max_retries=3, sleep=sleep).call(op))
            assert result == "ok"
            assert len(calls) == k + 1
            assert len(sleep.delays) == k

    def test_backoff_doubles_and_is_capped(self):
        sleep = RecordingSleep()
        op, _ = _flaky([ExternalServiceUnavailableError("503")] * 5)
        gateway = RetryGateway(max_retries=5, initial_backoff=2.0, max_backoff=15.0, sleep=sleep)
        asyncio.run(gateway.call(op))
        assert sleep.delays == [2.0, 4.0, 8.0, 15.0, 15.0]
        assert all(a <= b for a, b in zip(sleep.delays, sleep.delays[1:]))
        assert max(sleep.delays) <= 15.0

    def test_exhaustion_raises_with_last_error(self):
        sleep = RecordingSleep()
        last = TransientNetworkError("reset")
        op, calls = _flaky([RateLimitedError("a"), RateLimitedError("b"), RateLimitedError("c"), last])
        with pytest.raises(RetryExhaustedError) as info:
            asyncio.run(RetryGateway(max_retries=3, sleep=sleep).call(op, operation="ocr tile"))
        assert info.value.last_error is last
        assert info.value.operation == "ocr tile"
        assert info.value.attempts == 4
        assert len(calls) == 4
        assert sleep.delays == [2.0, 4.0, 8.0]

    @pytest.mark.parametrize("error", [NotFoundError("gone"), ConfigurationError("no key"), ValueError("x")])
    def test_non_retryable_propagates_without_sleep(self, error):
        sleep = RecordingSleep()
        op, calls = _flaky([error])
        with pytest.raises(type(error)):
            asyncio.run(RetryGateway(sleep=sleep).call(op))
        assert len(calls) == 1
        assert sleep.delays == []

    def test_custom_classifier(self):
        sleep = RecordingSleep()
        op, calls = _flaky([KeyError("k")])
        result = asyncio.run(
            RetryGateway(sleep=sleep).call(op, is_retryable=lambda e: isinstance(e, KeyError))
        )
        assert result == "ok"
        assert len(calls) == 2

    def test_zero_retries_means_single_attempt(self):
        sleep = RecordingSleep()
        op, calls = _flaky([RateLimitedError("429")])
        with pytest.raises(RetryExhaustedError):
            asyncio.run(RetryGateway(max_retries=0, sleep=sleep).call(op))
        assert len(calls) == 1
        assert sleep.delays == []


class TestRetryPolicy:

    def test_fixed_delay(self):
        policy = RetryPolicy.fixed(2, 3.0)
        assert [policy.delay_for(n) for n in range(3)] == [3.0, 3.0, 3.0]

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    def test_default_classifier(self):
        assert default_is_retryable(RateLimitedError())
        assert default_is_retryable(ExternalServiceUnavailableError())
        assert default_is_retryable(TransientNetworkError())
        assert not default_is_retryable(NotFoundError())
        assert not default_is_retryable(RuntimeError())
