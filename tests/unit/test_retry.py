"""Unit tests for the retry/backoff layer."""
import httpx
import pytest
from unittest.mock import AsyncMock

from catalog_sync.errors import FatalApiError, TransientApiError, UpstreamUnavailable
from catalog_sync.services.retry import (
    BackoffWait,
    RetryPolicy,
    is_retryable_error,
    is_retryable_status,
    parse_retry_after,
    with_retry,
)


class SleepRecorder:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _transient(status: int = 503, retry_after=None) -> TransientApiError:
    return TransientApiError(
        f"HTTP {status}",
        service="storefront",
        status_code=status,
        retry_after=retry_after,
        throttled=status == 429,
    )


class TestClassifier:
    """Tests for status and exception classification."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 599])
    def test_retryable_statuses(self, status):
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [200, 400, 401, 403, 404, 422])
    def test_non_retryable_statuses(self, status):
        assert not is_retryable_status(status)

    def test_transient_and_network_errors_are_retryable(self):
        assert is_retryable_error(_transient())
        assert is_retryable_error(httpx.ConnectError("refused"))
        assert is_retryable_error(httpx.ReadTimeout("slow"))

    def test_fatal_and_other_errors_are_not_retryable(self):
        assert not is_retryable_error(FatalApiError("bad", service="storefront", status_code=400))
        assert not is_retryable_error(ValueError("nope"))

    def test_parse_retry_after_seconds(self):
        assert parse_retry_after("5") == 5.0
        assert parse_retry_after(" 2.5 ") == 2.5

    def test_parse_retry_after_invalid_or_missing(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None

    def test_parse_retry_after_past_http_date_is_zero(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


class TestBackoffWait:
    """Tests for delay computation."""

    def test_exponential_without_jitter(self):
        wait = BackoffWait(initial_delay=2.0, jitter_fraction=0.3, min_delay=1.0, rng=lambda: 0.5)
        assert [wait.compute(n) for n in range(3)] == [2.0, 4.0, 8.0]

    def test_jitter_bounds(self):
        low = BackoffWait(initial_delay=2.0, jitter_fraction=0.3, rng=lambda: 0.0)
        high = BackoffWait(initial_delay=2.0, jitter_fraction=0.3, rng=lambda: 1.0)
        assert low.compute(0) == pytest.approx(1.4)
        assert high.compute(0) == pytest.approx(2.6)

    def test_min_delay_floor(self):
        wait = BackoffWait(initial_delay=0.1, jitter_fraction=0.0, min_delay=1.0)
        assert wait.compute(0) == 1.0

    def test_retry_after_plus_margin_is_respected(self):
        wait = BackoffWait(initial_delay=2.0, jitter_fraction=0.3, retry_after_margin=0.5, rng=lambda: 0.0)
        assert wait.compute(0, retry_after=5.0) >= 5.5


class TestWithRetry:
    """Tests for with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_try_does_not_sleep(self):
        sleep = SleepRecorder()
        operation = AsyncMock(return_value="ok")

        result = await with_retry(operation, RetryPolicy(max_attempts=4), sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_throttled_with_retry_after_waits_at_least_hint_plus_margin(self):
        sleep = SleepRecorder()
        operation = AsyncMock(side_effect=[_transient(429, retry_after=5.0), "ok"])
        policy = RetryPolicy(max_attempts=4, initial_delay=2.0, retry_after_margin=0.5)

        result = await with_retry(operation, policy, sleep=sleep, rng=lambda: 0.0)

        assert result == "ok"
        assert operation.await_count == 2
        assert len(sleep.delays) == 1
        assert sleep.delays[0] >= 5.5

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        sleep = SleepRecorder()
        error = FatalApiError("not found", service="storefront", status_code=404)
        operation = AsyncMock(side_effect=error)

        with pytest.raises(FatalApiError) as exc_info:
            await with_retry(operation, RetryPolicy(max_attempts=4), sleep=sleep)

        assert exc_info.value is error
        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_raises_upstream_unavailable_with_last_cause(self):
        sleep = SleepRecorder()
        errors = [_transient(500), _transient(502), _transient(503)]
        operation = AsyncMock(side_effect=errors)
        policy = RetryPolicy(max_attempts=3, initial_delay=1.0, jitter_fraction=0.0, min_delay=0.0)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await with_retry(operation, policy, operation_name="storefront.test", sleep=sleep)

        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert exc_info.value.last_cause is errors[-1]
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self):
        sleep = SleepRecorder()
        operation = AsyncMock(side_effect=[httpx.ConnectError("refused"), {"data": 1}])

        result = await with_retry(operation, RetryPolicy(max_attempts=2, min_delay=0.0), sleep=sleep)

        assert result == {"data": 1}
        assert len(sleep.delays) == 1

    def test_policy_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
