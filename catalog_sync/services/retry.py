"""Retry/backoff layer shared by every remote call site.

Retryability is decided by a pure classifier predicate; the wait strategy
implements exponential backoff with symmetric jitter, a floor, and respect for
an explicit retry-after hint. Exhausted retries surface as UpstreamUnavailable
carrying the last cause.
"""
import asyncio
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from catalog_sync.config import StorefrontSettings
from catalog_sync.errors import TransientApiError, UpstreamUnavailable

logger = structlog.get_logger(__name__)

THROTTLED_CODE = "THROTTLED"


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are retryable; everything else is not."""
    return status_code == 429 or 500 <= status_code <= 599


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return max(seconds, 0.0)


def is_retryable_error(exc: BaseException) -> bool:
    """Default classifier: transient API errors and network-level failures."""
    if isinstance(exc, TransientApiError):
        return True
    return isinstance(exc, httpx.TransportError)


class BackoffWait(wait_base):
    """Exponential backoff with jitter, a floor, and retry-after support.

    The delay before retry n (n = 0 for the first retry) is
    initial_delay * 2**n, moved by up to +/- jitter_fraction of itself and
    floored at min_delay. If the failure carried a retry_after hint, the delay
    is at least retry_after + retry_after_margin.
    """

    def __init__(
        self,
        initial_delay: float,
        jitter_fraction: float = 0.3,
        min_delay: float = 1.0,
        retry_after_margin: float = 0.5,
        rng: Callable[[], float] = random.random,
    ):
        self.initial_delay = initial_delay
        self.jitter_fraction = jitter_fraction
        self.min_delay = min_delay
        self.retry_after_margin = retry_after_margin
        self._rng = rng

    def compute(self, retry_index: int, retry_after: Optional[float] = None) -> float:
        base = self.initial_delay * (2 ** retry_index)
        jitter = base * self.jitter_fraction * (2 * self._rng() - 1)
        delay = max(self.min_delay, base + jitter)
        if retry_after is not None:
            delay = max(delay, retry_after + self.retry_after_margin)
        return delay

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        return self.compute(retry_state.attempt_number - 1, retry_after)


class RetryPolicy:
    """Bundle of retry parameters plus the classifier predicate."""

    def __init__(
        self,
        max_attempts: int = 4,
        initial_delay: float = 2.0,
        jitter_fraction: float = 0.3,
        min_delay: float = 1.0,
        retry_after_margin: float = 0.5,
        classifier: Callable[[BaseException], bool] = is_retryable_error,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.jitter_fraction = jitter_fraction
        self.min_delay = min_delay
        self.retry_after_margin = retry_after_margin
        self.classifier = classifier

    @classmethod
    def from_settings(cls, settings: StorefrontSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_retry_delay,
            jitter_fraction=settings.jitter_fraction,
            min_delay=settings.min_retry_delay,
            retry_after_margin=settings.retry_after_margin,
        )

    def wait_strategy(self, rng: Callable[[], float] = random.random) -> BackoffWait:
        return BackoffWait(
            initial_delay=self.initial_delay,
            jitter_fraction=self.jitter_fraction,
            min_delay=self.min_delay,
            retry_after_margin=self.retry_after_margin,
            rng=rng,
        )


def _log_before_sleep(operation_name: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "remote_call_retrying",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            delay=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error=str(exc),
            status_code=getattr(exc, "status_code", None),
        )
    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    *,
    operation_name: str = "remote_call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> Any:
    """Run an async operation under the retry policy.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry parameters (defaults to RetryPolicy())
        operation_name: Label used in log events
        sleep: Awaitable sleep, injectable for tests
        rng: Jitter source in [0, 1), injectable for tests

    Returns:
        The operation's result

    Raises:
        UpstreamUnavailable: After max_attempts retryable failures
        Exception: Any non-retryable error, unchanged and on first occurrence
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(rng),
        retry=retry_if_exception(policy.classifier),
        before_sleep=_log_before_sleep(operation_name),
        sleep=sleep,
    )
    try:
        return await retrying(operation)
    except RetryError as e:
        last_cause = e.last_attempt.exception()
        logger.error(
            "remote_call_retries_exhausted",
            operation=operation_name,
            attempts=policy.max_attempts,
            error=str(last_cause),
        )
        raise UpstreamUnavailable(
            f"{operation_name} failed after {policy.max_attempts} attempts: {last_cause}",
            last_cause=last_cause,
            attempts=policy.max_attempts,
        ) from last_cause
