"""Retry with backoff for flaky calls (Gemini generation).

Failures are data, not control flow: ``retry_with_backoff`` never raises for
a failing operation. It returns a ``RetryResult`` that either carries the
value or the last error together with the number of attempts used.

An attempt fails when the operation raises, or when it returns an object
whose ``success`` attribute is false (the LLM client reports failures that
way instead of raising).
"""

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    """How many times to try and how long to wait in between."""

    max_attempts: int = 4
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0
    strategy: Literal["exponential", "linear"] = "exponential"
    jitter: float = 0.0  # fraction of the delay, e.g. 0.25 for ±25%
    should_retry: Callable[[str], bool] | None = None


DEFAULT_NEWSLETTER_RETRY_OPTIONS = RetryOptions(
    max_attempts=4,
    base_delay_seconds=5.0,
    max_delay_seconds=30.0,
    strategy="exponential",
    jitter=0.25,
)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""

    value: T | None
    attempts_used: int
    total_elapsed_ms: float
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def was_retried(self) -> bool:
        return self.attempts_used > 1


def compute_backoff_delay(attempt: int, options: RetryOptions) -> float:
    """Seconds to wait after the given (1-based) failed attempt."""
    if options.strategy == "linear":
        delay = options.base_delay_seconds * attempt
    else:
        delay = options.base_delay_seconds * (2 ** (attempt - 1))
    delay = min(delay, options.max_delay_seconds)

    if options.jitter > 0:
        spread = delay * options.jitter
        delay += random.uniform(-spread, spread)

    # The cap also bounds the jittered value
    return min(max(0.0, delay), options.max_delay_seconds)


def _failure_message(outcome: Any) -> str | None:
    """Return an error message if the operation reported ``success=False``."""
    if getattr(outcome, "success", True) is False:
        return getattr(outcome, "error", None) or "Operation reported failure"
    return None


def retry_with_backoff(
    operation: Callable[[], T],
    options: RetryOptions = DEFAULT_NEWSLETTER_RETRY_OPTIONS,
    context: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[T]:
    """Call ``operation`` until it succeeds or ``options.max_attempts`` is reached.

    Args:
        operation: Zero-argument callable to invoke.
        options: Attempt count and backoff parameters.
        context: Label used in log lines.
        sleep: Wait function, injectable for tests.

    Returns:
        RetryResult with ``value`` on success, or ``error`` holding the last
        failure message once every attempt has failed (or ``should_retry``
        rejected the failure).
    """
    max_attempts = max(1, options.max_attempts)
    start = time.monotonic()

    for attempt in range(1, max_attempts + 1):
        try:
            outcome = operation()
            failure = _failure_message(outcome)
        except Exception as e:
            outcome = None
            failure = str(e) or e.__class__.__name__

        if failure is None:
            elapsed_ms = (time.monotonic() - start) * 1000
            if attempt > 1:
                logger.info("%s succeeded on attempt %d/%d", context, attempt, max_attempts)
            return RetryResult(value=outcome, attempts_used=attempt, total_elapsed_ms=elapsed_ms)

        retryable = options.should_retry is None or options.should_retry(failure)

        if attempt >= max_attempts or not retryable:
            logger.error(
                "%s failed permanently after %d attempt(s) (%s): %s",
                context, attempt,
                "max attempts reached" if retryable else "non-retryable error",
                failure,
            )
            return RetryResult(
                value=None,
                attempts_used=attempt,
                total_elapsed_ms=(time.monotonic() - start) * 1000,
                error=failure,
            )

        delay = compute_backoff_delay(attempt, options)
        logger.warning(
            "%s failed (attempt %d/%d): %s, retrying in %.1fs...",
            context, attempt, max_attempts, failure, delay,
        )
        sleep(delay)

    raise AssertionError("unreachable")
