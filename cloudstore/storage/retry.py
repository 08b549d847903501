"""Bounded randomized-exponential-backoff retries for remote calls.

Retry failed requests with a randomized exponential backoff: wait a
random period in [0, 1] seconds and retry; if that fails wait a random
period in [0, 2], then [0, 4], and so on, with the wait capped at 16
seconds. Randomizing keeps many objects failing at once from retrying
in lockstep.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from cloudstore.core.errors import (
    LocalFilesystemError,
    ObjectNotFoundError,
    RetryExhaustedError,
    UsageError,
)
from cloudstore.core.logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

# Failures that no amount of retrying will fix.
NON_RETRYABLE = (ObjectNotFoundError, LocalFilesystemError, UsageError)


@dataclass
class RetryState:
    """Where a retried operation currently is."""

    attempt: int
    max_attempts: int
    backoff: float = 0.0


@dataclass
class RetryPolicy:
    """How many times to try and how long to wait in between.

    ``sleep`` and ``uniform`` are injectable so callers (and tests) can
    control the clock and the jitter.
    """

    max_attempts: int = 10
    max_backoff: float = 16.0
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    uniform: Callable[[float, float], float] = field(default=random.uniform, repr=False)

    @classmethod
    def from_settings(cls, settings, attempts: Optional[int] = None) -> "RetryPolicy":
        return cls(
            max_attempts=attempts if attempts is not None else settings.RETRY_MAX_ATTEMPTS,
            max_backoff=settings.RETRY_MAX_BACKOFF,
        )

    def backoff_cap(self, attempt: int) -> float:
        """Upper bound of the wait after the given (zero based) attempt."""
        return min(float(2 ** min(attempt, 32)), self.max_backoff)

    def backoff(self, attempt: int) -> float:
        return self.uniform(0.0, self.backoff_cap(attempt))


async def run_with_retry(
    operation: Callable[[RetryState], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str,
    exhausted: Type[RetryExhaustedError] = RetryExhaustedError,
    details: Optional[Dict[str, Any]] = None,
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    ObjectNotFoundError, LocalFilesystemError and UsageError propagate at
    once. asyncio.CancelledError is not an Exception and so also propagates
    at once, including out of a pending backoff sleep.

    Raises:
        exhausted: After ``policy.max_attempts`` failures, carrying every
            attempt's error
    """
    details = details or {}
    errors: List[Exception] = []

    for attempt in range(policy.max_attempts):
        state = RetryState(attempt=attempt, max_attempts=policy.max_attempts)
        try:
            return await operation(state)
        except NON_RETRYABLE:
            raise
        except Exception as exc:
            errors.append(exc)
            if attempt + 1 >= policy.max_attempts:
                break

            state.backoff = policy.backoff(attempt)
            logger.warning(
                "retry_attempt_failed",
                operation=description,
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                backoff_seconds=round(state.backoff, 3),
                error_type=type(exc).__name__,
                error=str(exc),
                **details,
            )
            await policy.sleep(state.backoff)

    logger.error(
        "retry_budget_exhausted",
        operation=description,
        attempts=len(errors),
        **details,
    )
    raise exhausted(f"{description} error retry count reached", errors, details)
