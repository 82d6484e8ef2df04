"""Retry with exponential backoff for remote calls.

The pipeline wraps every remote call that is safe to repeat (comment
creation and updates, the data fetch) in retry_with_backoff. Agent
execution is never retried.

Errors are classified by their ``status_code`` attribute:
- 4xx other than 429: permanent, raised immediately.
- No status, 5xx, or 429: transient, retried until attempts run out.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

T = TypeVar("T")

_default_logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt cap and delay schedule for one class of remote call.

    Attributes:
        max_attempts: Total number of attempts, including the first.
        initial_delay: Seconds to wait after the first failed attempt.
        max_delay: Upper bound on any single wait, in seconds.
        backoff_factor: Multiplier applied to the delay after each wait.
    """

    max_attempts: int = 3
    initial_delay: float = 5.0
    max_delay: float = 20.0
    backoff_factor: float = 2.0

    def delays(self) -> list[float]:
        """Return the waits between consecutive attempts."""
        result = []
        delay = self.initial_delay
        for _ in range(max(self.max_attempts - 1, 0)):
            result.append(delay)
            delay = min(delay * self.backoff_factor, self.max_delay)
        return result


def is_permanent_error(error: BaseException) -> bool:
    """Return True for client errors that retrying cannot fix.

    Args:
        error: The exception raised by the operation.

    Returns:
        True when the error carries a 4xx status other than 429.
    """
    status = getattr(error, "status_code", None)
    if not isinstance(status, int):
        return False
    return 400 <= status < 500 and status != 429


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    log: Optional[Any] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per
                   attempt.
        policy: Attempt cap and delay schedule. Defaults to RetryPolicy().
        log: Logger to report attempts on. Pass the delivery-scoped logger
             to keep correlation fields.
        sleep: Awaitable sleep function, replaceable in tests.

    Returns:
        The operation's result from the first successful attempt.

    Raises:
        Exception: The permanent error immediately, or the last transient
                   error once all attempts have failed.
    """
    policy = policy or RetryPolicy()
    log = log or _default_logger

    delay = policy.initial_delay
    last_error: Optional[Exception] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e

            if is_permanent_error(e):
                log.error(
                    "Non-retriable error, raising immediately",
                    attempt=attempt,
                    status_code=getattr(e, "status_code", None),
                    error=str(e),
                )
                raise

            log.warning(
                "Operation attempt failed",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                status_code=getattr(e, "status_code", None),
                error=str(e),
            )

            if attempt < policy.max_attempts:
                await sleep(delay)
                delay = min(delay * policy.backoff_factor, policy.max_delay)

    if last_error is None:
        raise ValueError("max_attempts must be at least 1")

    log.error("Operation failed after all attempts", max_attempts=policy.max_attempts)
    raise last_error
