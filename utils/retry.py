"""
Bounded retry policy and a generic "retry until accepted or exhausted" combinator.

The same combinator drives lesson-content polling, generation batch acceptance
and transport retries in the model gateway.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _truthy(result: Any) -> bool:
    return bool(result)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_seconds: float = 0.0
    # Multiplier applied to the delay after each failed attempt (1.0 = fixed delay)
    backoff: float = 1.0
    accept: Callable[[Any], bool] = _truthy
    retry_on: Tuple[Type[BaseException], ...] = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        return self.delay_seconds * (self.backoff ** (attempt - 1))


@dataclass
class RetryOutcome(Generic[T]):
    result: Optional[T]
    attempts: int
    accepted: bool
    last_error: Optional[BaseException] = field(default=None)


async def retry_until(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Optional[Callable[[int, Optional[T], Optional[BaseException]], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """
    Run `operation` until `policy.accept` approves its result or attempts run out.

    Exceptions listed in `policy.retry_on` count as a failed attempt; on the final
    attempt they are re-raised. Any other exception propagates immediately.
    When attempts run out without acceptance the last result is returned with
    accepted=False so the caller decides the terminal behavior.
    """
    result: Optional[T] = None
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await operation()
            last_error = None
        except policy.retry_on as e:
            if attempt >= policy.max_attempts:
                raise
            result = None
            last_error = e
        else:
            if policy.accept(result):
                return RetryOutcome(result=result, attempts=attempt, accepted=True)

        if attempt < policy.max_attempts:
            if on_retry:
                on_retry(attempt, result, last_error)
            delay = policy.delay_for(attempt)
            logger.debug(f"Attempt {attempt}/{policy.max_attempts} not accepted, retrying in {delay}s")
            if delay > 0:
                await sleep(delay)

    return RetryOutcome(result=result, attempts=policy.max_attempts, accepted=False, last_error=last_error)
