from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import structlog

from studygen.services.errors import GenerationError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    accepted: bool
    attempts: int


async def with_retry(
    attempt: Callable[[int], Awaitable[T]],
    accept: Callable[[T], bool],
    max_attempts: int = 2,
    stage: str = "generation",
) -> RetryOutcome[T]:
    """Run ``attempt(0)``, ``attempt(1)``, ... until ``accept`` passes.

    Never calls ``attempt`` more than ``max_attempts`` times. A
    GenerationError fails only that attempt; it propagates when the last
    attempt raises it. The outcome carries the last value produced.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    value: Optional[T] = None
    for n in range(max_attempts):
        last = n == max_attempts - 1
        try:
            value = await attempt(n)
        except GenerationError as e:
            logger.warning("attempt_failed", stage=stage, attempt=n + 1, error=e.message)
            if last:
                raise
            continue
        if accept(value):
            return RetryOutcome(value=value, accepted=True, attempts=n + 1)
        if not last:
            logger.info("attempt_rejected", stage=stage, attempt=n + 1)
    return RetryOutcome(value=value, accepted=False, attempts=max_attempts)
