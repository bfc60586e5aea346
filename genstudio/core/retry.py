# genstudio/core/retry.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger("genstudio.retry")

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay after a failed ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    return min(base * (2 ** (attempt - 1)), cap)


class RetryExhausted(Exception):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_with_backoff(
    fn: Callable[[int], Awaitable[T]],
    *,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 5.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Call ``fn(attempt)`` until it succeeds or ``max_attempts`` is reached.

    ``fn`` receives the 1-based attempt number so callers can run one-off work
    on the first attempt only. Errors outside ``retry_on`` propagate at once.
    On exhaustion raises ``RetryExhausted`` carrying the last error.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await fn(attempt)
        except retry_on as e:
            last_error = e
            logger.warning(f"{label}: attempt {attempt}/{max_attempts} failed: {e}")
            if attempt == max_attempts:
                break
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info(f"{label}: retrying in {delay:.2f}s")
            await sleep(delay)

    raise RetryExhausted(max_attempts, last_error)
