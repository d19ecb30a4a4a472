"""Fixed-delay retry combinator shared by every retried call site."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .errors import FileReadError, InvalidRequest, OrchestratorError, RetryExhausted

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetrySpec:
    """How often to attempt an operation and how long to wait in between."""
    max_attempts: int
    delay: float

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")


async def retry(
        operation: Callable[[], Awaitable[T]],
        spec: RetrySpec,
        retry_on: Tuple[Type[BaseException], ...] = (OrchestratorError,),
        fatal: Tuple[Type[BaseException], ...] = (InvalidRequest, FileReadError),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``spec.max_attempts`` is reached.

    The operation is called again from scratch on each attempt, so it must be
    safe to repeat. Exceptions outside ``retry_on``, and those in ``fatal``,
    propagate immediately.

    Args:
        operation: Zero-argument callable returning an awaitable
        spec: Attempt count and fixed delay in seconds
        retry_on: Exception types that trigger another attempt
        fatal: Exception types never retried
        sleep: Coroutine used to wait between attempts
        description: Name used in log messages

    Returns:
        The operation's result

    Raises:
        RetryExhausted: If every attempt failed (last error in ``last_error``)
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except fatal:
            raise
        except retry_on as e:
            if attempt >= spec.max_attempts:
                log.warning(f"{description} failed after {attempt} attempt(s): {e}")
                raise RetryExhausted(e, attempt) from e
            log.info(
                f"{description} failed (attempt {attempt}/{spec.max_attempts}): {e}, "
                f"retrying in {spec.delay}s"
            )
        await sleep(spec.delay)
