import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T
    attempts: int


@dataclass(frozen=True)
class NotFoundAfterRetries:
    attempts: int


LookupResult = Union[Found[T], NotFoundAfterRetries]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed delay between attempts.

    ``lookup`` is a coroutine function; a ``None`` result counts as a
    miss. Exceptions raised by ``lookup`` are not retried. The delay is
    awaited, so only the caller waits; other tasks on the loop keep running.
    """

    max_attempts: int = 3
    delay: float = 1.0
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    async def run(self, lookup: Callable[[], Awaitable[Optional[T]]], label: str = "value") -> LookupResult:
        for attempt in range(1, self.max_attempts + 1):
            value = await lookup()
            if value is not None:
                return Found(value=value, attempts=attempt)

            if attempt < self.max_attempts:
                logger.warning("%s not found. Retry %d/%d", label, attempt, self.max_attempts)
                await self.sleep(self.delay)

        return NotFoundAfterRetries(attempts=self.max_attempts)
