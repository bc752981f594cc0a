"""
Bounded retry with a fixed backoff schedule.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence, Tuple, TypeVar

T = TypeVar('T')

# Delays in seconds after the 1st, 2nd and 3rd failed attempt
RETRY_DELAYS: Tuple[float, ...] = (10, 20, 60)


@dataclass
class RetryPolicy:
    """Fixed attempt budget with an ordered delay schedule."""
    max_attempts: int = 4
    delays: Sequence[float] = RETRY_DELAYS
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.delays:
            raise ValueError("delays must not be empty")
        self.delays = tuple(self.delays)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        index = min(max(attempt, 1), len(self.delays)) - 1
        return self.delays[index]

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation",
                  on_retry: Optional[Callable[[int, Exception], None]] = None,
                  retry_on: Tuple[type, ...] = (Exception,)) -> T:
        """
        Call operation until it succeeds or the attempt budget is spent.

        Args:
            operation: Zero-argument coroutine function to call
            description: Label used in log messages
            on_retry: Optional callback invoked with (attempt, error) before each retry
            retry_on: Exception types that trigger a retry; others propagate at once

        Returns:
            The operation's result

        Raises:
            The last exception raised by operation once all attempts failed
        """
        logger = logging.getLogger(__name__)
        attempt = 1
        while True:
            try:
                return await operation()
            except retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {e}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed on attempt {attempt}/{self.max_attempts}: {e}. "
                    f"Retrying in {delay}s"
                )
                if on_retry:
                    on_retry(attempt, e)
                await self.sleep(delay)
                attempt += 1
