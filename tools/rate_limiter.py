"""Token-bucket limiter for generation engine calls."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """Accumulates ``tokens_per_interval`` permits every ``interval_seconds``
    (continuously), up to ``max_tokens``; each call spends one.

    ``acquire`` waits rather than failing. ``penalize`` pushes every
    subsequent acquisition back after the engine reports a rate limit.
    """

    def __init__(
        self,
        tokens_per_interval: int,
        interval_seconds: float = 60.0,
        max_tokens: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if tokens_per_interval < 1 or interval_seconds <= 0:
            raise ValueError("tokens_per_interval must be >= 1 and interval_seconds > 0")
        self.tokens_per_interval = tokens_per_interval
        self.interval_seconds = interval_seconds
        self.max_tokens = max_tokens or tokens_per_interval
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.max_tokens)
        self._last_refill = clock()
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            rate = self.tokens_per_interval / self.interval_seconds
            self._tokens = min(self.max_tokens, self._tokens + elapsed * rate)
            self._last_refill = now

    def _wait_time(self) -> float:
        now = self._clock()
        if self._blocked_until > now:
            return self._blocked_until - now
        self._refill()
        if self._tokens >= 1:
            return 0.0
        rate = self.tokens_per_interval / self.interval_seconds
        return (1 - self._tokens) / rate

    def try_acquire(self) -> bool:
        if self._wait_time() > 0:
            return False
        self._tokens -= 1
        return True

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                wait = self._wait_time()
                if wait <= 0:
                    self._tokens -= 1
                    return
                logger.debug("Rate limiter waiting %.2fs", wait)
                await self._sleep(wait)

    def penalize(self, retry_after: Optional[float] = None) -> None:
        """Block acquisitions for ``retry_after`` seconds (one interval if unknown)."""
        delay = retry_after if retry_after and retry_after > 0 else self.interval_seconds
        self._blocked_until = max(self._blocked_until, self._clock() + delay)
        self._tokens = 0.0
        self._last_refill = self._clock()
        logger.warning("Rate limit signalled; delaying engine calls for %.1fs", delay)
