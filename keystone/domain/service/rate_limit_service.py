"""Rate limiting domain service."""

from collections.abc import Callable
from datetime import datetime

import logfire

from keystone.domain.error import RateLimitExceededError
from keystone.domain.model.common import utc_now
from keystone.domain.repository.counter import CounterStore

from .base import Service


class RateLimitService(Service):
    """Fixed-window limiter over a shared counter store.

    Fails closed: if the store cannot be reached the request is rejected.
    """

    def __init__(
        self,
        counter_store: CounterStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize rate limit service.

        Args:
            counter_store: Shared atomic counters
            clock: Time source
        """
        self.counter_store = counter_store
        self.clock = clock

    async def hit(self, scope: str, key: str, limit: int, window_seconds: int) -> int:
        """Count one request and enforce the limit.

        Args:
            scope: Limit family, e.g. "login" or "otp_send"
            key: Subject within the scope (ip, identity id...)
            limit: Maximum requests per window
            window_seconds: Window length

        Returns:
            Count in the current window

        Raises:
            RateLimitExceededError: If over the limit or the store is unavailable
        """
        counter_key = f"{scope}:{key}"
        try:
            count = await self.counter_store.increment(
                counter_key, window_seconds, self.clock()
            )
        except Exception as e:
            logfire.error("Rate limiter unavailable", scope=scope, error=str(e))
            raise RateLimitExceededError(scope) from e

        if count > limit:
            logfire.warn("Rate limit exceeded", scope=scope, count=count, limit=limit)
            raise RateLimitExceededError(scope, retry_after_seconds=window_seconds)
        return count

    async def record(self, scope: str, key: str, window_seconds: int) -> int | None:
        """Count an occurrence without enforcing a limit.

        Returns:
            Count in the current window, or None if the store is unavailable
        """
        try:
            return await self.counter_store.increment(
                f"{scope}:{key}", window_seconds, self.clock()
            )
        except Exception as e:
            logfire.error("Counter store unavailable", scope=scope, error=str(e))
            return None

    async def current(self, scope: str, key: str, window_seconds: int) -> int:
        """Read the count without incrementing.

        Raises:
            RateLimitExceededError: If the store is unavailable
        """
        try:
            return await self.counter_store.get(
                f"{scope}:{key}", window_seconds, self.clock()
            )
        except Exception as e:
            logfire.error("Rate limiter unavailable", scope=scope, error=str(e))
            raise RateLimitExceededError(scope) from e

    async def reset(self, scope: str, key: str) -> None:
        """Clear a counter; a failure only delays the reset until the window ends."""
        try:
            await self.counter_store.reset(f"{scope}:{key}")
        except Exception as e:
            logfire.warn("Rate limit reset failed", scope=scope, error=str(e))
