"""In-memory rate-limit counters for testing."""

import asyncio
from datetime import datetime, timedelta

from keystone.domain.repository.counter import CounterStore


class InMemoryCounterStore(CounterStore):
    """Fixed-window counters held in a dict."""

    def __init__(self) -> None:
        # key -> (window_start, count)
        self._counters: dict[str, tuple[datetime, int]] = {}
        self._lock = asyncio.Lock()

    async def increment(self, key: str, window_seconds: int, now: datetime) -> int:
        """Increment within the current window."""
        async with self._lock:
            window_start, count = self._counters.get(key, (now, 0))
            if now - window_start >= timedelta(seconds=window_seconds):
                window_start, count = now, 0
            count += 1
            self._counters[key] = (window_start, count)
            return count

    async def get(self, key: str, window_seconds: int, now: datetime) -> int:
        """Current count in the window."""
        entry = self._counters.get(key)
        if not entry:
            return 0
        window_start, count = entry
        if now - window_start >= timedelta(seconds=window_seconds):
            return 0
        return count

    async def reset(self, key: str) -> None:
        """Drop the counter."""
        self._counters.pop(key, None)
