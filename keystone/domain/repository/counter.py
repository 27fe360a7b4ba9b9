"""Rate-limit counter store interface."""

from abc import ABC, abstractmethod
from datetime import datetime


class CounterStore(ABC):
    """Shared fixed-window counters keyed by scope.

    Implementations must increment atomically under concurrent callers and
    raise when the backing store cannot be reached.
    """

    @abstractmethod
    async def increment(self, key: str, window_seconds: int, now: datetime) -> int:
        """Increment the counter for ``key`` in its current window.

        A window older than ``window_seconds`` starts over at 1.

        Args:
            key: Counter key, e.g. "login:203.0.113.7:alice@example.com"
            window_seconds: Window length
            now: Current time

        Returns:
            Count in the current window after the increment
        """
        pass

    @abstractmethod
    async def get(self, key: str, window_seconds: int, now: datetime) -> int:
        """Current count for ``key``, 0 when the window has lapsed."""
        pass

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Drop the counter for ``key``."""
        pass
