"""Security event repository interface."""

from abc import ABC, abstractmethod

from keystone.domain.model import SecurityEvent
from keystone.domain.value import IdentityId


class SecurityEventRepository(ABC):
    """Append-only security event log."""

    @abstractmethod
    async def append(self, event: SecurityEvent) -> SecurityEvent:
        """Append an event.

        Args:
            event: Event to record

        Returns:
            The recorded event
        """
        pass

    @abstractmethod
    async def list_by_identity(
        self, identity_id: IdentityId, limit: int = 100
    ) -> list[SecurityEvent]:
        """Most recent events of an identity, newest first.

        Args:
            identity_id: Identity the events belong to
            limit: Maximum number of events

        Returns:
            List of events (may be empty)
        """
        pass
