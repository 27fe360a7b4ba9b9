"""In-memory security event repository for testing."""

from keystone.domain.model import SecurityEvent
from keystone.domain.repository.security_event import SecurityEventRepository
from keystone.domain.value import IdentityId


class InMemorySecurityEventRepository(SecurityEventRepository):
    """In-memory implementation of SecurityEventRepository for testing."""

    def __init__(self) -> None:
        self._events: list[SecurityEvent] = []

    async def append(self, event: SecurityEvent) -> SecurityEvent:
        """Append event."""
        self._events.append(event)
        return event

    async def list_by_identity(
        self, identity_id: IdentityId, limit: int = 100
    ) -> list[SecurityEvent]:
        """Newest events of an identity first."""
        matches = [e for e in reversed(self._events) if e.identity_id == identity_id]
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches[:limit]
