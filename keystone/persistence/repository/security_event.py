"""PostgreSQL implementation of SecurityEvent repository."""

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from keystone.domain.model import SecurityEvent
from keystone.domain.repository import SecurityEventRepository
from keystone.domain.value import IdentityId
from keystone.persistence.mappers import row_to_security_event, security_event_to_dict
from keystone.persistence.tables import security_events_table


class PostgresSecurityEventRepository(SecurityEventRepository):
    """PostgreSQL implementation of SecurityEventRepository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def append(self, event: SecurityEvent) -> SecurityEvent:
        """Insert an event."""
        stmt = insert(security_events_table).values(**security_event_to_dict(event))
        await self.session.execute(stmt)
        await self.session.flush()
        return event

    async def list_by_identity(
        self, identity_id: IdentityId, limit: int = 100
    ) -> list[SecurityEvent]:
        """Newest events of an identity first."""
        stmt = (
            select(security_events_table)
            .where(security_events_table.c.identity_id == identity_id)
            .order_by(security_events_table.c.timestamp.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [row_to_security_event(dict(row)) for row in result.mappings().all()]
