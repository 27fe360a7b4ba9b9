"""PostgreSQL implementations of the session repositories."""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from keystone.domain.model import RefreshSession, SessionVerification
from keystone.domain.repository import SessionRepository, SessionVerificationStore
from keystone.domain.value import IdentityId, SessionId
from keystone.persistence.mappers import (
    refresh_session_to_dict,
    row_to_refresh_session,
    row_to_session_verification,
    session_verification_to_dict,
)
from keystone.persistence.tables import (
    refresh_sessions_table,
    session_verifications_table,
)


class PostgresSessionRepository(SessionRepository):
    """PostgreSQL implementation of SessionRepository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def create(self, session: RefreshSession) -> RefreshSession:
        """Insert a session."""
        stmt = insert(refresh_sessions_table).values(**refresh_session_to_dict(session))
        await self.session.execute(stmt)
        await self.session.flush()
        return session

    async def find_by_id(self, session_id: SessionId) -> Optional[RefreshSession]:
        """Find a session by ID."""
        stmt = select(refresh_sessions_table).where(
            refresh_sessions_table.c.id == session_id
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return row_to_refresh_session(dict(row)) if row else None

    async def find_by_token_hash(self, token_hash: str) -> Optional[RefreshSession]:
        """Find a session by refresh token hash."""
        stmt = select(refresh_sessions_table).where(
            refresh_sessions_table.c.token_hash == token_hash
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return row_to_refresh_session(dict(row)) if row else None

    async def list_live(
        self, identity_id: IdentityId, now: datetime
    ) -> list[RefreshSession]:
        """List live sessions, oldest first."""
        stmt = (
            select(refresh_sessions_table)
            .where(
                and_(
                    refresh_sessions_table.c.identity_id == identity_id,
                    refresh_sessions_table.c.revoked_at.is_(None),
                    refresh_sessions_table.c.expires_at > now,
                )
            )
            .order_by(refresh_sessions_table.c.issued_at)
        )
        result = await self.session.execute(stmt)
        return [row_to_refresh_session(dict(row)) for row in result.mappings().all()]

    async def touch(self, session_id: SessionId, now: datetime) -> None:
        """Update last_used_at."""
        stmt = (
            update(refresh_sessions_table)
            .where(refresh_sessions_table.c.id == session_id)
            .values(last_used_at=now)
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def revoke(self, session_id: SessionId, reason: str, now: datetime) -> bool:
        """Revoke one session if it is not revoked yet."""
        count = await self._revoke_where(
            refresh_sessions_table.c.id == session_id, reason, now
        )
        return count > 0

    async def revoke_all(
        self, identity_id: IdentityId, reason: str, now: datetime
    ) -> int:
        """Revoke all of an identity's unrevoked sessions."""
        return await self._revoke_where(
            refresh_sessions_table.c.identity_id == identity_id, reason, now
        )

    async def revoke_by_device(
        self, identity_id: IdentityId, device_id: str, reason: str, now: datetime
    ) -> int:
        """Revoke the sessions bound to one device."""
        return await self._revoke_where(
            and_(
                refresh_sessions_table.c.identity_id == identity_id,
                refresh_sessions_table.c.device_id == device_id,
            ),
            reason,
            now,
        )

    async def _revoke_where(self, condition, reason: str, now: datetime) -> int:
        stmt = (
            update(refresh_sessions_table)
            .where(and_(condition, refresh_sessions_table.c.revoked_at.is_(None)))
            .values(revoked_at=now, revoked_reason=reason)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount


class PostgresSessionVerificationStore(SessionVerificationStore):
    """PostgreSQL implementation of SessionVerificationStore."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, session_id: SessionId) -> Optional[SessionVerification]:
        """Read a session's verification state."""
        stmt = select(session_verifications_table).where(
            session_verifications_table.c.session_id == session_id
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return row_to_session_verification(dict(row)) if row else None

    async def put(self, verification: SessionVerification) -> None:
        """Upsert a session's verification state."""
        values = session_verification_to_dict(verification)
        stmt = pg_insert(session_verifications_table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[session_verifications_table.c.session_id],
            set_={k: v for k, v in values.items() if k != "session_id"},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def delete(self, session_id: SessionId) -> None:
        """Forget a session's verification state."""
        stmt = delete(session_verifications_table).where(
            session_verifications_table.c.session_id == session_id
        )
        await self.session.execute(stmt)
        await self.session.flush()
