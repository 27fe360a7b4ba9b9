"""In-memory session repositories for testing."""

import asyncio
from datetime import datetime
from typing import Optional

from keystone.domain.model import RefreshSession, SessionVerification
from keystone.domain.repository.session import (
    SessionRepository,
    SessionVerificationStore,
)
from keystone.domain.value import IdentityId, SessionId


class InMemorySessionRepository(SessionRepository):
    """In-memory implementation of SessionRepository for testing."""

    def __init__(self) -> None:
        self._sessions: dict[SessionId, RefreshSession] = {}
        self._lock = asyncio.Lock()

    async def create(self, session: RefreshSession) -> RefreshSession:
        """Store session."""
        async with self._lock:
            self._sessions[session.id] = session
            return session

    async def find_by_id(self, session_id: SessionId) -> Optional[RefreshSession]:
        """Find session by ID."""
        return self._sessions.get(session_id)

    async def find_by_token_hash(self, token_hash: str) -> Optional[RefreshSession]:
        """Find session by refresh token hash."""
        for session in self._sessions.values():
            if session.token_hash == token_hash:
                return session
        return None

    async def list_live(
        self, identity_id: IdentityId, now: datetime
    ) -> list[RefreshSession]:
        """List live sessions, oldest first."""
        live = [
            s
            for s in self._sessions.values()
            if s.identity_id == identity_id and s.is_live(now)
        ]
        live.sort(key=lambda s: s.issued_at)
        return live

    async def touch(self, session_id: SessionId, now: datetime) -> None:
        """Update last_used_at."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session:
                self._sessions[session_id] = session.model_copy(
                    update={"last_used_at": now}
                )

    async def revoke(self, session_id: SessionId, reason: str, now: datetime) -> bool:
        """Revoke one session."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if not session or session.is_revoked:
                return False
            self._sessions[session_id] = self._revoked(session, reason, now)
            return True

    async def revoke_all(
        self, identity_id: IdentityId, reason: str, now: datetime
    ) -> int:
        """Revoke all of an identity's unrevoked sessions."""
        return await self._revoke_where(
            lambda s: s.identity_id == identity_id, reason, now
        )

    async def revoke_by_device(
        self, identity_id: IdentityId, device_id: str, reason: str, now: datetime
    ) -> int:
        """Revoke the sessions bound to one device."""
        return await self._revoke_where(
            lambda s: s.identity_id == identity_id and s.device_id == device_id,
            reason,
            now,
        )

    async def _revoke_where(self, predicate, reason: str, now: datetime) -> int:
        async with self._lock:
            count = 0
            for session_id, session in list(self._sessions.items()):
                if session.is_revoked or not predicate(session):
                    continue
                self._sessions[session_id] = self._revoked(session, reason, now)
                count += 1
            return count

    @staticmethod
    def _revoked(session: RefreshSession, reason: str, now: datetime) -> RefreshSession:
        return session.model_copy(update={"revoked_at": now, "revoked_reason": reason})


class InMemorySessionVerificationStore(SessionVerificationStore):
    """Dict-backed step-up verification store."""

    def __init__(self) -> None:
        self._entries: dict[SessionId, SessionVerification] = {}

    async def get(self, session_id: SessionId) -> Optional[SessionVerification]:
        return self._entries.get(session_id)

    async def put(self, verification: SessionVerification) -> None:
        self._entries[verification.session_id] = verification

    async def delete(self, session_id: SessionId) -> None:
        self._entries.pop(session_id, None)
