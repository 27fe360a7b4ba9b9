"""Session repository interfaces."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from keystone.domain.model import RefreshSession, SessionVerification
from keystone.domain.value import IdentityId, SessionId


class SessionRepository(ABC):
    """Repository for refresh-token sessions."""

    @abstractmethod
    async def create(self, session: RefreshSession) -> RefreshSession:
        """Store a new session.

        Args:
            session: Session to store

        Returns:
            The stored session
        """
        pass

    @abstractmethod
    async def find_by_id(self, session_id: SessionId) -> Optional[RefreshSession]:
        """Find a session by ID."""
        pass

    @abstractmethod
    async def find_by_token_hash(self, token_hash: str) -> Optional[RefreshSession]:
        """Find a session by the sha256 of its refresh token."""
        pass

    @abstractmethod
    async def list_live(
        self, identity_id: IdentityId, now: datetime
    ) -> list[RefreshSession]:
        """List unrevoked, unexpired sessions of an identity, oldest first.

        Args:
            identity_id: Session owner
            now: Current time

        Returns:
            Live sessions ordered by issued_at
        """
        pass

    @abstractmethod
    async def touch(self, session_id: SessionId, now: datetime) -> None:
        """Record that the session's refresh token was used."""
        pass

    @abstractmethod
    async def revoke(self, session_id: SessionId, reason: str, now: datetime) -> bool:
        """Revoke one session.

        Returns:
            True if a live session was revoked, False if it was already revoked
            or does not exist
        """
        pass

    @abstractmethod
    async def revoke_all(
        self, identity_id: IdentityId, reason: str, now: datetime
    ) -> int:
        """Revoke every live session of an identity.

        Returns:
            Number of sessions revoked
        """
        pass

    @abstractmethod
    async def revoke_by_device(
        self, identity_id: IdentityId, device_id: str, reason: str, now: datetime
    ) -> int:
        """Revoke the live sessions bound to one device.

        Returns:
            Number of sessions revoked
        """
        pass


class SessionVerificationStore(ABC):
    """Keyed store of step-up verification state, one entry per session."""

    @abstractmethod
    async def get(self, session_id: SessionId) -> Optional[SessionVerification]:
        """Read a session's verification state."""
        pass

    @abstractmethod
    async def put(self, verification: SessionVerification) -> None:
        """Write a session's verification state."""
        pass

    @abstractmethod
    async def delete(self, session_id: SessionId) -> None:
        """Forget a session's verification state."""
        pass
