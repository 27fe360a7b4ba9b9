"""Session entities.

A refresh session is the server-side record behind a refresh token; the
token itself is never stored, only its sha256.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from keystone.domain.model.common import DomainModel, utc_now
from keystone.domain.value import IdentityId, OtpPurpose, SessionId


class RefreshSession(DomainModel):
    """Refresh token session bound to one device of one identity."""

    id: SessionId
    identity_id: IdentityId
    device_id: str
    token_hash: str
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_live(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


class SessionVerification(DomainModel):
    """Step-up verification state for one session."""

    session_id: SessionId
    verified: bool = False
    verified_at: Optional[datetime] = None
    purpose: Optional[OtpPurpose] = None
