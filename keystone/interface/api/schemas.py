"""Response models shared by the routes.

Domain models carry password hashes and TOTP secrets, so identities are
always rendered through IdentityResponse.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from keystone.application.orchestrator import LoginResult
from keystone.domain.model import Identity, OtpSettings, RefreshSession, SocialLink
from keystone.domain.service import (
    IssuedChallenge,
    IssuedTokens,
    OtpMethodOption,
)
from keystone.domain.value import IdentityStatus, LoginState, RiskLevel


class IdentityResponse(BaseModel):
    """Public view of an identity."""

    id: UUID
    email: str
    username: str | None
    display_name: str | None
    phone_number: str | None
    email_verified: bool
    status: IdentityStatus
    role: str
    has_password: bool
    two_factor_enabled: bool
    otp_settings: OtpSettings
    social_links: list[SocialLink]
    created_at: datetime
    last_login_at: datetime | None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            username=identity.username,
            display_name=identity.display_name,
            phone_number=identity.phone_number,
            email_verified=identity.email_verified,
            status=identity.status,
            role=identity.role,
            has_password=identity.has_password,
            two_factor_enabled=identity.two_factor.enabled,
            otp_settings=identity.otp_settings,
            social_links=identity.social_links,
            created_at=identity.created_at,
            last_login_at=identity.last_login_at,
        )


class LoginResponse(BaseModel):
    """Outcome of a login step.

    Either ``tokens`` (SESSION_ISSUED) or ``otp_token`` (OTP_REQUIRED) is set.
    """

    state: LoginState
    identity: IdentityResponse | None = None
    tokens: IssuedTokens | None = None
    otp_token: str | None = None
    otp_token_expires_at: datetime | None = None
    challenge: IssuedChallenge | None = None
    otp_methods: list[OtpMethodOption] = []
    is_new_user: bool = False
    risk_level: RiskLevel = RiskLevel.LOW

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        # Pending logins do not reveal the account until the code checks out
        identity = (
            IdentityResponse.from_identity(result.identity)
            if result.state == LoginState.SESSION_ISSUED
            else None
        )
        return cls(
            state=result.state,
            identity=identity,
            tokens=result.tokens,
            otp_token=result.otp_token,
            otp_token_expires_at=result.otp_token_expires_at,
            challenge=result.challenge,
            otp_methods=result.otp_methods,
            is_new_user=result.is_new_user,
            risk_level=result.risk_level,
        )


class SessionResponse(BaseModel):
    """A refresh session as shown to its owner."""

    id: UUID
    device_id: str
    issued_at: datetime
    expires_at: datetime
    last_used_at: datetime | None
    current: bool

    @classmethod
    def from_session(
        cls, session: RefreshSession, current_session_id: UUID
    ) -> "SessionResponse":
        return cls(
            id=session.id,
            device_id=session.device_id,
            issued_at=session.issued_at,
            expires_at=session.expires_at,
            last_used_at=session.last_used_at,
            current=session.id == current_session_id,
        )


class BackupCodesResponse(BaseModel):
    """Plaintext backup codes, shown exactly once."""

    backup_codes: list[str]
