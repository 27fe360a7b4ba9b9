"""Identity aggregate root.

An identity is the durable authenticated principal. Social links, the live
OTP challenge, trusted devices and login history are embedded in it and
change only through orchestrator operations.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from pydantic import Field

from keystone.domain.model.common import DomainModel, utc_now
from keystone.domain.value import (
    IdentityId,
    IdentityStatus,
    LoginMethod,
    OtpMethod,
    OtpPurpose,
    SocialProvider,
)

LOGIN_HISTORY_LIMIT = 50


class SocialLink(DomainModel):
    """Link between an identity and an account on a social provider.

    ``(provider, provider_id)`` is unique across all identities.
    """

    provider: SocialProvider
    provider_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    verified: bool = False
    connected_at: datetime = Field(default_factory=utc_now)


class OtpSettings(DomainModel):
    """Per-identity one-time code preferences."""

    enabled: bool = False
    preferred_method: OtpMethod = OtpMethod.EMAIL
    allow_fallback: bool = True
    require_for_login: bool = False
    require_for_sensitive_ops: bool = True


class OtpChallenge(DomainModel):
    """The single live one-time code challenge of an identity.

    TOTP challenges have no hashed code; the code comes from the
    authenticator app but attempts are still counted.
    """

    hashed_code: Optional[str] = None
    method: OtpMethod
    purpose: OtpPurpose
    expires_at: datetime
    attempts: int = 0
    max_attempts: int = 3
    verified: bool = False
    last_sent: datetime = Field(default_factory=utc_now)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts, 0)


class TwoFactor(DomainModel):
    """Authenticator-app enrollment state."""

    enabled: bool = False
    totp_secret: Optional[str] = None
    backup_codes: list[str] = Field(default_factory=list)  # sha256, single use
    enrolled_at: Optional[datetime] = None


class TrustedDevice(DomainModel):
    """A device seen logging into the identity."""

    device_id: str
    fingerprint_hash: str
    device_type: str = "unknown"
    user_agent: Optional[str] = None
    location_summary: str = "Unknown"
    ip_address: Optional[str] = None
    trusted: bool = False
    first_seen: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)


class LoginRecord(DomainModel):
    """One entry in the bounded login history."""

    at: datetime = Field(default_factory=utc_now)
    successful: bool
    method: LoginMethod
    device_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    failure_reason: Optional[str] = None


class Identity(DomainModel):
    """Identity aggregate root.

    Business rules:
    - Email is unique, compared case-insensitively
    - A provider appears at most once in social_links
    - At least one auth method (password or social link) must remain
    - login_history keeps the most recent LOGIN_HISTORY_LIMIT entries
    """

    id: IdentityId
    email: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    password_hash: Optional[str] = None
    email_verified: bool = False
    status: IdentityStatus = IdentityStatus.ACTIVE

    # Authorization
    role: str = "user"
    permissions: list[str] = Field(default_factory=list)  # "resource:action"

    social_links: list[SocialLink] = Field(default_factory=list)
    otp_settings: OtpSettings = OtpSettings()
    otp_challenge: Optional[OtpChallenge] = None
    two_factor: TwoFactor = TwoFactor()
    trusted_devices: list[TrustedDevice] = Field(default_factory=list)
    login_history: list[LoginRecord] = Field(default_factory=list)

    # Lockout bookkeeping
    failed_login_attempts: int = Field(default=0, ge=0)
    lockout_count: int = Field(default=0, ge=0)
    lockout_until: Optional[datetime] = None
    last_failed_login_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def auth_method_count(self) -> int:
        """Number of ways this identity can log in."""
        return int(self.has_password) + len(self.social_links)

    def find_link(
        self, provider: SocialProvider, provider_id: str | None = None
    ) -> SocialLink | None:
        for link in self.social_links:
            if link.provider != provider:
                continue
            if provider_id is None or link.provider_id == provider_id:
                return link
        return None

    def find_device(self, device_id: str) -> TrustedDevice | None:
        for device in self.trusted_devices:
            if device.device_id == device_id:
                return device
        return None

    def is_locked(self, now: datetime) -> bool:
        """Locked with a lockout window that has not yet passed."""
        return self.lockout_until is not None and self.lockout_until > now

    def requires_otp(self, purpose: OtpPurpose) -> bool:
        """Whether this identity's settings ask for a code for ``purpose``.

        Global enablement is checked by the caller.
        """
        if not self.otp_settings.enabled:
            return False
        if purpose == OtpPurpose.LOGIN:
            return self.otp_settings.require_for_login
        if purpose == OtpPurpose.SENSITIVE_OP:
            return self.otp_settings.require_for_sensitive_ops
        return True

    def with_login_record(self, record: LoginRecord) -> "Identity":
        """Return a copy with ``record`` appended to the bounded history."""
        history = [*self.login_history, record][-LOGIN_HISTORY_LIMIT:]
        return self.model_copy(update={"login_history": history})

    def with_login_failure(
        self,
        record: LoginRecord,
        now: datetime,
        max_attempts: int,
        lockout_duration: Callable[[int], timedelta],
    ) -> "Identity":
        """Count one failed login; reaching ``max_attempts`` locks the identity.

        ``lockout_duration`` maps the number of earlier lockouts to the
        length of the new one. An identity that is already locked keeps
        its current lockout.
        """
        attempts = self.failed_login_attempts + 1
        update: dict = {
            "failed_login_attempts": attempts,
            "last_failed_login_at": now,
            "updated_at": now,
        }
        if attempts >= max_attempts and not self.is_locked(now):
            update.update(
                {
                    "lockout_until": now + lockout_duration(self.lockout_count),
                    "lockout_count": self.lockout_count + 1,
                    "status": IdentityStatus.LOCKED,
                }
            )
        return self.with_login_record(record).model_copy(update=update)
