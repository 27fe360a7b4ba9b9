"""Domain value objects for Keystone.

Value objects are immutable and defined by their values, not identity.
They encapsulate validation rules and business logic.
"""

import re
from enum import Enum

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from keystone.domain.error import ValidationError
from keystone.domain.value.common import RootValueObject, ValueObject


class SocialProvider(str, Enum):
    """Supported social identity providers."""

    GOOGLE = "google"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    GITHUB = "github"
    APPLE = "apple"
    LINKEDIN = "linkedin"
    MICROSOFT = "microsoft"
    DISCORD = "discord"


class IdentityStatus(str, Enum):
    """Lifecycle status of an identity."""

    ACTIVE = "active"
    LOCKED = "locked"
    INACTIVE = "inactive"


class OtpMethod(str, Enum):
    """How a one-time code reaches the user."""

    TOTP = "totp"
    EMAIL = "email"
    SMS = "sms"


class OtpPurpose(str, Enum):
    """What a one-time code is allowed to prove."""

    LOGIN = "login"
    RESET = "reset"
    VERIFICATION = "verification"
    SENSITIVE_OP = "sensitive_op"


class SensitiveOperation(str, Enum):
    """Operations gated behind step-up verification."""

    CHANGE_PASSWORD = "change_password"
    DISABLE_TWO_FACTOR = "disable_two_factor"
    TRUST_DEVICE = "trust_device"
    REMOVE_DEVICE = "remove_device"
    GENERATE_BACKUP_CODES = "generate_backup_codes"
    UPDATE_OTP_SETTINGS = "update_otp_settings"
    REVOKE_ALL_SESSIONS = "revoke_all_sessions"


class RiskLevel(str, Enum):
    """Coarse risk bucket derived from the suspicion score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    """Security event severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LoginMethod(str, Enum):
    """How a login record was authenticated."""

    PASSWORD = "password"
    PASSWORD_OTP = "password+otp"
    SOCIAL = "social"
    ONE_TIME_CODE = "one_time_code"


class LoginState(str, Enum):
    """States of the login flow."""

    AWAITING_CREDENTIAL = "awaiting_credential"
    CREDENTIAL_OK = "credential_ok"
    OTP_REQUIRED = "otp_required"
    OTP_OK = "otp_ok"
    SESSION_ISSUED = "session_issued"
    LOCKED = "locked"


class NotificationChannel(str, Enum):
    """Channels the notification dispatcher can deliver on."""

    EMAIL = "email"
    SMS = "sms"


class SecurityEventType(str, Enum):
    """Security event types written to the append-only log."""

    IDENTITY_REGISTERED = "identity_registered"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    OTP_GENERATED = "otp_generated"
    OTP_VERIFIED = "otp_verified"
    OTP_VERIFICATION_FAILED = "otp_verification_failed"
    OTP_EXHAUSTED = "otp_exhausted"
    SOCIAL_ACCOUNT_LINKED = "social_account_linked"
    SOCIAL_ACCOUNT_UNLINKED = "social_account_unlinked"
    NEW_DEVICE_REGISTERED = "new_device_registered"
    SUSPICIOUS_DEVICE = "suspicious_device"
    DEVICE_TRUSTED = "device_trusted"
    DEVICE_REMOVED = "device_removed"
    SESSION_REVOKED = "session_revoked"
    ALL_SESSIONS_REVOKED = "all_sessions_revoked"
    SESSION_LIMIT_EXCEEDED = "session_limit_exceeded"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFIED = "email_verified"
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    BACKUP_CODES_GENERATED = "backup_codes_generated"
    OTP_SETTINGS_UPDATED = "otp_settings_updated"


class Email(RootValueObject[str]):
    """Email address, normalized to lowercase."""

    @field_validator("root")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate basic shape and normalize case."""
        v = v.strip().lower()
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", v) or len(v) > 255:
            raise ValueError("Invalid email address")
        return v


def normalize_email(value: str) -> str:
    """Normalize an email address, raising the domain ValidationError."""
    try:
        return Email(value).root
    except PydanticValidationError as e:
        raise ValidationError("Invalid email address") from e


class ExternalProfile(ValueObject):
    """Profile returned by a social provider after token validation."""

    provider: SocialProvider
    external_id: str
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    email_verified: bool = False


class RequestSignals(ValueObject):
    """Raw request characteristics used for device fingerprinting.

    Header names are stored lowercased.
    """

    headers: dict[str, str] = Field(default_factory=dict)
    remote_addr: str | None = None

    @field_validator("headers")
    @classmethod
    def lowercase_header_names(cls, v: dict[str, str]) -> dict[str, str]:
        """Normalize header names."""
        return {k.lower(): val for k, val in v.items()}

    def header(self, name: str) -> str | None:
        """Return a header value, or None when missing or blank."""
        value = self.headers.get(name)
        return value if value else None


class Suspicion(ValueObject):
    """Suspicion score with the flags that contributed to it."""

    score: int = 0
    flags: list[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW


class DeviceFingerprint(ValueObject):
    """Characterization of the device behind a request."""

    device_id: str
    fingerprint_hash: str
    client_ip: str
    user_agent: str | None = None
    device_type: str = "unknown"
    location_summary: str = "Unknown"
    suspicion: Suspicion = Suspicion()


class PolicyDecision(ValueObject):
    """Outcome of an authorization policy evaluation."""

    allowed: bool
    rule: str
