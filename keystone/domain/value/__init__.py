"""Domain value objects for Keystone."""

from keystone.domain.value.identifiers import IdentityId, SecurityEventId, SessionId
from keystone.domain.value.types import (
    DeviceFingerprint,
    Email,
    ExternalProfile,
    IdentityStatus,
    LoginMethod,
    LoginState,
    NotificationChannel,
    OtpMethod,
    OtpPurpose,
    PolicyDecision,
    RequestSignals,
    RiskLevel,
    SecurityEventType,
    SensitiveOperation,
    Severity,
    SocialProvider,
    Suspicion,
    normalize_email,
)

__all__ = [
    # Identifiers
    "IdentityId",
    "SessionId",
    "SecurityEventId",
    # Enums
    "SocialProvider",
    "IdentityStatus",
    "OtpMethod",
    "OtpPurpose",
    "SensitiveOperation",
    "RiskLevel",
    "Severity",
    "LoginMethod",
    "LoginState",
    "NotificationChannel",
    "SecurityEventType",
    # Types
    "Email",
    "ExternalProfile",
    "RequestSignals",
    "Suspicion",
    "DeviceFingerprint",
    "PolicyDecision",
    "normalize_email",
]
