"""Domain model entities for Keystone."""

from keystone.domain.model.identity import (
    Identity,
    LoginRecord,
    OtpChallenge,
    OtpSettings,
    SocialLink,
    TrustedDevice,
    TwoFactor,
)
from keystone.domain.model.security_event import SecurityEvent
from keystone.domain.model.session import RefreshSession, SessionVerification

__all__ = [
    "Identity",
    "SocialLink",
    "OtpSettings",
    "OtpChallenge",
    "TwoFactor",
    "TrustedDevice",
    "LoginRecord",
    "RefreshSession",
    "SessionVerification",
    "SecurityEvent",
]
