"""Domain services."""

from .authorization_service import AuthorizationService, PolicyRule
from .base import Service
from .fingerprint_service import (
    DeviceChangeAssessment,
    DeviceComparison,
    FingerprintService,
)
from .notification_service import NotificationDispatcher, NotificationService
from .otp_service import IssuedChallenge, OtpMethodOption, OtpService, TotpEnrollment
from .password_service import PasswordService
from .provider_service import ProviderTokenValidator, SocialAuthService
from .rate_limit_service import RateLimitService
from .security_event_service import SecurityEventService
from .session_verification_service import SessionVerificationService
from .social_link_service import SocialLinkService, SocialLoginResult
from .token_service import AccessToken, IssuedTokens, TokenService

__all__ = [
    "AccessToken",
    "AuthorizationService",
    "DeviceChangeAssessment",
    "DeviceComparison",
    "FingerprintService",
    "IssuedChallenge",
    "IssuedTokens",
    "NotificationDispatcher",
    "NotificationService",
    "OtpMethodOption",
    "OtpService",
    "PasswordService",
    "PolicyRule",
    "ProviderTokenValidator",
    "RateLimitService",
    "SecurityEventService",
    "Service",
    "SessionVerificationService",
    "SocialAuthService",
    "SocialLinkService",
    "SocialLoginResult",
    "TokenService",
    "TotpEnrollment",
]
