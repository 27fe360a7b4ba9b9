"""Application layer DI providers."""

from dishka import Scope, provide

from keystone.application.orchestrator import IdentityOrchestrator
from keystone.config import AuthSettings, OTPSettings, RateLimitSettings
from keystone.domain.repository import IdentityRepository
from keystone.domain.service import (
    AuthorizationService,
    FingerprintService,
    OtpService,
    PasswordService,
    RateLimitService,
    SecurityEventService,
    SessionVerificationService,
    SocialAuthService,
    SocialLinkService,
    TokenService,
)
from keystone.util.di.base import ProviderBase


class ProdApplicationProvider(ProviderBase):
    """Production application provider - concrete, no mocks needed."""

    @provide(scope=Scope.REQUEST)
    def get_identity_orchestrator(
        self,
        identity_repository: IdentityRepository,
        fingerprint_service: FingerprintService,
        password_service: PasswordService,
        social_auth_service: SocialAuthService,
        otp_service: OtpService,
        session_verification_service: SessionVerificationService,
        social_link_service: SocialLinkService,
        token_service: TokenService,
        security_event_service: SecurityEventService,
        rate_limit_service: RateLimitService,
        authorization_service: AuthorizationService,
        auth_settings: AuthSettings,
        otp_settings: OTPSettings,
        rate_limit_settings: RateLimitSettings,
    ) -> IdentityOrchestrator:
        """Provide identity orchestrator."""
        return IdentityOrchestrator(
            identity_repository=identity_repository,
            fingerprint_service=fingerprint_service,
            password_service=password_service,
            social_auth_service=social_auth_service,
            otp_service=otp_service,
            session_verification_service=session_verification_service,
            social_link_service=social_link_service,
            token_service=token_service,
            security_event_service=security_event_service,
            rate_limit_service=rate_limit_service,
            authorization_service=authorization_service,
            auth_settings=auth_settings,
            otp_settings=otp_settings,
            rate_limit_settings=rate_limit_settings,
        )
