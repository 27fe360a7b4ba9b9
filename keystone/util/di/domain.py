"""Domain layer DI providers."""

from dishka import Scope, provide

from keystone.config import (
    AuthorizationSettings,
    AuthSettings,
    OTPSettings,
)
from keystone.domain.repository import (
    CounterStore,
    IdentityRepository,
    SecurityEventRepository,
    SessionRepository,
    SessionVerificationStore,
)
from keystone.domain.service import (
    AuthorizationService,
    FingerprintService,
    NotificationDispatcher,
    NotificationService,
    OtpService,
    PasswordService,
    ProviderTokenValidator,
    RateLimitService,
    SecurityEventService,
    SessionVerificationService,
    SocialAuthService,
    SocialLinkService,
    TokenService,
)
from keystone.domain.value import SocialProvider
from keystone.util.di.base import ProviderBase


class ProdDomainProvider(ProviderBase):
    """Production domain services provider - concrete, no mocks needed.

    Domain services are REQUEST-scoped to align with repository/session lifecycle.
    Each HTTP request gets fresh service instances with their own transaction.
    """

    scope = Scope.REQUEST

    @provide(scope=Scope.APP)
    def get_fingerprint_service(self) -> FingerprintService:
        """Provide device fingerprint service."""
        return FingerprintService()

    @provide(scope=Scope.APP)
    def get_password_service(self, auth_settings: AuthSettings) -> PasswordService:
        """Provide password hashing service."""
        return PasswordService(auth_settings=auth_settings)

    @provide(scope=Scope.APP)
    def get_authorization_service(
        self, authorization_settings: AuthorizationSettings
    ) -> AuthorizationService:
        """Provide authorization policy service."""
        return AuthorizationService(
            role_permissions=authorization_settings.role_permissions
        )

    @provide(scope=Scope.APP)
    def get_social_auth_service(
        self, validators: dict[SocialProvider, ProviderTokenValidator]
    ) -> SocialAuthService:
        """Provide multi-provider social token validation service.

        Args:
            validators: Dictionary mapping providers to their token validators

        Returns:
            SocialAuthService configured with all available validators
        """
        return SocialAuthService(validators=validators)

    @provide
    def get_notification_service(
        self, dispatcher: NotificationDispatcher
    ) -> NotificationService:
        """Provide notification service."""
        return NotificationService(dispatcher=dispatcher)

    @provide
    def get_security_event_service(
        self,
        security_event_repository: SecurityEventRepository,
        notification_service: NotificationService,
    ) -> SecurityEventService:
        """Provide security event service."""
        return SecurityEventService(
            security_event_repository=security_event_repository,
            notification_service=notification_service,
        )

    @provide
    def get_rate_limit_service(self, counter_store: CounterStore) -> RateLimitService:
        """Provide rate limit service."""
        return RateLimitService(counter_store=counter_store)

    @provide
    def get_otp_service(
        self,
        identity_repository: IdentityRepository,
        notification_service: NotificationService,
        security_event_service: SecurityEventService,
        rate_limit_service: RateLimitService,
        otp_settings: OTPSettings,
    ) -> OtpService:
        """Provide OTP challenge service."""
        return OtpService(
            identity_repository=identity_repository,
            notification_service=notification_service,
            security_event_service=security_event_service,
            rate_limit_service=rate_limit_service,
            otp_settings=otp_settings,
        )

    @provide
    def get_session_verification_service(
        self,
        verification_store: SessionVerificationStore,
        otp_settings: OTPSettings,
    ) -> SessionVerificationService:
        """Provide step-up verification window service."""
        return SessionVerificationService(
            verification_store=verification_store, otp_settings=otp_settings
        )

    @provide
    def get_social_link_service(
        self,
        identity_repository: IdentityRepository,
        security_event_service: SecurityEventService,
    ) -> SocialLinkService:
        """Provide social link service."""
        return SocialLinkService(
            identity_repository=identity_repository,
            security_event_service=security_event_service,
        )

    @provide
    def get_token_service(
        self,
        identity_repository: IdentityRepository,
        session_repository: SessionRepository,
        security_event_service: SecurityEventService,
        fingerprint_service: FingerprintService,
        auth_settings: AuthSettings,
    ) -> TokenService:
        """Provide token issuing service."""
        return TokenService(
            identity_repository=identity_repository,
            session_repository=session_repository,
            security_event_service=security_event_service,
            fingerprint_service=fingerprint_service,
            auth_settings=auth_settings,
        )
