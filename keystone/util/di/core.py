"""Core DI providers (non-mockable)."""

from dishka import Scope, provide

from keystone.config import (
    AuthorizationSettings,
    AuthSettings,
    NotificationSettings,
    OTPSettings,
    ProviderSettings,
    RateLimitSettings,
    Settings,
)
from keystone.util.di.base import ProviderBase


class ProdConfigProvider(ProviderBase):
    """Production config provider - concrete, no mocks needed.

    Settings are loaded from environment variables and .env file automatically.
    """

    @provide(scope=Scope.APP)
    def provide_settings(self) -> Settings:
        """Provide application settings from environment."""
        return Settings()

    @provide(scope=Scope.APP)
    def provide_auth_settings(self, settings: Settings) -> AuthSettings:
        """Provide auth settings."""
        return settings.auth

    @provide(scope=Scope.APP)
    def provide_otp_settings(self, settings: Settings) -> OTPSettings:
        """Provide OTP settings."""
        return settings.otp

    @provide(scope=Scope.APP)
    def provide_provider_settings(self, settings: Settings) -> ProviderSettings:
        """Provide social provider settings."""
        return settings.providers

    @provide(scope=Scope.APP)
    def provide_rate_limit_settings(self, settings: Settings) -> RateLimitSettings:
        """Provide rate limit settings."""
        return settings.rate_limit

    @provide(scope=Scope.APP)
    def provide_authorization_settings(
        self, settings: Settings
    ) -> AuthorizationSettings:
        """Provide authorization settings."""
        return settings.authorization

    @provide(scope=Scope.APP)
    def provide_notification_settings(self, settings: Settings) -> NotificationSettings:
        """Provide notification settings."""
        return settings.notifications
