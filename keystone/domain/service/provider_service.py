"""Social provider token validation domain service."""

import logfire

from keystone.domain.error import InvalidCredentialError
from keystone.domain.value import ExternalProfile, SocialProvider

from .base import Service


class ProviderTokenValidator:
    """Generic token validator interface for all social providers."""

    provider: SocialProvider

    async def validate(self, token: str) -> ExternalProfile | None:
        """Validate a provider token and fetch the profile behind it.

        Implementations never raise: network, HTTP and signature failures
        are logged and reported as None.

        Args:
            token: Identity token or access token issued by the provider

        Returns:
            Normalized profile, or None if the token is not valid
        """
        raise NotImplementedError


class SocialAuthService(Service):
    """Domain service dispatching token validation to the right provider."""

    def __init__(self, validators: dict[SocialProvider, ProviderTokenValidator]) -> None:
        """Initialize social auth service.

        Args:
            validators: Map of provider to validator implementation
        """
        self.validators = validators

    @property
    def supported_providers(self) -> list[SocialProvider]:
        return list(self.validators)

    async def validate(self, provider: SocialProvider, token: str) -> ExternalProfile:
        """Validate ``token`` with ``provider``.

        Args:
            provider: Social provider that issued the token
            token: Raw provider token

        Returns:
            Profile of the provider account

        Raises:
            InvalidCredentialError: If the provider is unsupported or the token
                is invalid
        """
        with logfire.span("social_auth_service.validate", provider=provider.value):
            validator = self.validators.get(provider)
            if not validator:
                logfire.warn("Unsupported social provider", provider=provider.value)
                raise InvalidCredentialError(f"Unsupported provider: {provider.value}")

            profile = await validator.validate(token)
            if profile is None:
                logfire.warn("Social token rejected", provider=provider.value)
                raise InvalidCredentialError("Invalid social login token")

            return profile
