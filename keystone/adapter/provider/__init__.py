"""Social provider token validators."""

import httpx

from keystone.config import ProviderSettings
from keystone.domain.service.provider_service import ProviderTokenValidator
from keystone.domain.value import SocialProvider

from .apple import AppleTokenValidator
from .base import BearerProfileValidator, SignedTokenValidator
from .discord import DiscordTokenValidator
from .facebook import FacebookTokenValidator
from .github import GitHubTokenValidator
from .google import GoogleTokenValidator
from .linkedin import LinkedInTokenValidator
from .microsoft import MicrosoftTokenValidator
from .mock import MockProviderTokenValidator, mock_token
from .twitter import TwitterTokenValidator

BEARER_VALIDATORS: dict[SocialProvider, type[BearerProfileValidator]] = {
    SocialProvider.FACEBOOK: FacebookTokenValidator,
    SocialProvider.TWITTER: TwitterTokenValidator,
    SocialProvider.GITHUB: GitHubTokenValidator,
    SocialProvider.LINKEDIN: LinkedInTokenValidator,
    SocialProvider.MICROSOFT: MicrosoftTokenValidator,
    SocialProvider.DISCORD: DiscordTokenValidator,
}


def build_validators(
    settings: ProviderSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[SocialProvider, ProviderTokenValidator]:
    """Create one validator per supported provider.

    Args:
        settings: Client ids and request timeout
        transport: Optional httpx transport shared by the bearer validators

    Returns:
        Map of provider to validator
    """
    timeout = settings.request_timeout_seconds
    validators: dict[SocialProvider, ProviderTokenValidator] = {
        SocialProvider.GOOGLE: GoogleTokenValidator(
            audience=settings.google_client_id, timeout=timeout
        ),
        SocialProvider.APPLE: AppleTokenValidator(
            audience=settings.apple_client_id, timeout=timeout
        ),
    }
    for provider, validator_class in BEARER_VALIDATORS.items():
        validators[provider] = validator_class(timeout=timeout, transport=transport)
    return validators


__all__ = [
    "AppleTokenValidator",
    "BearerProfileValidator",
    "DiscordTokenValidator",
    "FacebookTokenValidator",
    "GitHubTokenValidator",
    "GoogleTokenValidator",
    "LinkedInTokenValidator",
    "MicrosoftTokenValidator",
    "MockProviderTokenValidator",
    "SignedTokenValidator",
    "TwitterTokenValidator",
    "build_validators",
    "mock_token",
]
