"""Mock social provider validators for testing and local runs."""

from keystone.domain.service.provider_service import ProviderTokenValidator
from keystone.domain.value import ExternalProfile, SocialProvider

MOCK_TOKEN_PREFIX = "mock"


def mock_token(external_id: str, email: str | None = None) -> str:
    """Build a token the mock validators accept."""
    return f"{MOCK_TOKEN_PREFIX}:{external_id}:{email or ''}"


class MockProviderTokenValidator(ProviderTokenValidator):
    """Deterministic validator: accepts ``mock:<external_id>:<email>`` tokens.

    Returns deterministic profiles without calling the provider; anything
    else is rejected like an invalid token.
    """

    def __init__(self, provider: SocialProvider) -> None:
        self.provider = provider
        self.calls: list[str] = []

    async def validate(self, token: str) -> ExternalProfile | None:
        self.calls.append(token)
        prefix, _, rest = token.partition(":")
        external_id, _, email = rest.partition(":")
        if prefix != MOCK_TOKEN_PREFIX or not external_id:
            return None
        return ExternalProfile(
            provider=self.provider,
            external_id=external_id,
            email=email or None,
            display_name=f"Mock {self.provider.value} user {external_id}",
            email_verified=bool(email),
        )
