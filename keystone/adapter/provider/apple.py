"""Sign in with Apple identity token validator."""

from typing import Any

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import SignedTokenValidator, as_bool


class AppleTokenValidator(SignedTokenValidator):
    """Verifies Apple identity tokens against Apple's published keys.

    Apple only shares the user's name with the client on first sign-in, so
    the token carries no display name.
    """

    provider = SocialProvider.APPLE
    jwks_url = "https://appleid.apple.com/auth/keys"
    issuers = ("https://appleid.apple.com",)

    def to_profile(self, claims: dict[str, Any]) -> ExternalProfile:
        return ExternalProfile(
            provider=self.provider,
            external_id=claims["sub"],
            email=claims.get("email"),
            email_verified=as_bool(claims.get("email_verified")),
        )
