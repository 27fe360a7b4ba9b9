"""Google Sign-In identity token validator."""

from typing import Any

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import SignedTokenValidator, as_bool


class GoogleTokenValidator(SignedTokenValidator):
    """Verifies Google ID tokens against Google's published keys."""

    provider = SocialProvider.GOOGLE
    jwks_url = "https://www.googleapis.com/oauth2/v3/certs"
    issuers = ("accounts.google.com", "https://accounts.google.com")

    def to_profile(self, claims: dict[str, Any]) -> ExternalProfile:
        return ExternalProfile(
            provider=self.provider,
            external_id=claims["sub"],
            email=claims.get("email"),
            display_name=claims.get("name"),
            avatar_url=claims.get("picture"),
            email_verified=as_bool(claims.get("email_verified")),
        )
