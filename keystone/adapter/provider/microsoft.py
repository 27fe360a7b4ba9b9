"""Microsoft account access token validator."""

import httpx

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import BearerProfileValidator


class MicrosoftTokenValidator(BearerProfileValidator):
    """Validates a Microsoft identity platform token via Graph /me."""

    provider = SocialProvider.MICROSOFT
    profile_url = "https://graph.microsoft.com/v1.0/me"

    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        data = await self.get_json(client, self.profile_url, token=token)
        email = data.get("mail") or data.get("userPrincipalName")
        return ExternalProfile(
            provider=self.provider,
            external_id=str(data["id"]),
            email=email,
            display_name=data.get("displayName"),
            email_verified=bool(data.get("mail")),
        )
