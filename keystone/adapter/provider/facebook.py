"""Facebook access token validator."""

import httpx

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import BearerProfileValidator


class FacebookTokenValidator(BearerProfileValidator):
    """Validates a Facebook user access token through the Graph API."""

    provider = SocialProvider.FACEBOOK
    profile_url = "https://graph.facebook.com/me"

    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        data = await self.get_json(
            client,
            self.profile_url,
            params={"fields": "id,name,email,picture", "access_token": token},
        )
        picture = (data.get("picture") or {}).get("data") or {}
        return ExternalProfile(
            provider=self.provider,
            external_id=str(data["id"]),
            email=data.get("email"),
            display_name=data.get("name"),
            avatar_url=picture.get("url"),
            # Graph only returns confirmed addresses
            email_verified=bool(data.get("email")),
        )
