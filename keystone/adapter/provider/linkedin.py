"""LinkedIn (OpenID Connect) access token validator."""

import httpx

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import BearerProfileValidator, as_bool


class LinkedInTokenValidator(BearerProfileValidator):
    """Validates a LinkedIn token through the OpenID userinfo endpoint."""

    provider = SocialProvider.LINKEDIN
    profile_url = "https://api.linkedin.com/v2/userinfo"

    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        data = await self.get_json(client, self.profile_url, token=token)
        name = data.get("name") or " ".join(
            part for part in (data.get("given_name"), data.get("family_name")) if part
        )
        return ExternalProfile(
            provider=self.provider,
            external_id=str(data["sub"]),
            email=data.get("email"),
            display_name=name or None,
            avatar_url=data.get("picture"),
            email_verified=as_bool(data.get("email_verified")),
        )
