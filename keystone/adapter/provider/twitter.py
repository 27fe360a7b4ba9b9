"""Twitter (X) OAuth 2.0 access token validator."""

import httpx

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import BearerProfileValidator


class TwitterTokenValidator(BearerProfileValidator):
    """Validates an OAuth 2.0 user token against the v2 users/me endpoint.

    Twitter does not share email addresses on this endpoint.
    """

    provider = SocialProvider.TWITTER
    profile_url = "https://api.twitter.com/2/users/me"

    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        body = await self.get_json(
            client,
            self.profile_url,
            token=token,
            params={"user.fields": "id,name,username,profile_image_url"},
        )
        data = body["data"]
        return ExternalProfile(
            provider=self.provider,
            external_id=str(data["id"]),
            display_name=data.get("name") or data.get("username"),
            avatar_url=data.get("profile_image_url"),
        )
