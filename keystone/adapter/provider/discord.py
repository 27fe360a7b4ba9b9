"""Discord access token validator."""

import httpx

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import BearerProfileValidator

AVATAR_URL = "https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png"


class DiscordTokenValidator(BearerProfileValidator):
    """Validates a Discord OAuth2 token via users/@me."""

    provider = SocialProvider.DISCORD
    profile_url = "https://discord.com/api/users/@me"

    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        data = await self.get_json(client, self.profile_url, token=token)
        user_id = str(data["id"])
        avatar = data.get("avatar")
        return ExternalProfile(
            provider=self.provider,
            external_id=user_id,
            email=data.get("email"),
            display_name=data.get("global_name") or data.get("username"),
            avatar_url=AVATAR_URL.format(user_id=user_id, avatar=avatar)
            if avatar
            else None,
            email_verified=bool(data.get("verified")),
        )
