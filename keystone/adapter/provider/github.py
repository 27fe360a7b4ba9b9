"""GitHub access token validator."""

import httpx

from keystone.domain.value import ExternalProfile, SocialProvider

from .base import BearerProfileValidator

GITHUB_HEADERS = {"Accept": "application/vnd.github+json"}


class GitHubTokenValidator(BearerProfileValidator):
    """Validates a GitHub token via /user, then looks up the primary email."""

    provider = SocialProvider.GITHUB
    profile_url = "https://api.github.com/user"
    emails_url = "https://api.github.com/user/emails"

    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        user = await self.get_json(
            client, self.profile_url, token=token, headers=GITHUB_HEADERS
        )
        email, verified = await self._primary_email(client, token)
        return ExternalProfile(
            provider=self.provider,
            external_id=str(user["id"]),
            email=email or user.get("email"),
            display_name=user.get("name") or user.get("login"),
            avatar_url=user.get("avatar_url"),
            email_verified=verified,
        )

    async def _primary_email(
        self, client: httpx.AsyncClient, token: str
    ) -> tuple[str | None, bool]:
        # Tokens without the user:email scope get a 404 here; the profile
        # is still valid, just without a verified address
        response = await client.get(
            self.emails_url,
            headers={**GITHUB_HEADERS, "Authorization": f"Bearer {token}"},
        )
        if not response.is_success:
            return None, False
        for entry in response.json():
            if entry.get("primary") and entry.get("verified"):
                return entry["email"], True
        return None, False
