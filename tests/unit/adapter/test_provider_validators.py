"""Unit tests for social provider token validators."""

import json
import time
from types import SimpleNamespace

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from keystone.adapter.provider import (
    AppleTokenValidator,
    BearerProfileValidator,
    DiscordTokenValidator,
    FacebookTokenValidator,
    GitHubTokenValidator,
    GoogleTokenValidator,
    LinkedInTokenValidator,
    MicrosoftTokenValidator,
    MockProviderTokenValidator,
    SignedTokenValidator,
    TwitterTokenValidator,
    build_validators,
    mock_token,
)
from keystone.config import ProviderSettings
from keystone.domain.value import SocialProvider

GOOGLE_CLIENT_ID = "1234-keystone.apps.googleusercontent.com"
APPLE_CLIENT_ID = "com.example.keystone"


def json_transport(routes: dict[str, tuple[int, object]]) -> httpx.MockTransport:
    """Transport answering each path with a fixed status and JSON body."""

    def handler(request: httpx.Request) -> httpx.Response:
        status, body = routes.get(request.url.path, (404, {"message": "Not Found"}))
        return httpx.Response(status, content=json.dumps(body).encode())

    return httpx.MockTransport(handler)


class TestBearerValidators:
    """Tests for providers validated by fetching the profile."""

    @pytest.mark.asyncio
    async def test_github_profile_with_primary_email(self):
        """GitHub ids are stringified and the verified primary email is used."""
        # Arrange
        seen_auth: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_auth.append(request.headers["Authorization"])
            if request.url.path == "/user":
                return httpx.Response(
                    200,
                    json={
                        "id": 583231,
                        "login": "octocat",
                        "name": "The Octocat",
                        "email": None,
                        "avatar_url": "https://avatars.githubusercontent.com/u/583231",
                    },
                )
            return httpx.Response(
                200,
                json=[
                    {"email": "old@example.com", "primary": False, "verified": True},
                    {"email": "octo@example.com", "primary": True, "verified": True},
                ],
            )

        validator = GitHubTokenValidator(transport=httpx.MockTransport(handler))

        # Act
        profile = await validator.validate("gho_valid")

        # Assert
        assert profile.provider == SocialProvider.GITHUB
        assert profile.external_id == "583231"
        assert profile.email == "octo@example.com"
        assert profile.email_verified
        assert profile.display_name == "The Octocat"
        assert seen_auth == ["Bearer gho_valid", "Bearer gho_valid"]

    @pytest.mark.asyncio
    async def test_github_without_email_scope(self):
        """A refused email lookup still yields a profile, unverified."""
        # Arrange
        validator = GitHubTokenValidator(
            transport=json_transport(
                {"/user": (200, {"id": 1, "login": "octocat", "email": None})}
            )
        )

        # Act
        profile = await validator.validate("gho_valid")

        # Assert
        assert profile.email is None
        assert not profile.email_verified
        assert profile.display_name == "octocat"

    @pytest.mark.asyncio
    async def test_unauthorized_token_is_invalid(self):
        """A 401 from the provider means the token is not valid."""
        # Arrange
        validator = DiscordTokenValidator(
            transport=json_transport({"/api/users/@me": (401, {"message": "401"})})
        )

        # Act / Assert
        assert await validator.validate("expired") is None

    @pytest.mark.asyncio
    async def test_provider_outage_is_invalid(self):
        """5xx responses are treated as a failed validation."""
        # Arrange
        validator = MicrosoftTokenValidator(
            transport=json_transport({"/v1.0/me": (503, {"error": "unavailable"})})
        )

        # Act / Assert
        assert await validator.validate("token") is None

    @pytest.mark.asyncio
    async def test_timeout_is_invalid(self):
        """Timeouts are bounded and reported as None."""

        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        validator = LinkedInTokenValidator(
            timeout=0.1, transport=httpx.MockTransport(handler)
        )

        # Act / Assert
        assert await validator.validate("token") is None

    @pytest.mark.asyncio
    async def test_malformed_payload_is_invalid(self):
        """A profile without an id is not trusted."""
        # Arrange
        validator = FacebookTokenValidator(
            transport=json_transport({"/me": (200, {"name": "No Id"})})
        )

        # Act / Assert
        assert await validator.validate("token") is None

    @pytest.mark.asyncio
    async def test_empty_token_is_invalid_without_a_request(self):
        """Blank tokens never reach the provider."""

        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        validator = TwitterTokenValidator(transport=httpx.MockTransport(handler))

        # Act / Assert
        assert await validator.validate("") is None

    @pytest.mark.asyncio
    async def test_profile_normalization(self):
        """Each provider's payload maps onto the same profile fields."""
        # Arrange
        facebook = FacebookTokenValidator(
            transport=json_transport(
                {
                    "/me": (
                        200,
                        {
                            "id": "10158",
                            "name": "Fay Book",
                            "email": "fay@example.com",
                            "picture": {"data": {"url": "https://fb.example/p.jpg"}},
                        },
                    )
                }
            )
        )
        twitter = TwitterTokenValidator(
            transport=json_transport(
                {"/2/users/me": (200, {"data": {"id": "2244994945", "username": "x"}})}
            )
        )
        linkedin = LinkedInTokenValidator(
            transport=json_transport(
                {
                    "/v2/userinfo": (
                        200,
                        {
                            "sub": "782bbtaQ",
                            "given_name": "Lin",
                            "family_name": "Ked",
                            "email": "lin@example.com",
                            "email_verified": "true",
                        },
                    )
                }
            )
        )
        discord = DiscordTokenValidator(
            transport=json_transport(
                {
                    "/api/users/@me": (
                        200,
                        {
                            "id": "80351110224678912",
                            "username": "nelly",
                            "avatar": "8342729096ea3675442027381ff50dfe",
                            "email": "nelly@example.com",
                            "verified": True,
                        },
                    )
                }
            )
        )

        # Act
        fb = await facebook.validate("token")
        tw = await twitter.validate("token")
        li = await linkedin.validate("token")
        dc = await discord.validate("token")

        # Assert
        assert (fb.external_id, fb.email, fb.avatar_url) == (
            "10158",
            "fay@example.com",
            "https://fb.example/p.jpg",
        )
        assert fb.email_verified
        assert (tw.external_id, tw.email, tw.display_name) == ("2244994945", None, "x")
        assert li.display_name == "Lin Ked"
        assert li.email_verified
        assert dc.avatar_url == (
            "https://cdn.discordapp.com/avatars/80351110224678912/"
            "8342729096ea3675442027381ff50dfe.png"
        )
        assert dc.email_verified


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


class StubJwkClient:
    """Hands out a fixed public key, or fails like an unreachable JWKS."""

    def __init__(self, public_key=None, error: Exception | None = None) -> None:
        self.public_key = public_key
        self.error = error

    def get_signing_key_from_jwt(self, token: str):
        if self.error:
            raise self.error
        return SimpleNamespace(key=self.public_key)


def id_token(private_key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": "https://accounts.google.com",
        "aud": GOOGLE_CLIENT_ID,
        "sub": "110169484474386276334",
        "email": "gina@example.com",
        "email_verified": True,
        "name": "Gina Google",
        "iat": now,
        "exp": now + 3600,
        **overrides,
    }
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": "k1"})


class TestSignedValidators:
    """Tests for providers that issue signed identity tokens."""

    @pytest.mark.asyncio
    async def test_valid_google_token(self, rsa_key):
        """A correctly signed token for our client id yields the profile."""
        # Arrange
        validator = GoogleTokenValidator(
            audience=GOOGLE_CLIENT_ID, jwk_client=StubJwkClient(rsa_key.public_key())
        )

        # Act
        profile = await validator.validate(id_token(rsa_key))

        # Assert
        assert profile.provider == SocialProvider.GOOGLE
        assert profile.external_id == "110169484474386276334"
        assert profile.email == "gina@example.com"
        assert profile.email_verified
        assert profile.display_name == "Gina Google"

    @pytest.mark.asyncio
    async def test_wrong_audience_is_rejected(self, rsa_key):
        """Tokens minted for another client are refused."""
        # Arrange
        validator = GoogleTokenValidator(
            audience=GOOGLE_CLIENT_ID, jwk_client=StubJwkClient(rsa_key.public_key())
        )

        # Act / Assert
        assert await validator.validate(id_token(rsa_key, aud="someone-else")) is None

    @pytest.mark.asyncio
    async def test_wrong_issuer_is_rejected(self, rsa_key):
        """Only the provider's issuers are accepted."""
        # Arrange
        validator = GoogleTokenValidator(
            audience=GOOGLE_CLIENT_ID, jwk_client=StubJwkClient(rsa_key.public_key())
        )

        # Act / Assert
        assert (
            await validator.validate(id_token(rsa_key, iss="https://evil.example"))
            is None
        )

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(self, rsa_key):
        """Expired identity tokens are refused."""
        # Arrange
        validator = GoogleTokenValidator(
            audience=GOOGLE_CLIENT_ID, jwk_client=StubJwkClient(rsa_key.public_key())
        )
        past = int(time.time()) - 7200

        # Act / Assert
        assert (
            await validator.validate(id_token(rsa_key, iat=past, exp=past + 3600))
            is None
        )

    @pytest.mark.asyncio
    async def test_signature_from_another_key_is_rejected(self, rsa_key):
        """A token signed by a different key fails verification."""
        # Arrange
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        validator = GoogleTokenValidator(
            audience=GOOGLE_CLIENT_ID, jwk_client=StubJwkClient(rsa_key.public_key())
        )

        # Act / Assert
        assert await validator.validate(id_token(other_key)) is None

    @pytest.mark.asyncio
    async def test_unreachable_keys_are_invalid(self, rsa_key):
        """A JWKS outage is reported as None, not raised."""
        # Arrange
        validator = GoogleTokenValidator(
            audience=GOOGLE_CLIENT_ID,
            jwk_client=StubJwkClient(
                error=jwt.PyJWKClientConnectionError("Fail to fetch data from the url")
            ),
        )

        # Act / Assert
        assert await validator.validate(id_token(rsa_key)) is None

    @pytest.mark.asyncio
    async def test_unconfigured_client_id_is_invalid(self, rsa_key):
        """Without an audience no token can be trusted."""
        # Arrange
        validator = AppleTokenValidator(
            audience=None, jwk_client=StubJwkClient(rsa_key.public_key())
        )

        # Act / Assert
        assert await validator.validate(id_token(rsa_key)) is None

    @pytest.mark.asyncio
    async def test_apple_token(self, rsa_key):
        """Apple tokens send email_verified as a string."""
        # Arrange
        validator = AppleTokenValidator(
            audience=APPLE_CLIENT_ID, jwk_client=StubJwkClient(rsa_key.public_key())
        )
        token = id_token(
            rsa_key,
            iss="https://appleid.apple.com",
            aud=APPLE_CLIENT_ID,
            sub="001234.abcdef.0420",
            email="x7k2@privaterelay.appleid.com",
            email_verified="true",
        )

        # Act
        profile = await validator.validate(token)

        # Assert
        assert profile.external_id == "001234.abcdef.0420"
        assert profile.email_verified
        assert profile.display_name is None


class TestValidatorRegistry:
    """Tests for building the provider map."""

    def test_every_provider_has_a_validator(self):
        """All eight providers are wired."""
        # Act
        validators = build_validators(
            ProviderSettings(google_client_id=GOOGLE_CLIENT_ID)
        )

        # Assert
        assert set(validators) == set(SocialProvider)
        assert isinstance(validators[SocialProvider.GOOGLE], GoogleTokenValidator)
        assert validators[SocialProvider.GOOGLE].audience == GOOGLE_CLIENT_ID
        assert isinstance(validators[SocialProvider.GITHUB], GitHubTokenValidator)

    def test_bearer_validator_must_fetch_profile(self):
        """A bearer validator without fetch_profile cannot be created."""
        # Arrange
        class Incomplete(BearerProfileValidator):
            provider = SocialProvider.GITHUB

        # Act / Assert
        with pytest.raises(TypeError):
            Incomplete()

    def test_signed_validator_must_map_claims(self):
        """A signed-token validator without to_profile cannot be created."""
        # Arrange
        class Incomplete(SignedTokenValidator):
            provider = SocialProvider.GOOGLE
            jwks_url = "https://keys.example.com/jwks"
            issuers = ("https://keys.example.com",)

        # Act / Assert
        with pytest.raises(TypeError):
            Incomplete(audience=GOOGLE_CLIENT_ID, jwk_client=StubJwkClient())


class TestMockValidator:
    """Tests for the deterministic mock validator."""

    @pytest.mark.asyncio
    async def test_mock_token_round_trip(self):
        """Mock tokens carry the id and optional email."""
        # Arrange
        validator = MockProviderTokenValidator(SocialProvider.LINKEDIN)

        # Act
        with_email = await validator.validate(mock_token("42", "li@example.com"))
        without_email = await validator.validate(mock_token("43"))

        # Assert
        assert with_email.external_id == "42"
        assert with_email.email_verified
        assert without_email.email is None
        assert await validator.validate("not-a-mock-token") is None
        assert validator.calls[0] == "mock:42:li@example.com"
