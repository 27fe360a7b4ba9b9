"""Shared plumbing for social provider token validators.

Two families exist: providers that hand out signed identity tokens
(verified locally against the provider's JWKS) and providers whose access
tokens are checked by fetching the profile they authorize.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx
import jwt
import logfire
from jwt import PyJWKClient

from keystone.adapter.error import ProviderError
from keystone.domain.error import ProviderUnavailableError
from keystone.domain.service.provider_service import ProviderTokenValidator
from keystone.domain.value import ExternalProfile, SocialProvider

DEFAULT_TIMEOUT_SECONDS = 10.0


def as_bool(value: Any) -> bool:
    """Providers send email_verified as a bool or as "true"/"false"."""
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


class BearerProfileValidator(ProviderTokenValidator, ABC):
    """Validator that trusts a token once the provider serves its profile.

    Subclasses set ``provider`` and implement ``fetch_profile``. Any non-2xx
    response, timeout or malformed payload makes the token invalid.
    """

    provider: SocialProvider

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize validator.

        Args:
            timeout: Bound on every outbound request, in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.timeout = timeout
        self.transport = transport

    async def validate(self, token: str) -> ExternalProfile | None:
        if not token:
            return None

        with logfire.span(f"{self.provider.value}_validator.validate"):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self.transport
                ) as client:
                    profile = await self.fetch_profile(client, token)
            except httpx.TimeoutException as e:
                logfire.warn(
                    "Provider request timed out",
                    provider=self.provider.value,
                    error=str(e),
                )
                return None
            except (httpx.HTTPError, ProviderUnavailableError) as e:
                logfire.warn(
                    "Provider unavailable", provider=self.provider.value, error=str(e)
                )
                return None
            except ProviderError as e:
                logfire.warn(
                    "Provider rejected token", provider=self.provider.value, error=str(e)
                )
                return None
            except (KeyError, TypeError, ValueError) as e:
                logfire.error(
                    "Unexpected provider payload",
                    provider=self.provider.value,
                    error=str(e),
                )
                return None

            logfire.info(
                "Provider token validated",
                provider=self.provider.value,
                external_id=profile.external_id,
            )
            return profile

    @abstractmethod
    async def fetch_profile(
        self, client: httpx.AsyncClient, token: str
    ) -> ExternalProfile:
        """Fetch and normalize the profile behind ``token``.

        Raises:
            ProviderError: If the provider refuses the token
        """
        pass

    async def get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        token: str | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET ``url`` and decode JSON, bearer-authenticated when ``token`` is set.

        Raises:
            ProviderUnavailableError: On a 5xx response
            ProviderError: On any other non-2xx response
        """
        request_headers = {"Accept": "application/json", **(headers or {})}
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        response = await client.get(url, params=params, headers=request_headers)
        if response.status_code >= 500:
            raise ProviderUnavailableError(self.provider.value)
        if not response.is_success:
            raise ProviderError(
                f"{self.provider.value} returned {response.status_code}"
            )
        return response.json()


class SignedTokenValidator(ProviderTokenValidator, ABC):
    """Validator for identity tokens signed with the provider's published keys.

    Signature, issuer, audience and expiry are all checked before any claim
    is trusted.
    """

    provider: SocialProvider
    jwks_url: str
    issuers: tuple[str, ...]
    algorithms: tuple[str, ...] = ("RS256",)

    def __init__(
        self,
        audience: str | None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        jwk_client: PyJWKClient | None = None,
    ) -> None:
        """Initialize validator.

        Args:
            audience: Expected ``aud`` (our client id at the provider)
            timeout: Bound on the JWKS fetch, in seconds
            jwk_client: Key client; defaults to a caching PyJWKClient
        """
        self.audience = audience
        self.jwk_client = jwk_client or PyJWKClient(
            self.jwks_url, cache_keys=True, timeout=int(timeout)
        )

    async def validate(self, token: str) -> ExternalProfile | None:
        if not token:
            return None

        with logfire.span(f"{self.provider.value}_validator.validate"):
            if not self.audience:
                logfire.error(
                    "Provider client id not configured", provider=self.provider.value
                )
                return None

            try:
                # PyJWKClient fetches keys with blocking urllib
                signing_key = await asyncio.to_thread(
                    self.jwk_client.get_signing_key_from_jwt, token
                )
                claims = jwt.decode(
                    token,
                    signing_key.key,
                    algorithms=list(self.algorithms),
                    audience=self.audience,
                    options={"require": ["exp", "iat", "iss", "aud", "sub"]},
                )
            except jwt.PyJWKClientConnectionError as e:
                logfire.warn(
                    "Provider keys unavailable",
                    provider=self.provider.value,
                    error=str(e),
                )
                return None
            except jwt.PyJWTError as e:
                logfire.warn(
                    "Provider token rejected",
                    provider=self.provider.value,
                    error=str(e),
                )
                return None

            if claims.get("iss") not in self.issuers:
                logfire.warn(
                    "Provider token issuer mismatch",
                    provider=self.provider.value,
                    issuer=claims.get("iss"),
                )
                return None

            profile = self.to_profile(claims)
            logfire.info(
                "Provider token validated",
                provider=self.provider.value,
                external_id=profile.external_id,
            )
            return profile

    @abstractmethod
    def to_profile(self, claims: dict[str, Any]) -> ExternalProfile:
        """Normalize verified claims into a profile."""
        pass
