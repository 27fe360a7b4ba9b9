"""In-memory identity repository for testing."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from keystone.domain.error import (
    ConflictAlreadyLinkedError,
    ConflictEmailInUseError,
    ConflictUsernameTakenError,
    LastAuthMethodBlockedError,
    NotFoundError,
)
from keystone.domain.model import Identity, LoginRecord, OtpChallenge, SocialLink
from keystone.domain.repository.identity import IdentityRepository
from keystone.domain.value import IdentityId, SocialProvider


class InMemoryIdentityRepository(IdentityRepository):
    """In-memory implementation of IdentityRepository for testing.

    A single lock serializes every check-and-write so uniqueness and
    attempt counting hold under concurrent callers.
    """

    def __init__(self) -> None:
        self._identities: dict[IdentityId, Identity] = {}
        self._lock = asyncio.Lock()

    async def find_by_id(self, identity_id: IdentityId) -> Optional[Identity]:
        """Find identity by ID."""
        return self._identities.get(identity_id)

    async def find_by_email(self, email: str) -> Optional[Identity]:
        """Find identity by email, ignoring case."""
        email = email.lower()
        for identity in self._identities.values():
            if identity.email.lower() == email:
                return identity
        return None

    async def find_by_email_or_username(self, identifier: str) -> Optional[Identity]:
        """Find identity by email or username."""
        by_email = await self.find_by_email(identifier)
        if by_email:
            return by_email
        for identity in self._identities.values():
            if identity.username and identity.username == identifier:
                return identity
        return None

    async def find_by_social_link(
        self, provider: SocialProvider, provider_id: str
    ) -> Optional[Identity]:
        """Find the identity owning a provider account."""
        for identity in self._identities.values():
            if identity.find_link(provider, provider_id):
                return identity
        return None

    async def create(self, identity: Identity) -> Identity:
        """Insert identity after checking email, username and link uniqueness."""
        async with self._lock:
            if await self.find_by_email(identity.email):
                raise ConflictEmailInUseError(identity.email)
            if identity.username:
                for existing in self._identities.values():
                    if existing.username == identity.username:
                        raise ConflictUsernameTakenError(identity.username)
            for link in identity.social_links:
                if await self.find_by_social_link(link.provider, link.provider_id):
                    raise ConflictAlreadyLinkedError(link.provider.value)

            self._identities[identity.id] = identity
            return identity

    async def save(self, identity: Identity) -> Identity:
        """Update identity, keeping stored links and challenge."""
        async with self._lock:
            existing = self._require(identity.id)
            stored = identity.model_copy(
                update={
                    "social_links": existing.social_links,
                    "otp_challenge": existing.otp_challenge,
                }
            )
            self._identities[identity.id] = stored
            return stored

    async def add_social_link(
        self, identity_id: IdentityId, link: SocialLink
    ) -> Identity:
        """Attach link if neither the provider nor the account is taken."""
        async with self._lock:
            identity = self._require(identity_id)
            if identity.find_link(link.provider):
                raise ConflictAlreadyLinkedError(link.provider.value)
            if await self.find_by_social_link(link.provider, link.provider_id):
                raise ConflictAlreadyLinkedError(link.provider.value)

            updated = identity.model_copy(
                update={"social_links": [*identity.social_links, link]}
            )
            self._identities[identity_id] = updated
            return updated

    async def remove_social_link(
        self, identity_id: IdentityId, provider: SocialProvider, provider_id: str
    ) -> Identity:
        """Detach link unless it is the last auth method."""
        async with self._lock:
            identity = self._require(identity_id)
            if not identity.find_link(provider, provider_id):
                raise NotFoundError("SocialLink", f"{provider.value}:{provider_id}")
            if identity.auth_method_count() <= 1:
                raise LastAuthMethodBlockedError()

            remaining = [
                link
                for link in identity.social_links
                if not (link.provider == provider and link.provider_id == provider_id)
            ]
            updated = identity.model_copy(update={"social_links": remaining})
            self._identities[identity_id] = updated
            return updated

    async def set_otp_challenge(
        self, identity_id: IdentityId, challenge: OtpChallenge
    ) -> None:
        """Replace the live challenge."""
        async with self._lock:
            identity = self._require(identity_id)
            self._identities[identity_id] = identity.model_copy(
                update={"otp_challenge": challenge}
            )

    async def clear_otp_challenge(self, identity_id: IdentityId) -> None:
        """Remove the live challenge."""
        async with self._lock:
            identity = self._identities.get(identity_id)
            if identity:
                self._identities[identity_id] = identity.model_copy(
                    update={"otp_challenge": None}
                )

    async def consume_otp_attempt(
        self, identity_id: IdentityId, now: datetime
    ) -> Optional[OtpChallenge]:
        """Increment attempts if the challenge is live and has slots left."""
        async with self._lock:
            identity = self._identities.get(identity_id)
            challenge = identity.otp_challenge if identity else None
            if not challenge or challenge.is_expired(now):
                return None
            if challenge.attempts >= challenge.max_attempts:
                return None

            updated = challenge.model_copy(update={"attempts": challenge.attempts + 1})
            self._identities[identity_id] = identity.model_copy(
                update={"otp_challenge": updated}
            )
            return updated

    async def record_login_failure(
        self,
        identity_id: IdentityId,
        record: LoginRecord,
        now: datetime,
        max_attempts: int,
        lockout_duration: Callable[[int], timedelta],
    ) -> Identity:
        """Count the failure under the lock."""
        async with self._lock:
            identity = self._require(identity_id)
            updated = identity.with_login_failure(
                record, now, max_attempts, lockout_duration
            )
            self._identities[identity_id] = updated
            return updated

    def _require(self, identity_id: IdentityId) -> Identity:
        identity = self._identities.get(identity_id)
        if not identity:
            raise NotFoundError("Identity", str(identity_id))
        return identity
