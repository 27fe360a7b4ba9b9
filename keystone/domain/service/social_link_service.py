"""Social identity linking domain service.

Uniqueness of ``(provider, provider_id)`` and last-method protection are
enforced again inside the repository's atomic operations; the checks here
only produce the early, specific errors.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

import logfire

from keystone.domain.error import (
    ConflictAlreadyLinkedError,
    ConflictEmailInUseError,
    LastAuthMethodBlockedError,
    NotFoundError,
    ValidationError,
)
from keystone.domain.model import Identity, SocialLink
from keystone.domain.model.common import utc_now
from keystone.domain.repository.identity import IdentityRepository
from keystone.domain.value import (
    DeviceFingerprint,
    ExternalProfile,
    IdentityId,
    SecurityEventType,
    Severity,
    SocialProvider,
    normalize_email,
)
from keystone.domain.value.common import ValueObject

from .base import Service
from .security_event_service import SecurityEventService


class SocialLoginResult(ValueObject):
    """Outcome of a social login-or-register."""

    identity: Identity
    is_new_user: bool


class SocialLinkService(Service):
    """Domain service for attaching and detaching social provider accounts."""

    def __init__(
        self,
        identity_repository: IdentityRepository,
        security_event_service: SecurityEventService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize social link service.

        Args:
            identity_repository: Identity repository
            security_event_service: Security event log
            clock: Time source
        """
        self.identity_repository = identity_repository
        self.security_event_service = security_event_service
        self.clock = clock

    async def link(self, identity: Identity, profile: ExternalProfile) -> SocialLink:
        """Attach a provider account to an identity.

        Args:
            identity: Identity receiving the link
            profile: Validated provider profile

        Returns:
            The new social link

        Raises:
            ConflictAlreadyLinkedError: If the provider is already linked to this
                identity or the provider account belongs to another identity
            ConflictEmailInUseError: If the profile email belongs to another identity
        """
        provider = profile.provider
        with logfire.span(
            "social_link_service.link",
            identity_id=str(identity.id),
            provider=provider.value,
        ):
            if identity.find_link(provider):
                raise ConflictAlreadyLinkedError(
                    provider.value,
                    f"A {provider.value} account is already linked to this identity",
                )

            owner = await self.identity_repository.find_by_social_link(
                provider, profile.external_id
            )
            if owner and owner.id != identity.id:
                logfire.warn(
                    "Provider account linked elsewhere",
                    identity_id=str(identity.id),
                    provider=provider.value,
                )
                raise ConflictAlreadyLinkedError(
                    provider.value,
                    f"This {provider.value} account is linked to another identity",
                )

            if profile.email and profile.email.lower() != identity.email.lower():
                holder = await self.identity_repository.find_by_email(profile.email)
                if holder and holder.id != identity.id:
                    raise ConflictEmailInUseError(profile.email)

            link = self._new_link(profile)
            await self.identity_repository.add_social_link(identity.id, link)

            await self.security_event_service.record(
                SecurityEventType.SOCIAL_ACCOUNT_LINKED,
                identity,
                severity=Severity.MEDIUM,
                provider=provider.value,
                provider_email=profile.email,
            )
            logfire.info(
                "Social account linked",
                identity_id=str(identity.id),
                provider=provider.value,
            )
            return link

    async def unlink(
        self,
        identity: Identity,
        provider: SocialProvider,
        provider_id: str | None = None,
    ) -> Identity:
        """Detach a provider account.

        Args:
            identity: Owner of the link
            provider: Social provider
            provider_id: Provider account id; any link of the provider if omitted

        Returns:
            The updated identity

        Raises:
            NotFoundError: If no matching link exists
            LastAuthMethodBlockedError: If the link is the last way to log in
        """
        with logfire.span(
            "social_link_service.unlink",
            identity_id=str(identity.id),
            provider=provider.value,
        ):
            link = identity.find_link(provider, provider_id)
            if link is None:
                raise NotFoundError("Social link", provider_id or provider.value)

            if identity.auth_method_count() <= 1:
                logfire.warn(
                    "Refusing to unlink last auth method",
                    identity_id=str(identity.id),
                    provider=provider.value,
                )
                raise LastAuthMethodBlockedError()

            updated = await self.identity_repository.remove_social_link(
                identity.id, provider, link.provider_id
            )

            await self.security_event_service.record(
                SecurityEventType.SOCIAL_ACCOUNT_UNLINKED,
                updated,
                severity=Severity.MEDIUM,
                provider=provider.value,
            )
            logfire.info(
                "Social account unlinked",
                identity_id=str(identity.id),
                provider=provider.value,
            )
            return updated

    async def login_or_register(
        self,
        profile: ExternalProfile,
        device: DeviceFingerprint | None = None,
    ) -> SocialLoginResult:
        """Find the identity owning a provider account, or create one.

        Existing identities are never merged: a profile whose email already
        belongs to an identity is refused, so the owner must log in and link.

        Args:
            profile: Validated provider profile
            device: Device the request came from

        Returns:
            The identity and whether it was just created

        Raises:
            ValidationError: If the provider returned no email address
            ConflictEmailInUseError: If the email belongs to an existing identity
            ConflictAlreadyLinkedError: If a concurrent registration won
        """
        provider = profile.provider
        with logfire.span(
            "social_link_service.login_or_register", provider=provider.value
        ):
            existing = await self.identity_repository.find_by_social_link(
                provider, profile.external_id
            )
            if existing:
                return SocialLoginResult(identity=existing, is_new_user=False)

            if not profile.email:
                raise ValidationError(
                    f"{provider.value} did not share an email address"
                )
            email = normalize_email(profile.email)

            if await self.identity_repository.find_by_email(email):
                logfire.warn(
                    "Social registration email already in use",
                    provider=provider.value,
                )
                raise ConflictEmailInUseError(email)

            now = self.clock()
            identity = Identity(
                id=IdentityId(uuid4()),
                email=email,
                display_name=profile.display_name,
                email_verified=profile.email_verified,
                social_links=[self._new_link(profile)],
                created_at=now,
                updated_at=now,
            )
            created = await self.identity_repository.create(identity)

            await self.security_event_service.record(
                SecurityEventType.IDENTITY_REGISTERED,
                created,
                provider=provider.value,
                device_id=device.device_id if device else None,
                ip_address=device.client_ip if device else None,
            )
            logfire.info(
                "Identity registered via social login",
                identity_id=str(created.id),
                provider=provider.value,
            )
            return SocialLoginResult(identity=created, is_new_user=True)

    def list_links(self, identity: Identity) -> list[SocialLink]:
        return list(identity.social_links)

    def _new_link(self, profile: ExternalProfile) -> SocialLink:
        return SocialLink(
            provider=profile.provider,
            provider_id=profile.external_id,
            email=profile.email,
            display_name=profile.display_name,
            verified=True,
            connected_at=self.clock(),
        )
