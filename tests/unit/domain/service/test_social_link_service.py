"""Unit tests for SocialLinkService."""

import asyncio

import pytest

from keystone.domain.error import (
    ConflictAlreadyLinkedError,
    ConflictEmailInUseError,
    LastAuthMethodBlockedError,
    NotFoundError,
    ValidationError,
)
from keystone.domain.value import ExternalProfile, SecurityEventType, SocialProvider
from tests.harness import ServiceGraph


def github_profile(external_id: str = "583231", email: str | None = None):
    return ExternalProfile(
        provider=SocialProvider.GITHUB,
        external_id=external_id,
        email=email,
        display_name="Octo Cat",
        email_verified=email is not None,
    )


class TestLoginOrRegister:
    """Tests for social login-or-register."""

    @pytest.mark.asyncio
    async def test_unknown_account_registers_identity(self, services: ServiceGraph):
        """A new provider account creates an identity holding the link."""
        # Act
        result = await services.social_link_service.login_or_register(
            github_profile(email="Octo@Example.com")
        )

        # Assert
        assert result.is_new_user
        identity = result.identity
        assert identity.email == "octo@example.com"
        assert identity.email_verified
        assert not identity.has_password
        assert [(l.provider, l.provider_id) for l in identity.social_links] == [
            (SocialProvider.GITHUB, "583231")
        ]
        assert await services.events(identity, SecurityEventType.IDENTITY_REGISTERED)

    @pytest.mark.asyncio
    async def test_known_account_logs_in(self, services: ServiceGraph):
        """The second login finds the same identity."""
        # Arrange
        first = await services.social_link_service.login_or_register(
            github_profile(email="octo@example.com")
        )

        # Act
        second = await services.social_link_service.login_or_register(
            github_profile(email="octo@example.com")
        )

        # Assert
        assert not second.is_new_user
        assert second.identity.id == first.identity.id

    @pytest.mark.asyncio
    async def test_existing_email_is_not_merged(self, services: ServiceGraph):
        """A provider email matching a password identity is refused."""
        # Arrange
        await services.register(email="octo@example.com")

        # Act / Assert
        with pytest.raises(ConflictEmailInUseError):
            await services.social_link_service.login_or_register(
                github_profile(email="OCTO@example.com")
            )

    @pytest.mark.asyncio
    async def test_registration_needs_an_email(self, services: ServiceGraph):
        """Providers that share no email cannot create identities."""
        # Act / Assert
        with pytest.raises(ValidationError):
            await services.social_link_service.login_or_register(github_profile())


class TestLink:
    """Tests for linking provider accounts."""

    @pytest.mark.asyncio
    async def test_link_attaches_account(self, services: ServiceGraph):
        """Linking stores the provider account on the identity."""
        # Arrange
        identity = await services.register()

        # Act
        link = await services.social_link_service.link(identity, github_profile())

        # Assert
        stored = await services.reload(identity)
        assert stored.find_link(SocialProvider.GITHUB, "583231") == link
        assert link.verified
        assert link.connected_at == services.clock()
        events = await services.events(identity, SecurityEventType.SOCIAL_ACCOUNT_LINKED)
        assert events[0].context["provider"] == "github"

    @pytest.mark.asyncio
    async def test_second_account_of_same_provider_is_rejected(
        self, services: ServiceGraph
    ):
        """An identity holds at most one link per provider."""
        # Arrange
        identity = await services.register()
        await services.social_link_service.link(identity, github_profile("1"))
        identity = await services.reload(identity)

        # Act / Assert
        with pytest.raises(ConflictAlreadyLinkedError):
            await services.social_link_service.link(identity, github_profile("2"))

    @pytest.mark.asyncio
    async def test_account_linked_elsewhere_is_rejected(self, services: ServiceGraph):
        """A provider account belongs to one identity only."""
        # Arrange
        alice = await services.register(email="alice@example.com")
        bob = await services.register(email="bob@example.com")
        await services.social_link_service.link(alice, github_profile())

        # Act / Assert
        with pytest.raises(ConflictAlreadyLinkedError):
            await services.social_link_service.link(bob, github_profile())

    @pytest.mark.asyncio
    async def test_profile_email_of_another_identity_is_rejected(
        self, services: ServiceGraph
    ):
        """Linking cannot attach another identity's email address."""
        # Arrange
        alice = await services.register(email="alice@example.com")
        await services.register(email="bob@example.com")

        # Act / Assert
        with pytest.raises(ConflictEmailInUseError):
            await services.social_link_service.link(
                alice, github_profile(email="bob@example.com")
            )

    @pytest.mark.asyncio
    async def test_concurrent_links_of_one_account_have_one_winner(
        self, services: ServiceGraph
    ):
        """Two identities racing for the same account: exactly one succeeds."""
        # Arrange
        alice = await services.register(email="alice@example.com")
        bob = await services.register(email="bob@example.com")

        # Act
        results = await asyncio.gather(
            services.social_link_service.link(alice, github_profile()),
            services.social_link_service.link(bob, github_profile()),
            return_exceptions=True,
        )

        # Assert
        conflicts = [r for r in results if isinstance(r, ConflictAlreadyLinkedError)]
        assert len(conflicts) == 1
        owner = await services.identity_repository.find_by_social_link(
            SocialProvider.GITHUB, "583231"
        )
        assert owner is not None
        assert owner.id in (alice.id, bob.id)


class TestUnlink:
    """Tests for unlinking provider accounts."""

    @pytest.mark.asyncio
    async def test_unlink_with_password_remaining(self, services: ServiceGraph):
        """A password identity may drop its only link."""
        # Arrange
        identity = await services.register()
        await services.social_link_service.link(identity, github_profile())
        identity = await services.reload(identity)

        # Act
        updated = await services.social_link_service.unlink(
            identity, SocialProvider.GITHUB
        )

        # Assert
        assert updated.social_links == []
        assert await services.events(
            identity, SecurityEventType.SOCIAL_ACCOUNT_UNLINKED
        )

    @pytest.mark.asyncio
    async def test_last_auth_method_cannot_be_unlinked(self, services: ServiceGraph):
        """A social-only identity keeps its last link."""
        # Arrange
        result = await services.social_link_service.login_or_register(
            github_profile(email="octo@example.com")
        )

        # Act / Assert
        with pytest.raises(LastAuthMethodBlockedError):
            await services.social_link_service.unlink(
                result.identity, SocialProvider.GITHUB
            )
        stored = await services.reload(result.identity)
        assert len(stored.social_links) == 1

    @pytest.mark.asyncio
    async def test_one_of_two_links_can_be_removed(self, services: ServiceGraph):
        """With two links and no password one link may go."""
        # Arrange
        result = await services.social_link_service.login_or_register(
            github_profile(email="octo@example.com")
        )
        await services.social_link_service.link(
            result.identity,
            ExternalProfile(provider=SocialProvider.DISCORD, external_id="80351110224678912"),
        )
        identity = await services.reload(result.identity)

        # Act
        updated = await services.social_link_service.unlink(
            identity, SocialProvider.GITHUB, "583231"
        )

        # Assert
        assert [l.provider for l in updated.social_links] == [SocialProvider.DISCORD]

    @pytest.mark.asyncio
    async def test_unknown_link_is_not_found(self, services: ServiceGraph):
        """Unlinking a provider that is not linked fails."""
        # Arrange
        identity = await services.register()

        # Act / Assert
        with pytest.raises(NotFoundError):
            await services.social_link_service.unlink(identity, SocialProvider.GOOGLE)
