"""Unit tests for TokenService."""

import pytest

from keystone.domain.error import (
    InvalidTokenError,
    NotFoundError,
    TokenExpiredError,
    TokenRevokedError,
)
from keystone.domain.service.token_service import hash_refresh_token
from keystone.domain.value import IdentityStatus, SecurityEventType
from tests.harness import FIREFOX_WINDOWS_UA, ServiceGraph, browser_signals


async def issue(services: ServiceGraph, identity, signals=None):
    """Issue a session on the stored identity for a device."""
    device = services.fingerprint_service.characterize(signals or browser_signals())
    stored = await services.reload(identity)
    return await services.token_service.issue(stored, device), device


class TestIssue:
    """Tests for starting sessions."""

    @pytest.mark.asyncio
    async def test_issue_returns_verifiable_access_token(self, services: ServiceGraph):
        """The access token names the identity, session and device."""
        # Arrange
        identity = await services.register()

        # Act
        tokens, device = await issue(services, identity)

        # Assert
        claims = services.token_service.verify_access_token(tokens.access_token)
        assert claims.sub == str(identity.id)
        assert claims.sid == str(tokens.session_id)
        assert claims.did == device.device_id
        assert tokens.token_type == "Bearer"
        assert (tokens.access_token_expires_at - services.clock()).total_seconds() == 900
        assert (tokens.refresh_token_expires_at - services.clock()).days == 7

    @pytest.mark.asyncio
    async def test_only_refresh_token_hash_is_stored(self, services: ServiceGraph):
        """The session row holds the sha256 of the refresh token."""
        # Arrange
        identity = await services.register()

        # Act
        tokens, _ = await issue(services, identity)

        # Assert
        session = await services.session_repository.find_by_id(tokens.session_id)
        assert session.token_hash == hash_refresh_token(tokens.refresh_token)
        assert session.token_hash != tokens.refresh_token

    @pytest.mark.asyncio
    async def test_new_device_is_registered_once(self, services: ServiceGraph):
        """The first login from a device registers it; the next only touches it."""
        # Arrange
        identity = await services.register()
        await issue(services, identity)

        # Act
        services.clock.advance(hours=1)
        await issue(services, identity)

        # Assert
        stored = await services.reload(identity)
        assert len(stored.trusted_devices) == 1
        assert stored.trusted_devices[0].last_seen == services.clock()
        assert not stored.trusted_devices[0].trusted
        events = await services.events(identity, SecurityEventType.NEW_DEVICE_REGISTERED)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_rapid_switch_to_different_device_is_flagged(
        self, services: ServiceGraph
    ):
        """A very different device right after a login raises a security event."""
        # Arrange
        identity = await services.register()
        await issue(services, identity)
        stored = await services.reload(identity)
        await services.identity_repository.save(
            stored.model_copy(update={"last_login_at": services.clock()})
        )

        # Act
        services.clock.advance(minutes=5)
        await issue(
            services,
            identity,
            browser_signals(ip="10.0.0.5", user_agent=FIREFOX_WINDOWS_UA),
        )

        # Assert
        events = await services.events(identity, SecurityEventType.SUSPICIOUS_DEVICE)
        assert len(events) == 1
        assert "rapid_device_change" in events[0].context["reasons"]

    @pytest.mark.asyncio
    async def test_session_cap_revokes_oldest(self, services: ServiceGraph):
        """Opening a session beyond the cap revokes the oldest live one."""
        # Arrange
        identity = await services.register()
        issued = []
        for _ in range(3):
            tokens, _ = await issue(services, identity)
            issued.append(tokens)
            services.clock.advance(minutes=1)

        # Act
        newest, _ = await issue(services, identity)

        # Assert
        live = await services.token_service.list_sessions(identity.id)
        assert [s.id for s in live] == [
            issued[1].session_id,
            issued[2].session_id,
            newest.session_id,
        ]
        oldest = await services.session_repository.find_by_id(issued[0].session_id)
        assert oldest.revoked_reason == "session_limit"
        with pytest.raises(TokenRevokedError):
            await services.token_service.refresh(issued[0].refresh_token)
        assert await services.events(identity, SecurityEventType.SESSION_LIMIT_EXCEEDED)


class TestRefresh:
    """Tests for refreshing access tokens."""

    @pytest.mark.asyncio
    async def test_refresh_mints_new_access_token(self, services: ServiceGraph):
        """A live refresh token yields a new access token for the same session."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)
        services.clock.advance(minutes=20)

        # Act
        refreshed = await services.token_service.refresh(tokens.refresh_token)

        # Assert
        assert refreshed.session_id == tokens.session_id
        claims = services.token_service.verify_access_token(refreshed.access_token)
        assert claims.sid == str(tokens.session_id)
        session = await services.session_repository.find_by_id(tokens.session_id)
        assert session.last_used_at == services.clock()

    @pytest.mark.asyncio
    async def test_revoked_session_cannot_refresh(self, services: ServiceGraph):
        """Revocation stops refreshes at once."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)

        # Act
        revoked = await services.token_service.revoke(tokens.session_id)

        # Assert
        assert revoked
        with pytest.raises(TokenRevokedError) as exc_info:
            await services.token_service.refresh(tokens.refresh_token)
        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_revoking_twice_reports_false(self, services: ServiceGraph):
        """Only the first revocation counts."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)
        await services.token_service.revoke(tokens.session_id)

        # Act / Assert
        assert not await services.token_service.revoke(tokens.session_id)

    @pytest.mark.asyncio
    async def test_expired_session_cannot_refresh(self, services: ServiceGraph):
        """Refresh tokens stop working after refresh_token_days."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)

        # Act
        services.clock.advance(days=7)

        # Assert
        with pytest.raises(TokenExpiredError):
            await services.token_service.refresh(tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_unknown_refresh_token_is_invalid(self, services: ServiceGraph):
        """A token that was never issued is rejected."""
        # Act / Assert
        with pytest.raises(InvalidTokenError):
            await services.token_service.refresh("not-a-real-token")

    @pytest.mark.asyncio
    async def test_inactive_identity_cannot_refresh(self, services: ServiceGraph):
        """Deactivated identities lose their sessions."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)
        stored = await services.reload(identity)
        await services.identity_repository.save(
            stored.model_copy(update={"status": IdentityStatus.INACTIVE})
        )

        # Act / Assert
        with pytest.raises(InvalidTokenError):
            await services.token_service.refresh(tokens.refresh_token)


class TestAccessTokens:
    """Tests for access and pending-login token verification."""

    @pytest.mark.asyncio
    async def test_access_token_expires(self, services: ServiceGraph):
        """Access tokens stop verifying after access_token_minutes."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)

        # Act
        services.clock.advance(minutes=15)

        # Assert
        with pytest.raises(TokenExpiredError):
            services.token_service.verify_access_token(tokens.access_token)

    @pytest.mark.asyncio
    async def test_tampered_access_token_is_invalid(self, services: ServiceGraph):
        """A modified signature is rejected."""
        # Arrange
        identity = await services.register()
        tokens, _ = await issue(services, identity)
        header, payload, signature = tokens.access_token.split(".")
        tampered = ".".join([header, payload, signature[::-1]])

        # Act / Assert
        with pytest.raises(InvalidTokenError):
            services.token_service.verify_access_token(tampered)

    @pytest.mark.asyncio
    async def test_pending_login_token_is_not_an_access_token(
        self, services: ServiceGraph
    ):
        """Token types are not interchangeable."""
        # Arrange
        identity = await services.register()
        otp_token, _ = services.token_service.create_otp_token(
            identity, "device-1", "password"
        )

        # Act / Assert
        with pytest.raises(InvalidTokenError):
            services.token_service.verify_access_token(otp_token)
        claims = services.token_service.verify_otp_token(otp_token)
        assert claims.sub == str(identity.id)
        assert claims.method == "password"


class TestDevices:
    """Tests for trusting and removing devices."""

    @pytest.mark.asyncio
    async def test_trust_device(self, services: ServiceGraph):
        """A known device can be marked trusted."""
        # Arrange
        identity = await services.register()
        _, device = await issue(services, identity)

        # Act
        updated = await services.token_service.trust_device(
            await services.reload(identity), device.device_id
        )

        # Assert
        assert updated.find_device(device.device_id).trusted
        assert await services.events(identity, SecurityEventType.DEVICE_TRUSTED)

    @pytest.mark.asyncio
    async def test_trust_unknown_device_is_not_found(self, services: ServiceGraph):
        """Only registered devices can be trusted."""
        # Arrange
        identity = await services.register()

        # Act / Assert
        with pytest.raises(NotFoundError):
            await services.token_service.trust_device(identity, "0123456789abcdef")

    @pytest.mark.asyncio
    async def test_remove_device_revokes_its_sessions(self, services: ServiceGraph):
        """Forgetting a device ends the sessions bound to it, and only those."""
        # Arrange
        identity = await services.register()
        laptop_tokens, laptop = await issue(services, identity)
        services.clock.advance(minutes=1)
        desktop_tokens, _ = await issue(
            services, identity, browser_signals(user_agent=FIREFOX_WINDOWS_UA)
        )

        # Act
        updated = await services.token_service.remove_device(
            await services.reload(identity), laptop.device_id
        )

        # Assert
        assert updated.find_device(laptop.device_id) is None
        with pytest.raises(TokenRevokedError):
            await services.token_service.refresh(laptop_tokens.refresh_token)
        refreshed = await services.token_service.refresh(desktop_tokens.refresh_token)
        assert refreshed.session_id == desktop_tokens.session_id
