"""Session token domain service.

Access tokens are stateless JWTs. Refresh tokens are opaque random strings
tracked server-side per device; only their sha256 is stored, so revoking a
session stops refreshes at once while outstanding access tokens run until
their own expiry.
"""

import hashlib
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import uuid4

import logfire

from keystone.config import AuthSettings
from keystone.domain.error import (
    InvalidTokenError,
    NotFoundError,
    TokenExpiredError,
    TokenRevokedError,
)
from keystone.domain.model import Identity, RefreshSession, TrustedDevice
from keystone.domain.model.common import utc_now
from keystone.domain.repository.identity import IdentityRepository
from keystone.domain.repository.session import SessionRepository
from keystone.domain.value import (
    DeviceFingerprint,
    IdentityId,
    IdentityStatus,
    SecurityEventType,
    SessionId,
    Severity,
)
from keystone.domain.value.common import ValueObject
from keystone.util.jwt import (
    ACCESS_TOKEN_TYPE,
    OTP_PENDING_TOKEN_TYPE,
    AccessTokenClaims,
    OtpPendingClaims,
    create_token,
    decode_token,
)

from .base import Service
from .fingerprint_service import FingerprintService
from .security_event_service import SecurityEventService

REFRESH_TOKEN_BYTES = 48


class IssuedTokens(ValueObject):
    """Credentials handed to a client when a session starts."""

    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    device_id: str
    session_id: SessionId
    token_type: str = "Bearer"


class AccessToken(ValueObject):
    """A fresh access token minted from a refresh token."""

    access_token: str
    access_token_expires_at: datetime
    session_id: SessionId
    token_type: str = "Bearer"


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenService(Service):
    """Domain service that mints, refreshes and revokes session credentials."""

    def __init__(
        self,
        identity_repository: IdentityRepository,
        session_repository: SessionRepository,
        security_event_service: SecurityEventService,
        fingerprint_service: FingerprintService,
        auth_settings: AuthSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize token service.

        Args:
            identity_repository: Identity repository (device list)
            session_repository: Refresh session repository
            security_event_service: Security event log
            fingerprint_service: Used to judge device changes
            auth_settings: Token lifetimes, signing and session cap
            clock: Time source
        """
        self.identity_repository = identity_repository
        self.session_repository = session_repository
        self.security_event_service = security_event_service
        self.fingerprint_service = fingerprint_service
        self.auth_settings = auth_settings
        self.clock = clock

    async def issue(self, identity: Identity, device: DeviceFingerprint) -> IssuedTokens:
        """Start a session for ``identity`` on ``device``.

        The device is registered (or refreshed) on the identity and the
        oldest live sessions are revoked once the concurrent-session cap
        would be exceeded.

        Args:
            identity: Authenticated identity
            device: Device the login came from

        Returns:
            Access and refresh tokens
        """
        with logfire.span(
            "token_service.issue",
            identity_id=str(identity.id),
            device_id=device.device_id,
        ):
            now = self.clock()
            await self._register_device(identity, device, now)
            await self._enforce_session_cap(identity, now)

            refresh_token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
            session = await self.session_repository.create(
                RefreshSession(
                    id=SessionId(uuid4()),
                    identity_id=identity.id,
                    device_id=device.device_id,
                    token_hash=hash_refresh_token(refresh_token),
                    issued_at=now,
                    expires_at=now + timedelta(days=self.auth_settings.refresh_token_days),
                )
            )

            access_token, access_expires_at = self._access_token(session, now)
            logfire.info(
                "Session issued",
                identity_id=str(identity.id),
                session_id=str(session.id),
                device_id=device.device_id,
            )
            return IssuedTokens(
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=access_expires_at,
                refresh_token_expires_at=session.expires_at,
                device_id=device.device_id,
                session_id=session.id,
            )

    async def refresh(self, refresh_token: str) -> AccessToken:
        """Mint a new access token from a refresh token.

        Raises:
            InvalidTokenError: If the token is unknown or its identity is gone
            TokenRevokedError: If the session was revoked
            TokenExpiredError: If the session is past its expiry
        """
        with logfire.span("token_service.refresh"):
            now = self.clock()
            session = await self.session_repository.find_by_token_hash(
                hash_refresh_token(refresh_token)
            )
            if session is None:
                logfire.warn("Unknown refresh token")
                raise InvalidTokenError()
            if session.is_revoked:
                logfire.warn(
                    "Revoked refresh token used",
                    session_id=str(session.id),
                    identity_id=str(session.identity_id),
                )
                raise TokenRevokedError()
            if session.is_expired(now):
                raise TokenExpiredError()

            identity = await self.identity_repository.find_by_id(session.identity_id)
            if identity is None or identity.status == IdentityStatus.INACTIVE:
                raise InvalidTokenError()

            await self.session_repository.touch(session.id, now)
            access_token, expires_at = self._access_token(session, now)
            logfire.info("Access token refreshed", session_id=str(session.id))
            return AccessToken(
                access_token=access_token,
                access_token_expires_at=expires_at,
                session_id=session.id,
            )

    async def revoke(
        self,
        session_id: SessionId,
        reason: str = "logout",
        identity: Identity | None = None,
    ) -> bool:
        """Revoke one session's refresh token.

        Returns:
            True if a live session was revoked
        """
        with logfire.span("token_service.revoke", session_id=str(session_id)):
            revoked = await self.session_repository.revoke(
                session_id, reason, self.clock()
            )
            if revoked:
                session = await self.session_repository.find_by_id(session_id)
                await self.security_event_service.record(
                    SecurityEventType.SESSION_REVOKED,
                    identity,
                    identity_id=session.identity_id if session else None,
                    session_id=str(session_id),
                    reason=reason,
                )
            return revoked

    async def revoke_all(self, identity: Identity, reason: str = "revoke_all") -> int:
        """Revoke every live session of ``identity``.

        Returns:
            Number of sessions revoked
        """
        with logfire.span("token_service.revoke_all", identity_id=str(identity.id)):
            count = await self.session_repository.revoke_all(
                identity.id, reason, self.clock()
            )
            await self.security_event_service.record(
                SecurityEventType.ALL_SESSIONS_REVOKED,
                identity,
                severity=Severity.MEDIUM,
                count=count,
                reason=reason,
            )
            logfire.info(
                "All sessions revoked", identity_id=str(identity.id), count=count
            )
            return count

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """Verify an access token.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is malformed or forged
        """
        payload = decode_token(
            token, ACCESS_TOKEN_TYPE, self.auth_settings, self.clock()
        )
        try:
            return AccessTokenClaims(**payload)
        except ValueError:
            raise InvalidTokenError()

    def create_otp_token(
        self, identity: Identity, device_id: str, method: str
    ) -> tuple[str, datetime]:
        """Sign a pending-login token for the OTP branch of a login."""
        now = self.clock()
        expires_at = now + timedelta(minutes=self.auth_settings.otp_token_minutes)
        token = create_token(
            {"sub": str(identity.id), "did": device_id, "method": method},
            OTP_PENDING_TOKEN_TYPE,
            now,
            expires_at,
            self.auth_settings,
        )
        return token, expires_at

    def verify_otp_token(self, token: str) -> OtpPendingClaims:
        """Verify a pending-login token.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is malformed, forged or not a
                pending-login token
        """
        payload = decode_token(
            token, OTP_PENDING_TOKEN_TYPE, self.auth_settings, self.clock()
        )
        try:
            return OtpPendingClaims(**payload)
        except ValueError:
            raise InvalidTokenError()

    async def trust_device(self, identity: Identity, device_id: str) -> Identity:
        """Mark a known device as trusted.

        Raises:
            NotFoundError: If the device is not registered on the identity
        """
        with logfire.span(
            "token_service.trust_device",
            identity_id=str(identity.id),
            device_id=device_id,
        ):
            if not identity.find_device(device_id):
                raise NotFoundError("Device", device_id)

            devices = [
                d.model_copy(update={"trusted": True}) if d.device_id == device_id else d
                for d in identity.trusted_devices
            ]
            saved = await self.identity_repository.save(
                identity.model_copy(
                    update={"trusted_devices": devices, "updated_at": self.clock()}
                )
            )
            await self.security_event_service.record(
                SecurityEventType.DEVICE_TRUSTED, saved, device_id=device_id
            )
            return saved

    async def remove_device(self, identity: Identity, device_id: str) -> Identity:
        """Forget a device and revoke its sessions.

        Raises:
            NotFoundError: If the device is not registered on the identity
        """
        with logfire.span(
            "token_service.remove_device",
            identity_id=str(identity.id),
            device_id=device_id,
        ):
            if not identity.find_device(device_id):
                raise NotFoundError("Device", device_id)

            now = self.clock()
            devices = [d for d in identity.trusted_devices if d.device_id != device_id]
            saved = await self.identity_repository.save(
                identity.model_copy(
                    update={"trusted_devices": devices, "updated_at": now}
                )
            )
            revoked = await self.session_repository.revoke_by_device(
                identity.id, device_id, "device_removed", now
            )
            await self.security_event_service.record(
                SecurityEventType.DEVICE_REMOVED,
                saved,
                severity=Severity.MEDIUM,
                device_id=device_id,
                revoked_sessions=revoked,
            )
            return saved

    def list_devices(self, identity: Identity) -> list[TrustedDevice]:
        """Known devices, most recently seen first."""
        return sorted(identity.trusted_devices, key=lambda d: d.last_seen, reverse=True)

    async def list_sessions(self, identity_id: IdentityId) -> list[RefreshSession]:
        """Live sessions, oldest first."""
        return await self.session_repository.list_live(identity_id, self.clock())

    async def find_session(self, session_id: SessionId) -> RefreshSession | None:
        return await self.session_repository.find_by_id(session_id)

    def _access_token(
        self, session: RefreshSession, now: datetime
    ) -> tuple[str, datetime]:
        expires_at = now + timedelta(minutes=self.auth_settings.access_token_minutes)
        token = create_token(
            {
                "sub": str(session.identity_id),
                "sid": str(session.id),
                "did": session.device_id,
            },
            ACCESS_TOKEN_TYPE,
            now,
            expires_at,
            self.auth_settings,
        )
        return token, expires_at

    async def _register_device(
        self, identity: Identity, device: DeviceFingerprint, now: datetime
    ) -> Identity:
        known = identity.find_device(device.device_id)
        if known:
            devices = [
                d.model_copy(
                    update={
                        "last_seen": now,
                        "ip_address": device.client_ip,
                        "fingerprint_hash": device.fingerprint_hash,
                    }
                )
                if d.device_id == device.device_id
                else d
                for d in identity.trusted_devices
            ]
            return await self.identity_repository.save(
                identity.model_copy(update={"trusted_devices": devices})
            )

        new_device = TrustedDevice(
            device_id=device.device_id,
            fingerprint_hash=device.fingerprint_hash,
            device_type=device.device_type,
            user_agent=device.user_agent,
            location_summary=device.location_summary,
            ip_address=device.client_ip,
            first_seen=now,
            last_seen=now,
        )
        saved = await self.identity_repository.save(
            identity.model_copy(
                update={"trusted_devices": [*identity.trusted_devices, new_device]}
            )
        )
        await self.security_event_service.record(
            SecurityEventType.NEW_DEVICE_REGISTERED,
            saved,
            severity=Severity.MEDIUM,
            device_id=device.device_id,
            device_type=device.device_type,
            ip_address=device.client_ip,
            location=device.location_summary,
        )

        previous = max(identity.trusted_devices, key=lambda d: d.last_seen, default=None)
        if previous:
            change = self.fingerprint_service.assess_change(
                previous, device, identity.last_login_at, now
            )
            if change.is_suspicious:
                await self.security_event_service.record(
                    SecurityEventType.SUSPICIOUS_DEVICE,
                    saved,
                    severity=Severity.HIGH,
                    device_id=device.device_id,
                    score=change.score,
                    reasons=change.reasons,
                )
        return saved

    async def _enforce_session_cap(self, identity: Identity, now: datetime) -> None:
        live = await self.session_repository.list_live(identity.id, now)
        excess = len(live) - self.auth_settings.max_concurrent_sessions + 1
        for session in live[: max(excess, 0)]:
            await self.session_repository.revoke(session.id, "session_limit", now)
            await self.security_event_service.record(
                SecurityEventType.SESSION_LIMIT_EXCEEDED,
                identity,
                severity=Severity.MEDIUM,
                session_id=str(session.id),
                device_id=session.device_id,
            )
            logfire.info(
                "Oldest session revoked at session limit",
                identity_id=str(identity.id),
                session_id=str(session.id),
            )
