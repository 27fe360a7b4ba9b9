"""Mappers for converting between database rows and domain models.

Since we're using Pydantic domain models (immutable), we use manual mapping
instead of SQLAlchemy's classical imperative mapping. Embedded value objects
(devices, history, settings) are stored as JSONB documents and validated back
into models on the way out.
"""

from typing import Any, Dict, Optional, Sequence
from uuid import UUID

from keystone.domain.model import (
    Identity,
    LoginRecord,
    OtpChallenge,
    OtpSettings,
    RefreshSession,
    SecurityEvent,
    SessionVerification,
    SocialLink,
    TrustedDevice,
    TwoFactor,
)
from keystone.domain.value import (
    IdentityId,
    IdentityStatus,
    OtpMethod,
    OtpPurpose,
    SecurityEventId,
    SecurityEventType,
    SessionId,
    Severity,
    SocialProvider,
)


def _uuid(value: Any) -> UUID:
    return UUID(value) if isinstance(value, str) else value


def row_to_social_link(row: Dict[str, Any]) -> SocialLink:
    """Convert database row to SocialLink."""
    return SocialLink(
        provider=SocialProvider(row["provider"]),
        provider_id=row["provider_id"],
        email=row.get("email"),
        display_name=row.get("display_name"),
        verified=row["verified"],
        connected_at=row["connected_at"],
    )


def social_link_to_dict(identity_id: IdentityId, link: SocialLink) -> Dict[str, Any]:
    """Convert SocialLink to a social_links row."""
    return {
        "identity_id": identity_id,
        "provider": link.provider.value,
        "provider_id": link.provider_id,
        "email": link.email,
        "display_name": link.display_name,
        "verified": link.verified,
        "connected_at": link.connected_at,
    }


def row_to_otp_challenge(row: Dict[str, Any]) -> OtpChallenge:
    """Convert database row to OtpChallenge."""
    return OtpChallenge(
        hashed_code=row.get("hashed_code"),
        method=OtpMethod(row["method"]),
        purpose=OtpPurpose(row["purpose"]),
        expires_at=row["expires_at"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        verified=row["verified"],
        last_sent=row["last_sent"],
    )


def otp_challenge_to_dict(
    identity_id: IdentityId, challenge: OtpChallenge
) -> Dict[str, Any]:
    """Convert OtpChallenge to an otp_challenges row."""
    return {
        "identity_id": identity_id,
        "hashed_code": challenge.hashed_code,
        "method": challenge.method.value,
        "purpose": challenge.purpose.value,
        "expires_at": challenge.expires_at,
        "attempts": challenge.attempts,
        "max_attempts": challenge.max_attempts,
        "verified": challenge.verified,
        "last_sent": challenge.last_sent,
    }


def row_to_identity(
    row: Dict[str, Any],
    links: Sequence[Dict[str, Any]] = (),
    challenge: Optional[Dict[str, Any]] = None,
) -> Identity:
    """Convert database rows to the Identity aggregate.

    Args:
        row: identities row
        links: The identity's social_links rows
        challenge: The identity's otp_challenges row, if any

    Returns:
        Identity domain model
    """
    return Identity(
        id=IdentityId(_uuid(row["id"])),
        email=row["email"],
        username=row.get("username"),
        display_name=row.get("display_name"),
        phone_number=row.get("phone_number"),
        password_hash=row.get("password_hash"),
        email_verified=row["email_verified"],
        status=IdentityStatus(row["status"]),
        role=row["role"],
        permissions=list(row.get("permissions") or []),
        social_links=[row_to_social_link(link) for link in links],
        otp_settings=OtpSettings.model_validate(row.get("otp_settings") or {}),
        otp_challenge=row_to_otp_challenge(challenge) if challenge else None,
        two_factor=TwoFactor.model_validate(row.get("two_factor") or {}),
        trusted_devices=[
            TrustedDevice.model_validate(d) for d in row.get("trusted_devices") or []
        ],
        login_history=[
            LoginRecord.model_validate(r) for r in row.get("login_history") or []
        ],
        failed_login_attempts=row["failed_login_attempts"],
        lockout_count=row["lockout_count"],
        lockout_until=row.get("lockout_until"),
        last_failed_login_at=row.get("last_failed_login_at"),
        last_login_at=row.get("last_login_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def identity_to_dict(identity: Identity) -> Dict[str, Any]:
    """Convert Identity to an identities row.

    Social links and the OTP challenge live in their own tables and are
    left out.
    """
    data = identity.model_dump(exclude={"social_links", "otp_challenge"})
    data["status"] = identity.status.value
    # JSONB columns need plain JSON (datetimes as ISO strings)
    for field in ("otp_settings", "two_factor", "trusted_devices", "login_history"):
        data[field] = identity.model_dump(mode="json", include={field})[field]
    return data


def row_to_refresh_session(row: Dict[str, Any]) -> RefreshSession:
    """Convert database row to RefreshSession."""
    return RefreshSession(
        id=SessionId(_uuid(row["id"])),
        identity_id=IdentityId(_uuid(row["identity_id"])),
        device_id=row["device_id"],
        token_hash=row["token_hash"],
        issued_at=row["issued_at"],
        expires_at=row["expires_at"],
        last_used_at=row.get("last_used_at"),
        revoked_at=row.get("revoked_at"),
        revoked_reason=row.get("revoked_reason"),
    )


def refresh_session_to_dict(session: RefreshSession) -> Dict[str, Any]:
    """Convert RefreshSession to a database row."""
    return session.model_dump()


def row_to_session_verification(row: Dict[str, Any]) -> SessionVerification:
    """Convert database row to SessionVerification."""
    purpose = row.get("purpose")
    return SessionVerification(
        session_id=SessionId(_uuid(row["session_id"])),
        verified=row["verified"],
        verified_at=row.get("verified_at"),
        purpose=OtpPurpose(purpose) if purpose else None,
    )


def session_verification_to_dict(
    verification: SessionVerification,
) -> Dict[str, Any]:
    """Convert SessionVerification to a database row."""
    return {
        "session_id": verification.session_id,
        "verified": verification.verified,
        "verified_at": verification.verified_at,
        "purpose": verification.purpose.value if verification.purpose else None,
    }


def row_to_security_event(row: Dict[str, Any]) -> SecurityEvent:
    """Convert database row to SecurityEvent."""
    identity_id = row.get("identity_id")
    return SecurityEvent(
        id=SecurityEventId(_uuid(row["id"])),
        identity_id=IdentityId(_uuid(identity_id)) if identity_id else None,
        type=SecurityEventType(row["type"]),
        severity=Severity(row["severity"]),
        description=row["description"],
        context=dict(row.get("context") or {}),
        timestamp=row["timestamp"],
    )


def security_event_to_dict(event: SecurityEvent) -> Dict[str, Any]:
    """Convert SecurityEvent to a database row."""
    data = event.model_dump()
    data["type"] = event.type.value
    data["severity"] = event.severity.value
    data["context"] = event.model_dump(mode="json", include={"context"})["context"]
    return data
