"""Security event recording domain service."""

from typing import Any
from uuid import uuid4

import logfire

from keystone.domain.model import Identity, SecurityEvent
from keystone.domain.repository.security_event import SecurityEventRepository
from keystone.domain.value import (
    IdentityId,
    NotificationChannel,
    SecurityEventId,
    SecurityEventType,
    Severity,
)

from .base import Service
from .notification_service import NotificationService

ALERT_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)

DESCRIPTIONS: dict[SecurityEventType, str] = {
    SecurityEventType.IDENTITY_REGISTERED: "Account created",
    SecurityEventType.LOGIN_SUCCESS: "Successful login",
    SecurityEventType.LOGIN_FAILED: "Failed login attempt",
    SecurityEventType.ACCOUNT_LOCKED: "Account locked after repeated failed logins",
    SecurityEventType.ACCOUNT_UNLOCKED: "Account lockout expired",
    SecurityEventType.OTP_GENERATED: "One-time code issued",
    SecurityEventType.OTP_VERIFIED: "One-time code verified",
    SecurityEventType.OTP_VERIFICATION_FAILED: "One-time code verification failed",
    SecurityEventType.OTP_EXHAUSTED: "One-time code attempts exhausted",
    SecurityEventType.SOCIAL_ACCOUNT_LINKED: "Social account linked",
    SecurityEventType.SOCIAL_ACCOUNT_UNLINKED: "Social account unlinked",
    SecurityEventType.NEW_DEVICE_REGISTERED: "New device registered",
    SecurityEventType.SUSPICIOUS_DEVICE: "Login from a suspicious device",
    SecurityEventType.DEVICE_TRUSTED: "Device marked as trusted",
    SecurityEventType.DEVICE_REMOVED: "Device removed",
    SecurityEventType.SESSION_REVOKED: "Session revoked",
    SecurityEventType.ALL_SESSIONS_REVOKED: "All sessions revoked",
    SecurityEventType.SESSION_LIMIT_EXCEEDED: "Oldest session revoked, session limit reached",
    SecurityEventType.PASSWORD_CHANGED: "Password changed",
    SecurityEventType.PASSWORD_RESET_REQUESTED: "Password reset requested",
    SecurityEventType.PASSWORD_RESET: "Password reset with an emailed code",
    SecurityEventType.EMAIL_VERIFIED: "Email address verified",
    SecurityEventType.TWO_FACTOR_ENABLED: "Authenticator app enabled",
    SecurityEventType.TWO_FACTOR_DISABLED: "Authenticator app disabled",
    SecurityEventType.BACKUP_CODES_GENERATED: "Backup codes regenerated",
    SecurityEventType.OTP_SETTINGS_UPDATED: "One-time code settings updated",
}


class SecurityEventService(Service):
    """Appends security events and alerts on high-severity ones.

    Recording never raises: a failing event store is logged and the caller
    carries on.
    """

    def __init__(
        self,
        security_event_repository: SecurityEventRepository,
        notification_service: NotificationService,
    ) -> None:
        """Initialize security event service.

        Args:
            security_event_repository: Append-only event store
            notification_service: Used for high-severity alerts
        """
        self.security_event_repository = security_event_repository
        self.notification_service = notification_service

    async def record(
        self,
        event_type: SecurityEventType,
        identity: Identity | None = None,
        severity: Severity = Severity.LOW,
        description: str | None = None,
        identity_id: IdentityId | None = None,
        **context: Any,
    ) -> SecurityEvent | None:
        """Record a security event.

        Args:
            event_type: Kind of event
            identity: Identity the event concerns, if known
            severity: Event severity
            description: Overrides the default description for the type
            identity_id: Used when only the id is known
            **context: Extra structured context (ip, device id, provider...)

        Returns:
            The recorded event, or None if the store failed
        """
        owner_id = identity.id if identity else identity_id
        event = SecurityEvent(
            id=SecurityEventId(uuid4()),
            identity_id=owner_id,
            type=event_type,
            severity=severity,
            description=description or DESCRIPTIONS.get(event_type, event_type.value),
            context={k: v for k, v in context.items() if v is not None},
        )

        try:
            recorded = await self.security_event_repository.append(event)
        except Exception as e:
            logfire.error(
                "Failed to record security event",
                event_type=event_type.value,
                identity_id=str(owner_id) if owner_id else None,
                error=str(e),
            )
            return None

        log = logfire.warn if severity in ALERT_SEVERITIES else logfire.info
        log(
            "Security event recorded",
            event_type=event_type.value,
            severity=severity.value,
            identity_id=str(owner_id) if owner_id else None,
        )

        if identity and severity in ALERT_SEVERITIES:
            await self.notification_service.notify(
                NotificationChannel.EMAIL,
                identity,
                {
                    "template": "security_alert",
                    "event_type": event_type.value,
                    "severity": severity.value,
                    "description": recorded.description,
                    "timestamp": recorded.timestamp.isoformat(),
                },
            )

        return recorded

    async def recent_events(
        self, identity_id: IdentityId, limit: int = 100
    ) -> list[SecurityEvent]:
        """Most recent events of an identity, newest first."""
        with logfire.span(
            "security_event_service.recent_events", identity_id=str(identity_id)
        ):
            return await self.security_event_repository.list_by_identity(
                identity_id, limit
            )
