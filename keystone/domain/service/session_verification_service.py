"""Step-up verification window domain service."""

from collections.abc import Callable
from datetime import datetime, timedelta

import logfire

from keystone.config import OTPSettings
from keystone.domain.model import SessionVerification
from keystone.domain.model.common import utc_now
from keystone.domain.repository.session import SessionVerificationStore
from keystone.domain.value import OtpPurpose, SessionId

from .base import Service


class SessionVerificationService(Service):
    """Tracks when each session last passed a step-up verification.

    State lives in an explicit store keyed by session id; nothing is kept on
    request objects.
    """

    def __init__(
        self,
        verification_store: SessionVerificationStore,
        otp_settings: OTPSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize session verification service.

        Args:
            verification_store: Per-session verification state
            otp_settings: Supplies the timeout and strict-purpose default
            clock: Time source
        """
        self.verification_store = verification_store
        self.settings = otp_settings
        self.clock = clock

    async def mark(self, session_id: SessionId, purpose: OtpPurpose) -> SessionVerification:
        """Record a successful verification for ``purpose`` now."""
        with logfire.span(
            "session_verification_service.mark",
            session_id=str(session_id),
            purpose=purpose.value,
        ):
            verification = SessionVerification(
                session_id=session_id,
                verified=True,
                verified_at=self.clock(),
                purpose=purpose,
            )
            await self.verification_store.put(verification)
            return verification

    async def check(
        self,
        session_id: SessionId,
        purpose: OtpPurpose,
        strict: bool | None = None,
    ) -> bool:
        """Whether the session holds a fresh verification.

        Args:
            session_id: Session to check
            purpose: Purpose of the gated operation
            strict: Require the verified purpose to match; defaults to settings

        Returns:
            True if verified within the timeout (and for ``purpose`` when strict)
        """
        if strict is None:
            strict = self.settings.strict_purpose

        verification = await self.verification_store.get(session_id)
        if verification is None or not verification.verified:
            return False
        if verification.verified_at is None:
            return False

        timeout = timedelta(minutes=self.settings.verification_timeout_minutes)
        if self.clock() - verification.verified_at >= timeout:
            logfire.debug("Step-up verification expired", session_id=str(session_id))
            return False

        if strict and verification.purpose != purpose:
            return False
        return True

    async def clear(self, session_id: SessionId) -> None:
        """Forget the session's verification."""
        with logfire.span(
            "session_verification_service.clear", session_id=str(session_id)
        ):
            await self.verification_store.delete(session_id)
