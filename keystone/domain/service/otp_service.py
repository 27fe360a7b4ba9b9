"""One-time code challenge domain service.

Each identity has at most one live challenge. Issuing replaces it;
verifying a correct code clears it. Attempts are counted atomically by the
repository so concurrent verifications cannot share the last slot.
"""

import hashlib
import hmac
import secrets
import string
from collections.abc import Callable
from datetime import datetime, timedelta

import logfire
import pyotp

from keystone.config import OTPSettings
from keystone.domain.error import OtpExhaustedError, OtpInvalidError, ValidationError
from keystone.domain.model import Identity, OtpChallenge, OtpSettings, TwoFactor
from keystone.domain.model.common import utc_now
from keystone.domain.repository.identity import IdentityRepository
from keystone.domain.value import (
    NotificationChannel,
    OtpMethod,
    OtpPurpose,
    SecurityEventType,
    Severity,
)
from keystone.domain.value.common import ValueObject

from .base import Service
from .notification_service import NotificationService
from .rate_limit_service import RateLimitService
from .security_event_service import SecurityEventService

DAY_SECONDS = 24 * 60 * 60
SEND_SCOPE = "otp_send"
DAILY_FAILURE_SCOPE = "otp_failures"

METHOD_NAMES = {
    OtpMethod.TOTP: "Authentication App",
    OtpMethod.EMAIL: "Email",
    OtpMethod.SMS: "SMS",
}
METHOD_CHANNELS = {
    OtpMethod.EMAIL: NotificationChannel.EMAIL,
    OtpMethod.SMS: NotificationChannel.SMS,
}

# Codes proving control of the mailbox: always emailed, never met by a backup code
EMAIL_ONLY_PURPOSES = (OtpPurpose.RESET, OtpPurpose.VERIFICATION)


class OtpMethodOption(ValueObject):
    """A way the identity can receive a code."""

    method: OtpMethod
    name: str
    destination: str | None = None


class IssuedChallenge(ValueObject):
    """What the caller may tell the user about a new challenge."""

    method: OtpMethod
    purpose: OtpPurpose
    expires_at: datetime
    destination: str | None = None


class TotpEnrollment(ValueObject):
    """Pending authenticator-app enrollment."""

    secret: str
    provisioning_uri: str


def mask_email(email: str) -> str:
    """Mask the local part, keeping its first and last character."""
    username, _, domain = email.partition("@")
    if len(username) > 2:
        username = f"{username[0]}{'*' * (len(username) - 2)}{username[-1]}"
    else:
        username = "*" * len(username)
    return f"{username}@{domain}"


def mask_phone(phone: str) -> str:
    """Mask all but the last four digits."""
    if len(phone) <= 4:
        return "*" * len(phone)
    return f"{'*' * (len(phone) - 4)}{phone[-4:]}"


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class OtpService(Service):
    """Domain service for one-time code challenges and TOTP enrollment."""

    def __init__(
        self,
        identity_repository: IdentityRepository,
        notification_service: NotificationService,
        security_event_service: SecurityEventService,
        rate_limit_service: RateLimitService,
        otp_settings: OTPSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize OTP service.

        Args:
            identity_repository: Identity repository (owns the challenge)
            notification_service: Delivers email and SMS codes
            security_event_service: Security event log
            rate_limit_service: Resend and daily-failure counters
            otp_settings: OTP configuration
            clock: Time source
        """
        self.identity_repository = identity_repository
        self.notification_service = notification_service
        self.security_event_service = security_event_service
        self.rate_limit_service = rate_limit_service
        self.settings = otp_settings
        self.clock = clock

    @property
    def enabled(self) -> bool:
        """Global OTP switch."""
        return self.settings.enabled

    def available_methods(self, identity: Identity) -> list[OtpMethodOption]:
        """Methods the identity can receive a code on, preferred first."""
        options: list[OtpMethodOption] = []
        if identity.two_factor.enabled and identity.two_factor.totp_secret:
            options.append(
                OtpMethodOption(method=OtpMethod.TOTP, name=METHOD_NAMES[OtpMethod.TOTP])
            )
        if identity.email:
            options.append(
                OtpMethodOption(
                    method=OtpMethod.EMAIL,
                    name=METHOD_NAMES[OtpMethod.EMAIL],
                    destination=mask_email(identity.email),
                )
            )
        if identity.phone_number:
            options.append(
                OtpMethodOption(
                    method=OtpMethod.SMS,
                    name=METHOD_NAMES[OtpMethod.SMS],
                    destination=mask_phone(identity.phone_number),
                )
            )

        preferred = identity.otp_settings.preferred_method
        if not identity.otp_settings.allow_fallback:
            return [o for o in options if o.method == preferred]
        options.sort(key=lambda o: o.method != preferred)
        return options

    async def issue(
        self,
        identity: Identity,
        purpose: OtpPurpose,
        method: OtpMethod | None = None,
    ) -> IssuedChallenge:
        """Issue a new challenge, replacing any live one.

        Args:
            identity: Identity to challenge
            purpose: What the code will prove
            method: Requested method; defaults to the best available one.
                Reset and verification codes always go to the email address

        Returns:
            Public description of the challenge

        Raises:
            ValidationError: If no usable method is available
            RateLimitExceededError: If too many codes were sent recently
            OtpExhaustedError: If the daily failure limit is reached
        """
        with logfire.span(
            "otp_service.issue", identity_id=str(identity.id), purpose=purpose.value
        ):
            if purpose in EMAIL_ONLY_PURPOSES:
                option = self._email_option(identity)
            else:
                option = self._select_method(identity, method)
            await self._check_issue_limits(identity, option.method)

            now = self.clock()
            code = None
            if option.method != OtpMethod.TOTP:
                code = self._generate_code()

            challenge = OtpChallenge(
                hashed_code=hash_code(code) if code else None,
                method=option.method,
                purpose=purpose,
                expires_at=now + timedelta(minutes=self.settings.ttl_minutes),
                max_attempts=self.settings.max_attempts,
                last_sent=now,
            )
            await self.identity_repository.set_otp_challenge(identity.id, challenge)

            if code:
                await self.notification_service.notify(
                    METHOD_CHANNELS[option.method],
                    identity,
                    {
                        "template": "otp_code",
                        "code": code,
                        "purpose": purpose.value,
                        "expires_in_minutes": self.settings.ttl_minutes,
                    },
                )

            await self.security_event_service.record(
                SecurityEventType.OTP_GENERATED,
                identity,
                method=option.method.value,
                purpose=purpose.value,
            )
            logfire.info(
                "OTP challenge issued",
                identity_id=str(identity.id),
                method=option.method.value,
                purpose=purpose.value,
            )

            return IssuedChallenge(
                method=option.method,
                purpose=purpose,
                expires_at=challenge.expires_at,
                destination=option.destination,
            )

    async def verify(self, identity: Identity, code: str, purpose: OtpPurpose) -> None:
        """Verify a code against the live challenge.

        A correct code clears the challenge, so each code works once.

        Args:
            identity: Identity being verified
            code: Code entered by the user (or a backup code)
            purpose: Purpose the code must have been issued for

        Raises:
            OtpInvalidError: If there is no live challenge for the purpose,
                it has expired, or the code is wrong
            OtpExhaustedError: If the challenge has no attempts left
        """
        with logfire.span(
            "otp_service.verify", identity_id=str(identity.id), purpose=purpose.value
        ):
            now = self.clock()
            current = await self.identity_repository.find_by_id(identity.id)
            challenge = current.otp_challenge if current else None

            if challenge is None or challenge.purpose != purpose:
                logfire.warn("No live OTP challenge", identity_id=str(identity.id))
                raise OtpInvalidError("No active one-time code, request a new one")

            if challenge.is_expired(now):
                await self.identity_repository.clear_otp_challenge(identity.id)
                logfire.warn("OTP challenge expired", identity_id=str(identity.id))
                raise OtpInvalidError("One-time code has expired")

            consumed = await self.identity_repository.consume_otp_attempt(
                identity.id, now
            )
            if consumed is None:
                raise await self._no_attempt_error(identity, now)

            if await self._code_matches(current, consumed, code):
                await self.identity_repository.clear_otp_challenge(identity.id)
                await self.security_event_service.record(
                    SecurityEventType.OTP_VERIFIED,
                    identity,
                    method=consumed.method.value,
                    purpose=purpose.value,
                )
                logfire.info("OTP verified", identity_id=str(identity.id))
                return

            await self._record_failure(identity, consumed)
            raise OtpInvalidError("Invalid one-time code")

    async def cancel(self, identity: Identity) -> None:
        """Drop the live challenge, if any."""
        with logfire.span("otp_service.cancel", identity_id=str(identity.id)):
            await self.identity_repository.clear_otp_challenge(identity.id)

    async def begin_totp_enrollment(self, identity: Identity) -> TotpEnrollment:
        """Generate a TOTP secret pending confirmation.

        Raises:
            ValidationError: If an authenticator app is already enabled
        """
        with logfire.span(
            "otp_service.begin_totp_enrollment", identity_id=str(identity.id)
        ):
            if identity.two_factor.enabled:
                raise ValidationError("Authenticator app is already enabled")

            secret = pyotp.random_base32()
            await self.identity_repository.save(
                identity.model_copy(
                    update={"two_factor": TwoFactor(totp_secret=secret)}
                )
            )
            uri = self._totp(secret).provisioning_uri(
                name=identity.email, issuer_name=self.settings.totp_issuer
            )
            return TotpEnrollment(secret=secret, provisioning_uri=uri)

    async def confirm_totp_enrollment(
        self, identity: Identity, code: str
    ) -> tuple[Identity, list[str]]:
        """Enable the authenticator app once it produced a valid code.

        Returns:
            Updated identity and the plain backup codes (shown once)

        Raises:
            ValidationError: If there is no pending enrollment
            OtpInvalidError: If the code is wrong
        """
        with logfire.span(
            "otp_service.confirm_totp_enrollment", identity_id=str(identity.id)
        ):
            secret = identity.two_factor.totp_secret
            if identity.two_factor.enabled or not secret:
                raise ValidationError("No pending authenticator enrollment")
            if not self._totp(secret).verify(
                code,
                for_time=self.clock(),
                valid_window=self.settings.totp_valid_window,
            ):
                raise OtpInvalidError("Invalid authenticator code")

            plain_codes, hashed_codes = self._generate_backup_codes()
            updated = identity.model_copy(
                update={
                    "two_factor": TwoFactor(
                        enabled=True,
                        totp_secret=secret,
                        backup_codes=hashed_codes,
                        enrolled_at=self.clock(),
                    ),
                    "otp_settings": identity.otp_settings.model_copy(
                        update={"enabled": True, "preferred_method": OtpMethod.TOTP}
                    ),
                }
            )
            saved = await self.identity_repository.save(updated)
            await self.security_event_service.record(
                SecurityEventType.TWO_FACTOR_ENABLED, saved, severity=Severity.MEDIUM
            )
            return saved, plain_codes

    async def disable_totp(self, identity: Identity) -> Identity:
        """Remove the authenticator app and its backup codes."""
        with logfire.span("otp_service.disable_totp", identity_id=str(identity.id)):
            settings = identity.otp_settings
            if settings.preferred_method == OtpMethod.TOTP:
                settings = settings.model_copy(
                    update={"preferred_method": OtpMethod.EMAIL}
                )
            saved = await self.identity_repository.save(
                identity.model_copy(
                    update={"two_factor": TwoFactor(), "otp_settings": settings}
                )
            )
            await self.security_event_service.record(
                SecurityEventType.TWO_FACTOR_DISABLED, saved, severity=Severity.HIGH
            )
            return saved

    async def regenerate_backup_codes(
        self, identity: Identity
    ) -> tuple[Identity, list[str]]:
        """Replace all backup codes.

        Raises:
            ValidationError: If no authenticator app is enabled
        """
        with logfire.span(
            "otp_service.regenerate_backup_codes", identity_id=str(identity.id)
        ):
            if not identity.two_factor.enabled:
                raise ValidationError("Authenticator app is not enabled")
            plain_codes, hashed_codes = self._generate_backup_codes()
            saved = await self.identity_repository.save(
                identity.model_copy(
                    update={
                        "two_factor": identity.two_factor.model_copy(
                            update={"backup_codes": hashed_codes}
                        )
                    }
                )
            )
            await self.security_event_service.record(
                SecurityEventType.BACKUP_CODES_GENERATED,
                saved,
                severity=Severity.MEDIUM,
            )
            return saved, plain_codes

    async def update_settings(
        self, identity: Identity, settings: OtpSettings
    ) -> Identity:
        """Replace the identity's OTP preferences.

        Raises:
            ValidationError: If TOTP is preferred without an enrolled app
        """
        with logfire.span("otp_service.update_settings", identity_id=str(identity.id)):
            if (
                settings.preferred_method == OtpMethod.TOTP
                and not identity.two_factor.enabled
            ):
                raise ValidationError("Enroll an authenticator app first")
            if settings.preferred_method == OtpMethod.SMS and not identity.phone_number:
                raise ValidationError("Add a phone number first")

            saved = await self.identity_repository.save(
                identity.model_copy(update={"otp_settings": settings})
            )
            await self.security_event_service.record(
                SecurityEventType.OTP_SETTINGS_UPDATED,
                saved,
                enabled=settings.enabled,
                preferred_method=settings.preferred_method.value,
            )
            return saved

    def _select_method(
        self, identity: Identity, requested: OtpMethod | None
    ) -> OtpMethodOption:
        options = self.available_methods(identity)
        if requested:
            options = [o for o in options if o.method == requested]
        if not options:
            raise ValidationError("No one-time code method available")
        return options[0]

    def _email_option(self, identity: Identity) -> OtpMethodOption:
        return OtpMethodOption(
            method=OtpMethod.EMAIL,
            name=METHOD_NAMES[OtpMethod.EMAIL],
            destination=mask_email(identity.email),
        )

    async def _check_issue_limits(self, identity: Identity, method: OtpMethod) -> None:
        await self.rate_limit_service.hit(
            SEND_SCOPE,
            f"{identity.id}:{method.value}",
            limit=self.settings.max_sends_per_window,
            window_seconds=self.settings.send_window_minutes * 60,
        )
        if self.settings.failure_scope == "daily":
            failures = await self.rate_limit_service.current(
                DAILY_FAILURE_SCOPE, str(identity.id), DAY_SECONDS
            )
            if failures >= self.settings.daily_failure_limit:
                logfire.warn(
                    "Daily OTP failure limit reached",
                    identity_id=str(identity.id),
                    failures=failures,
                )
                raise OtpExhaustedError("Too many failed codes today, try again later")

    async def _no_attempt_error(
        self, identity: Identity, now: datetime
    ) -> OtpInvalidError | OtpExhaustedError:
        """Explain why no attempt could be consumed."""
        current = await self.identity_repository.find_by_id(identity.id)
        challenge = current.otp_challenge if current else None
        if challenge and not challenge.is_expired(now) and challenge.attempts_left == 0:
            logfire.warn("OTP attempts exhausted", identity_id=str(identity.id))
            return OtpExhaustedError()
        return OtpInvalidError("No active one-time code, request a new one")

    async def _code_matches(
        self, identity: Identity, challenge: OtpChallenge, code: str
    ) -> bool:
        code = code.strip()
        if challenge.method == OtpMethod.TOTP:
            secret = identity.two_factor.totp_secret
            if secret and self._totp(secret).verify(
                code,
                for_time=self.clock(),
                valid_window=self.settings.totp_valid_window,
            ):
                return True
        elif challenge.hashed_code and hmac.compare_digest(
            hash_code(code), challenge.hashed_code
        ):
            return True
        if challenge.purpose in EMAIL_ONLY_PURPOSES:
            return False
        return await self._consume_backup_code(identity, code)

    async def _consume_backup_code(self, identity: Identity, code: str) -> bool:
        """Accept and burn a backup code if one matches."""
        if not identity.two_factor.enabled or len(code) <= self.settings.code_length:
            return False
        hashed = hash_code(code.upper())
        if hashed not in identity.two_factor.backup_codes:
            return False

        remaining = [c for c in identity.two_factor.backup_codes if c != hashed]
        await self.identity_repository.save(
            identity.model_copy(
                update={
                    "two_factor": identity.two_factor.model_copy(
                        update={"backup_codes": remaining}
                    )
                }
            )
        )
        logfire.info(
            "Backup code used",
            identity_id=str(identity.id),
            remaining=len(remaining),
        )
        return True

    async def _record_failure(self, identity: Identity, challenge: OtpChallenge) -> None:
        if self.settings.failure_scope == "daily":
            await self.rate_limit_service.record(
                DAILY_FAILURE_SCOPE, str(identity.id), DAY_SECONDS
            )

        await self.security_event_service.record(
            SecurityEventType.OTP_VERIFICATION_FAILED,
            identity,
            severity=Severity.MEDIUM,
            method=challenge.method.value,
            purpose=challenge.purpose.value,
            attempts=challenge.attempts,
        )
        if challenge.attempts_left == 0:
            await self.security_event_service.record(
                SecurityEventType.OTP_EXHAUSTED,
                identity,
                severity=Severity.HIGH,
                purpose=challenge.purpose.value,
            )
        logfire.warn(
            "OTP verification failed",
            identity_id=str(identity.id),
            attempts_left=challenge.attempts_left,
        )

    def _generate_code(self) -> str:
        return "".join(
            secrets.choice(string.digits) for _ in range(self.settings.code_length)
        )

    def _generate_backup_codes(self) -> tuple[list[str], list[str]]:
        plain = [
            secrets.token_hex(4).upper() for _ in range(self.settings.backup_code_count)
        ]
        return plain, [hash_code(c) for c in plain]

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, interval=self.settings.totp_interval)
