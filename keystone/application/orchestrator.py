"""Identity orchestrator.

Composes the domain services into the login, step-up, linking and session
flows. A login moves through AWAITING_CREDENTIAL -> CREDENTIAL_OK ->
(OTP_REQUIRED -> OTP_OK)? -> SESSION_ISSUED; LOCKED is only reachable while
the credential is being checked.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Literal, Union
from uuid import UUID, uuid4

import logfire
from pydantic import BaseModel, Field

from keystone.config import AuthSettings, OTPSettings, RateLimitSettings
from keystone.domain.error import (
    AccountInactiveError,
    AccountLockedError,
    InvalidCredentialError,
    InvalidTokenError,
    NotFoundError,
    OtpExhaustedError,
    OtpInvalidError,
    StepUpRequiredError,
    ValidationError,
)
from keystone.domain.model import (
    Identity,
    LoginRecord,
    OtpSettings,
    RefreshSession,
    SecurityEvent,
    SocialLink,
    TrustedDevice,
)
from keystone.domain.model.common import utc_now
from keystone.domain.repository.identity import IdentityRepository
from keystone.domain.service import (
    AccessToken,
    AuthorizationService,
    FingerprintService,
    IssuedChallenge,
    IssuedTokens,
    OtpMethodOption,
    OtpService,
    PasswordService,
    RateLimitService,
    SecurityEventService,
    SessionVerificationService,
    SocialAuthService,
    SocialLinkService,
    TokenService,
    TotpEnrollment,
)
from keystone.domain.value import (
    DeviceFingerprint,
    IdentityId,
    IdentityStatus,
    LoginMethod,
    LoginState,
    OtpMethod,
    OtpPurpose,
    RequestSignals,
    RiskLevel,
    SecurityEventType,
    SensitiveOperation,
    SessionId,
    Severity,
    SocialProvider,
    normalize_email,
)

LOGIN_SCOPE = "login"
LOGIN_CODE_SCOPE = "login_code"
PASSWORD_RESET_SCOPE = "password_reset"
SUMMARY_EVENT_LIMIT = 5


class PasswordCredential(BaseModel):
    """Email or username plus password."""

    kind: Literal["password"] = "password"
    identifier: str
    password: str


class SocialCredential(BaseModel):
    """Token issued by a social provider."""

    kind: Literal["social"] = "social"
    provider: SocialProvider
    token: str


class OneTimeCodeCredential(BaseModel):
    """Email plus a code previously requested with ``request_login_code``."""

    kind: Literal["one_time_code"] = "one_time_code"
    email: str
    code: str


Credential = Union[PasswordCredential, SocialCredential, OneTimeCodeCredential]


class LoginResult(BaseModel):
    """Outcome of a login step.

    ``tokens`` is set when the state is SESSION_ISSUED; ``otp_token`` and
    ``challenge`` when it is OTP_REQUIRED.
    """

    state: LoginState
    identity: Identity
    tokens: IssuedTokens | None = None
    otp_token: str | None = None
    otp_token_expires_at: datetime | None = None
    challenge: IssuedChallenge | None = None
    otp_methods: list[OtpMethodOption] = Field(default_factory=list)
    is_new_user: bool = False
    risk_level: RiskLevel = RiskLevel.LOW


class AuthenticatedIdentity(BaseModel):
    """Identity behind a verified access token."""

    identity: Identity
    session_id: SessionId
    device_id: str


class SecuritySummary(BaseModel):
    """Overview of how well an identity is protected."""

    email_verified: bool
    has_password: bool
    two_factor_enabled: bool
    otp_enabled: bool
    social_providers: list[SocialProvider]
    active_sessions: int
    trusted_devices: int
    known_devices: int
    account_locked: bool
    failed_login_attempts: int
    last_login_at: datetime | None = None
    recent_events: list[SecurityEvent] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class IdentityOrchestrator:
    """Top-level identity and session-trust flows."""

    def __init__(
        self,
        identity_repository: IdentityRepository,
        fingerprint_service: FingerprintService,
        password_service: PasswordService,
        social_auth_service: SocialAuthService,
        otp_service: OtpService,
        session_verification_service: SessionVerificationService,
        social_link_service: SocialLinkService,
        token_service: TokenService,
        security_event_service: SecurityEventService,
        rate_limit_service: RateLimitService,
        authorization_service: AuthorizationService,
        auth_settings: AuthSettings,
        otp_settings: OTPSettings,
        rate_limit_settings: RateLimitSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize identity orchestrator.

        Args:
            identity_repository: Identity repository
            fingerprint_service: Device characterization
            password_service: Password hashing
            social_auth_service: Provider token validation
            otp_service: One-time code challenges
            session_verification_service: Step-up verification window
            social_link_service: Social account linking
            token_service: Session credentials
            security_event_service: Security event log
            rate_limit_service: Login throttling
            authorization_service: Authorization policy
            auth_settings: Lockout and step-up policy
            otp_settings: Global OTP switch
            rate_limit_settings: Login throttling limits
            clock: Time source
        """
        self.identity_repository = identity_repository
        self.fingerprint_service = fingerprint_service
        self.password_service = password_service
        self.social_auth_service = social_auth_service
        self.otp_service = otp_service
        self.session_verification_service = session_verification_service
        self.social_link_service = social_link_service
        self.token_service = token_service
        self.security_event_service = security_event_service
        self.rate_limit_service = rate_limit_service
        self.authorization_service = authorization_service
        self.auth_settings = auth_settings
        self.otp_settings = otp_settings
        self.rate_limit_settings = rate_limit_settings
        self.clock = clock

    # Registration and login

    async def register(
        self,
        email: str,
        password: str,
        username: str | None = None,
        display_name: str | None = None,
        phone_number: str | None = None,
    ) -> Identity:
        """Create a password identity.

        Raises:
            ValidationError: If the email or password is invalid
            ConflictEmailInUseError: If the email is taken
            ConflictUsernameTakenError: If the username is taken
        """
        with logfire.span("identity_orchestrator.register"):
            normalized = normalize_email(email)
            password_hash = await self.password_service.hash(password)
            now = self.clock()
            identity = await self.identity_repository.create(
                Identity(
                    id=IdentityId(uuid4()),
                    email=normalized,
                    username=username,
                    display_name=display_name or username,
                    phone_number=phone_number,
                    password_hash=password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
            await self.security_event_service.record(
                SecurityEventType.IDENTITY_REGISTERED, identity, method="password"
            )
            logfire.info("Identity registered", identity_id=str(identity.id))
            return identity

    async def login(
        self, credential: Credential, signals: RequestSignals
    ) -> LoginResult:
        """Authenticate a credential and start a session or an OTP challenge.

        Args:
            credential: Password, social token or one-time code
            signals: Request headers and address

        Returns:
            SESSION_ISSUED with tokens, or OTP_REQUIRED with a pending-login token

        Raises:
            InvalidCredentialError: If the credential does not check out
            AccountLockedError: If the identity is locked
            AccountInactiveError: If the identity is inactive
            RateLimitExceededError: If too many attempts came from this client
            OtpInvalidError: If a one-time code credential is wrong or expired
            OtpExhaustedError: If a one-time code challenge ran out of attempts
        """
        device = self.fingerprint_service.characterize(signals)
        with logfire.span(
            "identity_orchestrator.login",
            credential=credential.kind,
            device_id=device.device_id,
            risk_level=device.suspicion.risk_level.value,
        ):
            is_new_user = False
            if isinstance(credential, PasswordCredential):
                identity = await self._check_password(credential, device)
                method = LoginMethod.PASSWORD
            elif isinstance(credential, SocialCredential):
                identity, is_new_user = await self._check_social(credential, device)
                method = LoginMethod.SOCIAL
            else:
                identity = await self._check_one_time_code(credential, device)
                # The code is the second factor, go straight to the session
                return await self._issue_session(
                    identity, device, LoginMethod.ONE_TIME_CODE
                )

            # CREDENTIAL_OK
            if self._login_needs_otp(identity, device):
                return await self._start_otp(identity, device, method, is_new_user)

            return await self._issue_session(identity, device, method, is_new_user)

    async def complete_login(
        self, otp_token: str, code: str, signals: RequestSignals
    ) -> LoginResult:
        """Finish an OTP_REQUIRED login with the one-time code.

        Raises:
            InvalidTokenError: If the pending-login token is invalid
            TokenExpiredError: If the pending-login token expired
            OtpInvalidError: If the code is wrong or expired
            OtpExhaustedError: If the challenge ran out of attempts
        """
        claims = self.token_service.verify_otp_token(otp_token)
        device = self.fingerprint_service.characterize(signals)
        with logfire.span(
            "identity_orchestrator.complete_login", identity_id=claims.sub
        ):
            identity = await self.identity_repository.find_by_id(
                IdentityId(UUID(claims.sub))
            )
            if identity is None:
                raise InvalidTokenError()
            identity = await self._ensure_can_login(identity, device)

            try:
                await self.otp_service.verify(identity, code, OtpPurpose.LOGIN)
            except (OtpInvalidError, OtpExhaustedError) as e:
                await self._record_failed_login(
                    identity, device, LoginMethod.PASSWORD_OTP, e.code.lower()
                )
                raise

            # OTP_OK
            method = (
                LoginMethod.PASSWORD_OTP
                if claims.method == LoginMethod.PASSWORD.value
                else LoginMethod(claims.method)
            )
            return await self._issue_session(identity, device, method)

    async def request_login_code(
        self, email: str, signals: RequestSignals
    ) -> IssuedChallenge | None:
        """Email a passwordless login code.

        Unknown addresses return None without any other difference, so the
        endpoint cannot be used to discover accounts.

        Raises:
            RateLimitExceededError: If too many codes were requested
        """
        device = self.fingerprint_service.characterize(signals)
        with logfire.span("identity_orchestrator.request_login_code"):
            await self.rate_limit_service.hit(
                LOGIN_CODE_SCOPE,
                device.client_ip,
                limit=self.rate_limit_settings.login_max_requests,
                window_seconds=self.rate_limit_settings.login_window_seconds,
            )
            identity = await self.identity_repository.find_by_email(email)
            if identity is None or identity.status == IdentityStatus.INACTIVE:
                logfire.info("Login code requested for unknown identity")
                return None
            return await self.otp_service.issue(
                identity, OtpPurpose.LOGIN, OtpMethod.EMAIL
            )

    # Password reset

    async def request_password_reset(
        self, email: str, signals: RequestSignals
    ) -> IssuedChallenge | None:
        """Email a code that allows setting a new password.

        Unknown and inactive addresses return None, so the response does not
        reveal whether an account exists.

        Raises:
            RateLimitExceededError: If too many resets were requested
        """
        device = self.fingerprint_service.characterize(signals)
        with logfire.span("identity_orchestrator.request_password_reset"):
            await self.rate_limit_service.hit(
                PASSWORD_RESET_SCOPE,
                device.client_ip,
                limit=self.rate_limit_settings.login_max_requests,
                window_seconds=self.rate_limit_settings.login_window_seconds,
            )
            identity = await self.identity_repository.find_by_email(email)
            if identity is None or identity.status == IdentityStatus.INACTIVE:
                logfire.info("Password reset requested for unknown identity")
                return None

            challenge = await self.otp_service.issue(identity, OtpPurpose.RESET)
            await self.security_event_service.record(
                SecurityEventType.PASSWORD_RESET_REQUESTED,
                identity,
                severity=Severity.MEDIUM,
                ip_address=device.client_ip,
                device_id=device.device_id,
            )
            return challenge

    async def reset_password(
        self, email: str, code: str, new_password: str
    ) -> Identity:
        """Set a new password with an emailed reset code.

        Every session of the identity is revoked and a lockout is lifted.

        Raises:
            ValidationError: If the new password is too weak
            OtpInvalidError: If the code is wrong or expired, or the address unknown
            OtpExhaustedError: If the challenge ran out of attempts
        """
        with logfire.span("identity_orchestrator.reset_password"):
            # Checked first so a weak password does not burn the code
            self.password_service.validate_strength(new_password)

            identity = await self.identity_repository.find_by_email(email)
            if identity is None or identity.status == IdentityStatus.INACTIVE:
                raise OtpInvalidError("Invalid one-time code")
            await self.otp_service.verify(identity, code, OtpPurpose.RESET)

            password_hash = await self.password_service.hash(new_password)
            current = await self._reload(identity)
            update = {
                "password_hash": password_hash,
                "failed_login_attempts": 0,
                "lockout_until": None,
                "updated_at": self.clock(),
            }
            if current.status == IdentityStatus.LOCKED:
                update["status"] = IdentityStatus.ACTIVE
            saved = await self.identity_repository.save(current.model_copy(update=update))

            revoked = await self.token_service.revoke_all(saved, "password_reset")
            await self.security_event_service.record(
                SecurityEventType.PASSWORD_RESET,
                saved,
                severity=Severity.HIGH,
                sessions_revoked=revoked,
            )
            logfire.info("Password reset", identity_id=str(saved.id))
            return saved

    # Step-up verification

    async def request_step_up(
        self, identity: Identity, method: OtpMethod | None = None
    ) -> IssuedChallenge:
        """Issue a code for a sensitive operation."""
        with logfire.span(
            "identity_orchestrator.request_step_up", identity_id=str(identity.id)
        ):
            return await self.otp_service.issue(
                identity, OtpPurpose.SENSITIVE_OP, method
            )

    async def verify_step_up(
        self,
        identity: Identity,
        session_id: SessionId,
        code: str,
        purpose: OtpPurpose = OtpPurpose.SENSITIVE_OP,
    ) -> bool:
        """Verify a step-up code and open the session's verification window.

        Raises:
            OtpInvalidError: If the code is wrong or expired
            OtpExhaustedError: If the challenge ran out of attempts
        """
        with logfire.span(
            "identity_orchestrator.verify_step_up",
            identity_id=str(identity.id),
            session_id=str(session_id),
        ):
            await self.otp_service.verify(identity, code, purpose)
            await self.session_verification_service.mark(session_id, purpose)
            return True

    async def require_step_up(
        self,
        identity: Identity,
        session_id: SessionId,
        operation: SensitiveOperation,
        purpose: OtpPurpose = OtpPurpose.SENSITIVE_OP,
    ) -> None:
        """Gate a sensitive operation behind a fresh step-up verification.

        Passes when OTP is disabled globally, disabled for the identity, or
        not required for sensitive operations.

        Raises:
            StepUpRequiredError: If a verification is needed
        """
        if not self.otp_settings.enabled:
            return
        if not identity.requires_otp(OtpPurpose.SENSITIVE_OP):
            return
        if await self.session_verification_service.check(session_id, purpose):
            return

        logfire.info(
            "Step-up verification required",
            identity_id=str(identity.id),
            operation=operation.value,
        )
        methods = [o.method.value for o in self.otp_service.available_methods(identity)]
        raise StepUpRequiredError(operation.value, methods)

    # Social accounts

    async def link_social(
        self, identity: Identity, provider: SocialProvider, token: str
    ) -> SocialLink:
        """Validate a provider token and link its account.

        Raises:
            InvalidCredentialError: If the token is invalid
            ConflictAlreadyLinkedError: If the account or provider is already linked
            ConflictEmailInUseError: If the profile email belongs to someone else
        """
        profile = await self.social_auth_service.validate(provider, token)
        return await self.social_link_service.link(identity, profile)

    async def unlink_social(
        self,
        identity: Identity,
        provider: SocialProvider,
        provider_id: str | None = None,
    ) -> Identity:
        """Remove a social link.

        Raises:
            NotFoundError: If the link does not exist
            LastAuthMethodBlockedError: If it is the last way to log in
        """
        return await self.social_link_service.unlink(identity, provider, provider_id)

    def list_social_links(self, identity: Identity) -> list[SocialLink]:
        return self.social_link_service.list_links(identity)

    # Sessions

    async def refresh_session(self, refresh_token: str) -> AccessToken:
        """Exchange a refresh token for a new access token."""
        return await self.token_service.refresh(refresh_token)

    async def authenticate(self, access_token: str) -> AuthenticatedIdentity:
        """Resolve the identity behind an access token.

        Raises:
            TokenExpiredError: If the token expired
            InvalidTokenError: If the token is invalid or its identity is gone
            AccountInactiveError: If the identity was deactivated
        """
        claims = self.token_service.verify_access_token(access_token)
        identity = await self.identity_repository.find_by_id(
            IdentityId(UUID(claims.sub))
        )
        if identity is None:
            raise InvalidTokenError()
        if identity.status == IdentityStatus.INACTIVE:
            raise AccountInactiveError()
        return AuthenticatedIdentity(
            identity=identity,
            session_id=SessionId(UUID(claims.sid)),
            device_id=claims.did,
        )

    async def logout(self, session_id: SessionId) -> None:
        """Revoke the session and forget its step-up verification."""
        with logfire.span("identity_orchestrator.logout", session_id=str(session_id)):
            await self.token_service.revoke(session_id, "logout")
            await self.session_verification_service.clear(session_id)

    async def revoke_session(
        self, identity: Identity, session_id: SessionId
    ) -> None:
        """Revoke one of the identity's sessions.

        Raises:
            NotFoundError: If the session does not belong to the identity
        """
        session = await self.token_service.find_session(session_id)
        if session is None or session.identity_id != identity.id:
            raise NotFoundError("Session", str(session_id))
        await self.token_service.revoke(session_id, "revoked_by_user", identity)
        await self.session_verification_service.clear(session_id)

    async def revoke_all_sessions(
        self, identity: Identity, session_id: SessionId
    ) -> int:
        """Revoke every session of the identity, including the current one.

        Raises:
            StepUpRequiredError: If a step-up verification is needed
        """
        await self.require_step_up(
            identity, session_id, SensitiveOperation.REVOKE_ALL_SESSIONS
        )
        count = await self.token_service.revoke_all(identity)
        await self.session_verification_service.clear(session_id)
        return count

    async def list_sessions(self, identity: Identity) -> list[RefreshSession]:
        return await self.token_service.list_sessions(identity.id)

    # Account security

    async def change_password(
        self,
        identity: Identity,
        session_id: SessionId,
        current_password: str | None,
        new_password: str,
    ) -> Identity:
        """Set a new password.

        Identities without a password (social only) may set one without
        supplying a current password.

        Raises:
            StepUpRequiredError: If a step-up verification is needed
            InvalidCredentialError: If the current password is wrong
            ValidationError: If the new password is too weak
        """
        await self.require_step_up(
            identity, session_id, SensitiveOperation.CHANGE_PASSWORD
        )
        with logfire.span(
            "identity_orchestrator.change_password", identity_id=str(identity.id)
        ):
            if identity.has_password and not await self.password_service.verify(
                current_password or "", identity.password_hash
            ):
                raise InvalidCredentialError("Current password is incorrect")

            password_hash = await self.password_service.hash(new_password)
            saved = await self.identity_repository.save(
                identity.model_copy(
                    update={"password_hash": password_hash, "updated_at": self.clock()}
                )
            )
            await self.security_event_service.record(
                SecurityEventType.PASSWORD_CHANGED, saved, severity=Severity.HIGH
            )
            return saved

    async def update_otp_settings(
        self, identity: Identity, session_id: SessionId, settings: OtpSettings
    ) -> Identity:
        """Replace the identity's OTP preferences (gated)."""
        await self.require_step_up(
            identity, session_id, SensitiveOperation.UPDATE_OTP_SETTINGS
        )
        return await self.otp_service.update_settings(identity, settings)

    async def begin_totp_enrollment(self, identity: Identity) -> TotpEnrollment:
        return await self.otp_service.begin_totp_enrollment(identity)

    async def confirm_totp_enrollment(
        self, identity: Identity, code: str
    ) -> tuple[Identity, list[str]]:
        return await self.otp_service.confirm_totp_enrollment(identity, code)

    async def disable_two_factor(
        self, identity: Identity, session_id: SessionId
    ) -> Identity:
        """Remove the authenticator app (gated)."""
        await self.require_step_up(
            identity, session_id, SensitiveOperation.DISABLE_TWO_FACTOR
        )
        return await self.otp_service.disable_totp(identity)

    async def generate_backup_codes(
        self, identity: Identity, session_id: SessionId
    ) -> tuple[Identity, list[str]]:
        """Replace the backup codes (gated)."""
        await self.require_step_up(
            identity, session_id, SensitiveOperation.GENERATE_BACKUP_CODES
        )
        return await self.otp_service.regenerate_backup_codes(identity)

    async def request_email_verification(self, identity: Identity) -> IssuedChallenge:
        """Email a code proving the identity controls its address.

        Raises:
            ValidationError: If the address is already verified
            RateLimitExceededError: If too many codes were sent recently
        """
        with logfire.span(
            "identity_orchestrator.request_email_verification",
            identity_id=str(identity.id),
        ):
            if identity.email_verified:
                raise ValidationError("Email is already verified")
            return await self.otp_service.issue(identity, OtpPurpose.VERIFICATION)

    async def confirm_email_verification(
        self, identity: Identity, code: str
    ) -> Identity:
        """Mark the email verified once the emailed code checks out.

        Raises:
            ValidationError: If the address is already verified
            OtpInvalidError: If the code is wrong or expired
            OtpExhaustedError: If the challenge ran out of attempts
        """
        with logfire.span(
            "identity_orchestrator.confirm_email_verification",
            identity_id=str(identity.id),
        ):
            if identity.email_verified:
                raise ValidationError("Email is already verified")
            await self.otp_service.verify(identity, code, OtpPurpose.VERIFICATION)

            current = await self._reload(identity)
            saved = await self.identity_repository.save(
                current.model_copy(
                    update={"email_verified": True, "updated_at": self.clock()}
                )
            )
            await self.security_event_service.record(
                SecurityEventType.EMAIL_VERIFIED, saved, email=saved.email
            )
            return saved

    def login_history(
        self, identity: Identity, limit: int = 20, successful: bool | None = None
    ) -> list[LoginRecord]:
        """Recent login attempts, newest first, optionally only (un)successful ones."""
        records = [
            record
            for record in reversed(identity.login_history)
            if successful is None or record.successful == successful
        ]
        return records[:limit]

    async def security_summary(self, identity: Identity) -> SecuritySummary:
        """Account protection overview with suggested improvements."""
        with logfire.span(
            "identity_orchestrator.security_summary", identity_id=str(identity.id)
        ):
            sessions = await self.token_service.list_sessions(identity.id)
            events = await self.security_event_service.recent_events(
                identity.id, SUMMARY_EVENT_LIMIT
            )

            recommendations = []
            if not identity.two_factor.enabled:
                recommendations.append("enable_two_factor")
            if not identity.email_verified:
                recommendations.append("verify_email")
            if not identity.has_password:
                recommendations.append("set_password")

            return SecuritySummary(
                email_verified=identity.email_verified,
                has_password=identity.has_password,
                two_factor_enabled=identity.two_factor.enabled,
                otp_enabled=identity.otp_settings.enabled,
                social_providers=[link.provider for link in identity.social_links],
                active_sessions=len(sessions),
                trusted_devices=sum(d.trusted for d in identity.trusted_devices),
                known_devices=len(identity.trusted_devices),
                account_locked=identity.is_locked(self.clock()),
                failed_login_attempts=identity.failed_login_attempts,
                last_login_at=identity.last_login_at,
                recent_events=events,
                recommendations=recommendations,
            )

    # Devices

    def list_devices(self, identity: Identity) -> list[TrustedDevice]:
        return self.token_service.list_devices(identity)

    async def trust_device(
        self, identity: Identity, session_id: SessionId, device_id: str
    ) -> Identity:
        """Mark a device as trusted (gated)."""
        await self.require_step_up(identity, session_id, SensitiveOperation.TRUST_DEVICE)
        return await self.token_service.trust_device(identity, device_id)

    async def remove_device(
        self, identity: Identity, session_id: SessionId, device_id: str
    ) -> Identity:
        """Forget a device and revoke its sessions (gated)."""
        await self.require_step_up(
            identity, session_id, SensitiveOperation.REMOVE_DEVICE
        )
        return await self.token_service.remove_device(identity, device_id)

    # Authorization

    def authorize(self, identity: Identity, resource: str, action: str) -> None:
        """Raise AuthorizationDeniedError unless the policy allows the action."""
        self.authorization_service.authorize(identity, resource, action)

    async def security_events(
        self, actor: Identity, identity_id: IdentityId, limit: int = 100
    ) -> list[SecurityEvent]:
        """Security events of ``identity_id``; others' events need permission.

        Raises:
            AuthorizationDeniedError: If ``actor`` may not read them
        """
        if actor.id != identity_id:
            self.authorize(actor, "security_events", "read")
        return await self.security_event_service.recent_events(identity_id, limit)

    # Credential checks

    async def _check_password(
        self, credential: PasswordCredential, device: DeviceFingerprint
    ) -> Identity:
        await self.rate_limit_service.hit(
            LOGIN_SCOPE,
            f"{device.client_ip}:{credential.identifier.lower()}",
            limit=self.rate_limit_settings.login_max_requests,
            window_seconds=self.rate_limit_settings.login_window_seconds,
        )

        identity = await self.identity_repository.find_by_email_or_username(
            credential.identifier
        )
        if identity is None:
            await self.security_event_service.record(
                SecurityEventType.LOGIN_FAILED,
                severity=Severity.MEDIUM,
                reason="unknown_identity",
                ip_address=device.client_ip,
                device_id=device.device_id,
            )
            raise InvalidCredentialError()

        identity = await self._ensure_can_login(identity, device)

        if not await self.password_service.verify(
            credential.password, identity.password_hash
        ):
            await self._register_password_failure(identity, device)

        return identity

    async def _check_social(
        self, credential: SocialCredential, device: DeviceFingerprint
    ) -> tuple[Identity, bool]:
        profile = await self.social_auth_service.validate(
            credential.provider, credential.token
        )
        result = await self.social_link_service.login_or_register(profile, device)
        identity = await self._ensure_can_login(result.identity, device)
        return identity, result.is_new_user

    async def _check_one_time_code(
        self, credential: OneTimeCodeCredential, device: DeviceFingerprint
    ) -> Identity:
        await self.rate_limit_service.hit(
            LOGIN_SCOPE,
            f"{device.client_ip}:{credential.email.lower()}",
            limit=self.rate_limit_settings.login_max_requests,
            window_seconds=self.rate_limit_settings.login_window_seconds,
        )
        identity = await self.identity_repository.find_by_email(credential.email)
        if identity is None:
            raise InvalidCredentialError()
        identity = await self._ensure_can_login(identity, device)

        try:
            await self.otp_service.verify(identity, credential.code, OtpPurpose.LOGIN)
        except (OtpInvalidError, OtpExhaustedError) as e:
            await self._record_failed_login(
                identity, device, LoginMethod.ONE_TIME_CODE, e.code.lower()
            )
            raise
        return identity

    async def _ensure_can_login(
        self, identity: Identity, device: DeviceFingerprint
    ) -> Identity:
        """Lift an elapsed lockout, then refuse locked or inactive identities."""
        now = self.clock()
        if identity.status == IdentityStatus.INACTIVE:
            raise AccountInactiveError()

        if identity.lockout_until and not identity.is_locked(now):
            identity = await self.identity_repository.save(
                identity.model_copy(
                    update={
                        "lockout_until": None,
                        "failed_login_attempts": 0,
                        "status": IdentityStatus.ACTIVE,
                        "updated_at": now,
                    }
                )
            )
            await self.security_event_service.record(
                SecurityEventType.ACCOUNT_UNLOCKED, identity
            )
            logfire.info("Lockout expired", identity_id=str(identity.id))

        if identity.is_locked(now):
            await self.security_event_service.record(
                SecurityEventType.LOGIN_FAILED,
                identity,
                severity=Severity.MEDIUM,
                reason="account_locked",
                ip_address=device.client_ip,
                device_id=device.device_id,
            )
            raise AccountLockedError(identity.lockout_until)

        return identity

    async def _reload(self, identity: Identity) -> Identity:
        """Stored state of ``identity``, after a step that wrote to it."""
        current = await self.identity_repository.find_by_id(identity.id)
        if current is None:
            raise NotFoundError("Identity", str(identity.id))
        return current

    async def _register_password_failure(
        self, identity: Identity, device: DeviceFingerprint
    ) -> None:
        """Count a wrong password; the Nth consecutive one locks the identity.

        Counting is one repository step, so concurrent wrong passwords are
        all counted. Always raises.
        """
        now = self.clock()
        lockout = self.auth_settings.lockout
        record = self._login_record(
            device, LoginMethod.PASSWORD, successful=False, now=now
        ).model_copy(update={"failure_reason": "invalid_password"})
        saved = await self.identity_repository.record_login_failure(
            identity.id,
            record,
            now,
            max_attempts=lockout.max_login_attempts,
            lockout_duration=self._lockout_duration,
        )
        attempts = saved.failed_login_attempts

        await self.security_event_service.record(
            SecurityEventType.LOGIN_FAILED,
            saved,
            severity=Severity.MEDIUM,
            reason="invalid_password",
            attempts=attempts,
            ip_address=device.client_ip,
            device_id=device.device_id,
        )

        if not saved.is_locked(now):
            raise InvalidCredentialError()

        # Only the failure that crossed the threshold reports the lockout
        if attempts == lockout.max_login_attempts:
            await self.security_event_service.record(
                SecurityEventType.ACCOUNT_LOCKED,
                saved,
                severity=Severity.HIGH,
                locked_until=saved.lockout_until.isoformat(),
                attempts=attempts,
            )
            logfire.warn(
                "Identity locked",
                identity_id=str(identity.id),
                locked_until=saved.lockout_until.isoformat(),
            )
        raise AccountLockedError(saved.lockout_until)

    def _lockout_duration(self, previous_lockouts: int) -> timedelta:
        lockout = self.auth_settings.lockout
        minutes = lockout.lockout_minutes
        if lockout.strategy == "exponential":
            minutes = min(
                lockout.lockout_minutes * 2**previous_lockouts,
                lockout.max_lockout_minutes,
            )
        return timedelta(minutes=minutes)

    # OTP branch and session issue

    def _login_needs_otp(self, identity: Identity, device: DeviceFingerprint) -> bool:
        if not self.otp_settings.enabled:
            return False
        if not identity.otp_settings.enabled:
            return False
        if identity.requires_otp(OtpPurpose.LOGIN):
            return True
        return (
            self.auth_settings.step_up_on_high_risk
            and device.suspicion.risk_level == RiskLevel.HIGH
        )

    async def _start_otp(
        self,
        identity: Identity,
        device: DeviceFingerprint,
        method: LoginMethod,
        is_new_user: bool,
    ) -> LoginResult:
        challenge = await self.otp_service.issue(identity, OtpPurpose.LOGIN)
        otp_token, expires_at = self.token_service.create_otp_token(
            identity, device.device_id, method.value
        )
        logfire.info(
            "Login awaiting one-time code",
            identity_id=str(identity.id),
            method=challenge.method.value,
        )
        return LoginResult(
            state=LoginState.OTP_REQUIRED,
            identity=identity,
            otp_token=otp_token,
            otp_token_expires_at=expires_at,
            challenge=challenge,
            otp_methods=self.otp_service.available_methods(identity),
            is_new_user=is_new_user,
            risk_level=device.suspicion.risk_level,
        )

    async def _issue_session(
        self,
        identity: Identity,
        device: DeviceFingerprint,
        method: LoginMethod,
        is_new_user: bool = False,
    ) -> LoginResult:
        # Re-read around issue: verification may have burned a backup code and
        # issuing registers the device on the stored identity
        fresh = await self.identity_repository.find_by_id(identity.id) or identity
        tokens = await self.token_service.issue(fresh, device)

        now = self.clock()
        current = await self.identity_repository.find_by_id(identity.id) or fresh
        saved = await self.identity_repository.save(
            current.with_login_record(
                self._login_record(device, method, successful=True, now=now)
            ).model_copy(
                update={
                    "failed_login_attempts": 0,
                    "lockout_until": None,
                    "status": IdentityStatus.ACTIVE,
                    "last_login_at": now,
                    "updated_at": now,
                }
            )
        )

        await self.security_event_service.record(
            SecurityEventType.LOGIN_SUCCESS,
            saved,
            method=method.value,
            device_id=device.device_id,
            ip_address=device.client_ip,
            risk_score=device.suspicion.score,
        )
        logfire.info(
            "Login succeeded",
            identity_id=str(saved.id),
            method=method.value,
            session_id=str(tokens.session_id),
        )
        return LoginResult(
            state=LoginState.SESSION_ISSUED,
            identity=saved,
            tokens=tokens,
            is_new_user=is_new_user,
            risk_level=device.suspicion.risk_level,
        )

    async def _record_failed_login(
        self,
        identity: Identity,
        device: DeviceFingerprint,
        method: LoginMethod,
        reason: str,
    ) -> None:
        record = self._login_record(
            device, method, successful=False, now=self.clock()
        ).model_copy(update={"failure_reason": reason})
        await self.identity_repository.save(identity.with_login_record(record))
        await self.security_event_service.record(
            SecurityEventType.LOGIN_FAILED,
            identity,
            severity=Severity.MEDIUM,
            reason=reason,
            ip_address=device.client_ip,
            device_id=device.device_id,
        )

    @staticmethod
    def _login_record(
        device: DeviceFingerprint,
        method: LoginMethod,
        successful: bool,
        now: datetime,
    ) -> LoginRecord:
        return LoginRecord(
            at=now,
            successful=successful,
            method=method,
            device_id=device.device_id,
            ip_address=device.client_ip,
            user_agent=device.user_agent,
        )
