"""Test harness for unit, integration and E2E tests.

Unit tests either pull services from a mocked container (create_env_fixture)
or wire the domain services by hand with a controllable clock
(build_services). Settings are loaded from environment variables; see
tests/conftest.py.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest_asyncio

from keystone.adapter.notification import MockNotificationDispatcher
from keystone.adapter.provider import MockProviderTokenValidator
from keystone.application.orchestrator import (
    IdentityOrchestrator,
    PasswordCredential,
)
from keystone.config import (
    AuthorizationSettings,
    AuthSettings,
    OTPSettings,
    RateLimitSettings,
)
from keystone.domain.model import Identity, SecurityEvent
from keystone.domain.service import (
    AuthorizationService,
    FingerprintService,
    NotificationService,
    OtpService,
    PasswordService,
    ProviderTokenValidator,
    RateLimitService,
    SecurityEventService,
    SessionVerificationService,
    SocialAuthService,
    SocialLinkService,
    TokenService,
)
from keystone.domain.value import (
    IdentityId,
    RequestSignals,
    SecurityEventType,
    SocialProvider,
)
from keystone.persistence.repository.inmemory import (
    InMemoryCounterStore,
    InMemoryIdentityRepository,
    InMemorySecurityEventRepository,
    InMemorySessionRepository,
    InMemorySessionVerificationStore,
)
from keystone.util.di import Component
from tests.di import build_test_container

TEST_JWT_SECRET = "test-only-signing-secret-0123456789abcdef"
PASSWORD = "correct horse battery"

CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
FIREFOX_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:127.0) Gecko/20100101 Firefox/127.0"
)


def create_env_fixture(unmock: set[Component] | None = None):
    """Factory for creating test environment fixtures.

    Creates a pytest fixture that:
    - Builds a test container with specified unmocking
    - Yields request-scoped container for service access
    - Settings loaded from environment automatically

    Args:
        unmock: Components to use real implementations for

    Returns:
        Pytest fixture function that yields AsyncContainer

    Usage:
        # Unit tests - everything mocked, no docker needed
        unit_env = create_env_fixture()

        # Integration tests - real persistence, assumes postgres running
        integration_env = create_env_fixture(unmock={"persistence"})

        @pytest.mark.asyncio
        async def test_register(unit_env):
            orchestrator = await unit_env.get(IdentityOrchestrator)
            identity = await orchestrator.register("a@example.com", PASSWORD)
            assert identity.id is not None
    """

    @pytest_asyncio.fixture
    async def _test_environment():
        # Build container with specified unmocking
        container = build_test_container(unmock=unmock or set())

        # Open request-scoped context
        async with container() as request_container:
            yield request_container

        await container.close()

    return _test_environment


class FakeClock:
    """Settable time source passed to services as ``clock``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        """Move time forward by ``timedelta(**kwargs)``."""
        self.now += timedelta(**kwargs)
        return self.now


def browser_signals(
    ip: str = "81.2.69.160", user_agent: str = CHROME_UA, **headers: str
) -> RequestSignals:
    """Signals of an ordinary desktop browser (low risk)."""
    return RequestSignals(
        headers={
            "User-Agent": user_agent,
            "Accept": "text/html,application/json",
            "Accept-Language": "en-GB,en;q=0.9",
            "Accept-Encoding": "gzip, deflate, br",
            **headers,
        },
        remote_addr=ip,
    )


def script_signals(ip: str = "54.12.0.9") -> RequestSignals:
    """Signals of a command-line client in a datacenter (high risk)."""
    return RequestSignals(headers={"User-Agent": "curl/8.5.0"}, remote_addr=ip)


@dataclass
class ServiceGraph:
    """Domain services over in-memory stores, sharing one clock."""

    clock: FakeClock
    auth_settings: AuthSettings
    otp_settings: OTPSettings
    dispatcher: MockNotificationDispatcher
    validators: dict[SocialProvider, ProviderTokenValidator]
    identity_repository: InMemoryIdentityRepository
    session_repository: InMemorySessionRepository
    verification_store: InMemorySessionVerificationStore
    security_event_repository: InMemorySecurityEventRepository
    counter_store: InMemoryCounterStore
    fingerprint_service: FingerprintService
    password_service: PasswordService
    notification_service: NotificationService
    security_event_service: SecurityEventService
    rate_limit_service: RateLimitService
    otp_service: OtpService
    session_verification_service: SessionVerificationService
    social_auth_service: SocialAuthService
    social_link_service: SocialLinkService
    token_service: TokenService
    authorization_service: AuthorizationService
    orchestrator: IdentityOrchestrator
    passwords: dict[IdentityId, str] = field(default_factory=dict)

    async def register(
        self,
        email: str = "alice@example.com",
        password: str = PASSWORD,
        **kwargs,
    ) -> Identity:
        """Register a password identity through the orchestrator."""
        identity = await self.orchestrator.register(email, password, **kwargs)
        self.passwords[identity.id] = password
        return identity

    async def reload(self, identity: Identity) -> Identity:
        """Current stored state of ``identity``."""
        stored = await self.identity_repository.find_by_id(identity.id)
        assert stored is not None
        return stored

    async def enable_email_otp(
        self, identity: Identity, require_for_login: bool = True
    ) -> Identity:
        """Turn on email codes for the identity, bypassing step-up."""
        return await self.identity_repository.save(
            identity.model_copy(
                update={
                    "otp_settings": identity.otp_settings.model_copy(
                        update={"enabled": True, "require_for_login": require_for_login}
                    )
                }
            )
        )

    async def password_login(
        self,
        identity: Identity,
        password: str | None = None,
        signals: RequestSignals | None = None,
    ):
        """Log in with email and password."""
        return await self.orchestrator.login(
            PasswordCredential(
                identifier=identity.email,
                password=password or self.passwords.get(identity.id, PASSWORD),
            ),
            signals or browser_signals(),
        )

    async def events(
        self, identity: Identity, event_type: SecurityEventType | None = None
    ) -> list[SecurityEvent]:
        """Security events of ``identity``, newest first."""
        events = await self.security_event_repository.list_by_identity(
            identity.id, limit=1000
        )
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events


def build_services(
    clock: FakeClock | None = None,
    auth_settings: AuthSettings | None = None,
    otp_settings: OTPSettings | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
    authorization_settings: AuthorizationSettings | None = None,
    validators: dict[SocialProvider, ProviderTokenValidator] | None = None,
    dispatcher: MockNotificationDispatcher | None = None,
) -> ServiceGraph:
    """Wire every domain service and the orchestrator by hand.

    Args:
        clock: Shared time source; a fresh FakeClock by default
        auth_settings: Auth settings; test secret and cheap bcrypt by default
        otp_settings: OTP settings
        rate_limit_settings: Login throttling settings
        authorization_settings: Role grants
        validators: Social validators; mock validators for every provider by default
        dispatcher: Notification dispatcher; a capturing mock by default

    Returns:
        The wired services
    """
    clock = clock or FakeClock()
    auth_settings = auth_settings or AuthSettings(
        jwt_secret=TEST_JWT_SECRET, bcrypt_rounds=4
    )
    otp_settings = otp_settings or OTPSettings()
    rate_limit_settings = rate_limit_settings or RateLimitSettings()
    authorization_settings = authorization_settings or AuthorizationSettings()
    validators = validators or {
        provider: MockProviderTokenValidator(provider) for provider in SocialProvider
    }
    dispatcher = dispatcher or MockNotificationDispatcher()

    identity_repository = InMemoryIdentityRepository()
    session_repository = InMemorySessionRepository()
    verification_store = InMemorySessionVerificationStore()
    security_event_repository = InMemorySecurityEventRepository()
    counter_store = InMemoryCounterStore()

    fingerprint_service = FingerprintService()
    password_service = PasswordService(auth_settings)
    notification_service = NotificationService(dispatcher)
    security_event_service = SecurityEventService(
        security_event_repository, notification_service
    )
    rate_limit_service = RateLimitService(counter_store, clock=clock)
    otp_service = OtpService(
        identity_repository,
        notification_service,
        security_event_service,
        rate_limit_service,
        otp_settings,
        clock=clock,
    )
    session_verification_service = SessionVerificationService(
        verification_store, otp_settings, clock=clock
    )
    social_auth_service = SocialAuthService(validators)
    social_link_service = SocialLinkService(
        identity_repository, security_event_service, clock=clock
    )
    token_service = TokenService(
        identity_repository,
        session_repository,
        security_event_service,
        fingerprint_service,
        auth_settings,
        clock=clock,
    )
    authorization_service = AuthorizationService(
        authorization_settings.role_permissions
    )
    orchestrator = IdentityOrchestrator(
        identity_repository=identity_repository,
        fingerprint_service=fingerprint_service,
        password_service=password_service,
        social_auth_service=social_auth_service,
        otp_service=otp_service,
        session_verification_service=session_verification_service,
        social_link_service=social_link_service,
        token_service=token_service,
        security_event_service=security_event_service,
        rate_limit_service=rate_limit_service,
        authorization_service=authorization_service,
        auth_settings=auth_settings,
        otp_settings=otp_settings,
        rate_limit_settings=rate_limit_settings,
        clock=clock,
    )

    return ServiceGraph(
        clock=clock,
        auth_settings=auth_settings,
        otp_settings=otp_settings,
        dispatcher=dispatcher,
        validators=validators,
        identity_repository=identity_repository,
        session_repository=session_repository,
        verification_store=verification_store,
        security_event_repository=security_event_repository,
        counter_store=counter_store,
        fingerprint_service=fingerprint_service,
        password_service=password_service,
        notification_service=notification_service,
        security_event_service=security_event_service,
        rate_limit_service=rate_limit_service,
        otp_service=otp_service,
        session_verification_service=session_verification_service,
        social_auth_service=social_auth_service,
        social_link_service=social_link_service,
        token_service=token_service,
        authorization_service=authorization_service,
        orchestrator=orchestrator,
    )
