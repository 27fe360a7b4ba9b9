"""Mock persistence providers for testing."""

from dishka import Scope, provide

from keystone.domain.repository import (
    CounterStore,
    IdentityRepository,
    SecurityEventRepository,
    SessionRepository,
    SessionVerificationStore,
)
from keystone.persistence.repository.inmemory import (
    InMemoryCounterStore,
    InMemoryIdentityRepository,
    InMemorySecurityEventRepository,
    InMemorySessionRepository,
    InMemorySessionVerificationStore,
)
from keystone.util.di.infrastructure.persistence import PersistenceProvider


class MockPersistenceProvider(PersistenceProvider):
    """Mock persistence provider using in-memory repositories.

    Uses APP scope so state survives across requests of one container, the
    way a database would. Every test builds its own container, so tests
    stay isolated.
    """

    __is_mock__ = True

    @provide(scope=Scope.APP)
    def get_identity_repository(self) -> IdentityRepository:
        """Provide in-memory identity repository."""
        return InMemoryIdentityRepository()

    @provide(scope=Scope.APP)
    def get_session_repository(self) -> SessionRepository:
        """Provide in-memory refresh session repository."""
        return InMemorySessionRepository()

    @provide(scope=Scope.APP)
    def get_session_verification_store(self) -> SessionVerificationStore:
        """Provide in-memory step-up verification store."""
        return InMemorySessionVerificationStore()

    @provide(scope=Scope.APP)
    def get_security_event_repository(self) -> SecurityEventRepository:
        """Provide in-memory security event repository."""
        return InMemorySecurityEventRepository()

    @provide(scope=Scope.APP)
    def get_counter_store(self) -> CounterStore:
        """Provide in-memory counter store."""
        return InMemoryCounterStore()
