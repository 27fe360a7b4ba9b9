"""Persistence infrastructure providers."""

from collections.abc import AsyncIterator

from dishka import Scope, provide
import logfire
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from keystone.config import Settings
from keystone.domain.error import DomainError
from keystone.domain.repository import (
    CounterStore,
    IdentityRepository,
    SecurityEventRepository,
    SessionRepository,
    SessionVerificationStore,
)
from keystone.persistence.database import create_engine, create_session_factory
from keystone.persistence.repository import (
    PostgresCounterStore,
    PostgresIdentityRepository,
    PostgresSecurityEventRepository,
    PostgresSessionRepository,
    PostgresSessionVerificationStore,
)
from keystone.util.di.base import ProviderBase
from keystone.util.observability import instrument_sqlalchemy


class PersistenceProvider(ProviderBase):
    """Persistence component base."""

    __mock_component__ = "persistence"


class ProdPersistenceProvider(PersistenceProvider):
    """Production persistence provider using PostgreSQL."""

    __is_mock__ = False

    scope = Scope.APP

    @provide(scope=Scope.APP)
    def get_engine(self, settings: Settings) -> AsyncEngine:
        """Provide database engine."""
        engine = create_engine(settings)
        # Instrument SQLAlchemy for observability
        instrument_sqlalchemy(engine)
        return engine

    @provide(scope=Scope.APP)
    def get_session_factory(
        self, engine: AsyncEngine
    ) -> async_sessionmaker[AsyncSession]:
        """Provide session factory."""
        return create_session_factory(engine)

    @provide(scope=Scope.REQUEST)
    async def get_session(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> AsyncIterator[AsyncSession]:
        """Provide database session for request scope.

        The session is committed at the end of the request when no exception
        occurred or when a domain error was raised: failed-login counters,
        consumed OTP attempts and security events must outlive the rejected
        request. Any other exception rolls the session back.
        """
        async with session_factory() as session:
            try:
                yield session
            except DomainError as e:
                await session.commit()
                logfire.info("Session committed after domain error", error=e.code)
                raise
            except Exception as e:
                logfire.warn("Session rollback", error=str(e))
                await session.rollback()
                raise
            else:
                await session.commit()
                logfire.info("Session committed")

    @provide(scope=Scope.REQUEST)
    def get_identity_repository(self, session: AsyncSession) -> IdentityRepository:
        """Provide Identity repository."""
        return PostgresIdentityRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_session_repository(self, session: AsyncSession) -> SessionRepository:
        """Provide refresh session repository."""
        return PostgresSessionRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_session_verification_store(
        self, session: AsyncSession
    ) -> SessionVerificationStore:
        """Provide step-up verification store."""
        return PostgresSessionVerificationStore(session)

    @provide(scope=Scope.REQUEST)
    def get_security_event_repository(
        self, session: AsyncSession
    ) -> SecurityEventRepository:
        """Provide SecurityEvent repository."""
        return PostgresSecurityEventRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_counter_store(self, session: AsyncSession) -> CounterStore:
        """Provide rate limit counter store."""
        return PostgresCounterStore(session)
