"""Async PostgreSQL engine and sessions.

One engine per process (APP scope in the container); one session per
request. Repositories flush but never commit: the request-scoped session
provider decides.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keystone.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine from ``settings.database``."""
    database = settings.database
    return create_async_engine(
        database.url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_recycle=database.pool_recycle_seconds,
        connect_args={"command_timeout": database.command_timeout_seconds},
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory.

    Mapped rows are converted to domain models right away, so nothing needs
    to stay attached after commit.
    """
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
