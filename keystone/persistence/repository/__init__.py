"""PostgreSQL repository implementations."""

from keystone.persistence.repository.counter import PostgresCounterStore
from keystone.persistence.repository.identity import PostgresIdentityRepository
from keystone.persistence.repository.security_event import (
    PostgresSecurityEventRepository,
)
from keystone.persistence.repository.session import (
    PostgresSessionRepository,
    PostgresSessionVerificationStore,
)

__all__ = [
    "PostgresCounterStore",
    "PostgresIdentityRepository",
    "PostgresSecurityEventRepository",
    "PostgresSessionRepository",
    "PostgresSessionVerificationStore",
]
