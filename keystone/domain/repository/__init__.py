"""Repository interfaces for the Keystone domain.

Repository interfaces are defined in the domain layer (dependency inversion).
Implementations live in the persistence layer.
"""

from keystone.domain.repository.counter import CounterStore
from keystone.domain.repository.identity import IdentityRepository
from keystone.domain.repository.security_event import SecurityEventRepository
from keystone.domain.repository.session import (
    SessionRepository,
    SessionVerificationStore,
)

__all__ = [
    "CounterStore",
    "IdentityRepository",
    "SecurityEventRepository",
    "SessionRepository",
    "SessionVerificationStore",
]
