"""In-memory repository implementations for testing."""

from .counter import InMemoryCounterStore
from .identity import InMemoryIdentityRepository
from .security_event import InMemorySecurityEventRepository
from .session import InMemorySessionRepository, InMemorySessionVerificationStore

__all__ = [
    "InMemoryCounterStore",
    "InMemoryIdentityRepository",
    "InMemorySecurityEventRepository",
    "InMemorySessionRepository",
    "InMemorySessionVerificationStore",
]
