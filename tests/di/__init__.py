"""Mock providers for testing."""

from .notifications import MockNotificationsProvider
from .persistence import MockPersistenceProvider
from .providers import MockProvidersProvider
from .container import build_test_container

__all__ = [
    "MockNotificationsProvider",
    "MockPersistenceProvider",
    "MockProvidersProvider",
    "build_test_container",
]
