"""Test configuration and fixtures."""

import os

# Must be set before any Settings() is built
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AUTH__BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUTH__JWT_SECRET", "test-only-signing-secret-0123456789abcdef")

import pytest  # noqa: E402

from tests.harness import FakeClock, ServiceGraph, build_services  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    """Controllable time source."""
    return FakeClock()


@pytest.fixture
def services(clock: FakeClock) -> ServiceGraph:
    """Domain services over in-memory stores with default settings."""
    return build_services(clock=clock)
