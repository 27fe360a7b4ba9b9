"""Unit tests for AuthorizationService."""

from uuid import uuid4

import pytest

from keystone.config import AuthorizationSettings
from keystone.domain.error import AuthorizationDeniedError
from keystone.domain.model import Identity
from keystone.domain.service import AuthorizationService, PolicyRule
from keystone.domain.value import IdentityId


def make_identity(role: str = "user", permissions: list[str] | None = None) -> Identity:
    return Identity(
        id=IdentityId(uuid4()),
        email="alice@example.com",
        role=role,
        permissions=permissions or [],
    )


@pytest.fixture
def authorization_service() -> AuthorizationService:
    return AuthorizationService(AuthorizationSettings().role_permissions)


class TestEvaluate:
    """Tests for rule ordering and matching."""

    def test_super_admin_is_allowed_everything(self, authorization_service):
        """super_admin matches before the settings restriction."""
        # Act
        decision = authorization_service.evaluate(
            make_identity(role="super_admin"), "settings", "write"
        )

        # Assert
        assert decision.allowed
        assert decision.rule == "super_admin"

    def test_settings_are_denied_to_everyone_else(self, authorization_service):
        """Even a full grant on settings is overridden by the restriction."""
        # Act
        decision = authorization_service.evaluate(
            make_identity(permissions=["settings:full"]), "settings", "read"
        )

        # Assert
        assert not decision.allowed
        assert decision.rule == "settings_restricted"

    def test_identity_full_grant(self, authorization_service):
        """A resource:full permission on the identity allows any action."""
        # Act
        decision = authorization_service.evaluate(
            make_identity(permissions=["sessions:full"]), "sessions", "delete"
        )

        # Assert
        assert decision.allowed
        assert decision.rule == "identity_full_access"

    def test_identity_exact_grant(self, authorization_service):
        """An exact permission allows only that action."""
        # Arrange
        identity = make_identity(permissions=["sessions:read"])

        # Act / Assert
        assert authorization_service.evaluate(identity, "sessions", "read").rule == (
            "identity_permission"
        )
        assert not authorization_service.evaluate(identity, "sessions", "delete").allowed

    def test_role_grants(self, authorization_service):
        """Role grants apply after identity grants."""
        # Act
        admin = authorization_service.evaluate(
            make_identity(role="admin"), "security_events", "read"
        )
        support = authorization_service.evaluate(
            make_identity(role="support"), "security_events", "read"
        )

        # Assert
        assert admin.allowed and admin.rule == "role_full_access"
        assert support.allowed and support.rule == "role_permission"

    def test_no_matching_rule_denies(self, authorization_service):
        """Without a grant the default is deny."""
        # Act
        decision = authorization_service.evaluate(
            make_identity(), "security_events", "read"
        )

        # Assert
        assert not decision.allowed
        assert decision.rule == "default_deny"

    def test_unknown_role_has_no_grants(self, authorization_service):
        """Roles missing from the grant table get nothing."""
        # Act / Assert
        assert not authorization_service.evaluate(
            make_identity(role="auditor"), "identities", "read"
        ).allowed

    def test_rules_can_be_replaced(self):
        """Custom rule lists are evaluated in order."""
        # Arrange
        service = AuthorizationService(
            {},
            rules=(
                PolicyRule(name="read_only", effect="deny", resources=("sessions",)),
                PolicyRule(name="open", effect="allow"),
            ),
        )

        # Act / Assert
        assert service.evaluate(make_identity(), "sessions", "read").rule == "read_only"
        assert service.evaluate(make_identity(), "identities", "read").rule == "open"


class TestAuthorize:
    """Tests for the raising variant."""

    def test_denied_action_raises(self, authorization_service):
        """authorize() raises on deny."""
        # Act / Assert
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            authorization_service.authorize(make_identity(), "identities", "read")
        assert exc_info.value.resource == "identities"
        assert exc_info.value.action == "read"

    def test_allowed_action_passes(self, authorization_service):
        """authorize() returns quietly on allow."""
        # Act / Assert
        authorization_service.authorize(
            make_identity(role="support"), "identities", "read"
        )
