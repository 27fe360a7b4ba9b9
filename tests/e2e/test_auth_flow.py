"""End-to-end tests for the authentication API."""

from uuid import UUID, uuid4

import pytest
from dishka import AsyncContainer
from fastapi.testclient import TestClient

from keystone.adapter.notification import MockNotificationDispatcher
from keystone.adapter.provider import mock_token
from keystone.domain.service import NotificationDispatcher
from keystone.domain.value import IdentityId
from keystone.interface.api.app import create_app
from tests.di import build_test_container
from tests.harness import CHROME_UA, PASSWORD


@pytest.fixture
def container() -> AsyncContainer:
    """Fresh mock container, so stores are empty for every test."""
    return build_test_container()


@pytest.fixture
def client(container: AsyncContainer):
    """Create test client."""
    with TestClient(create_app(container), headers={"User-Agent": CHROME_UA}) as c:
        yield c


@pytest.fixture
def dispatcher(client: TestClient, container: AsyncContainer) -> MockNotificationDispatcher:
    """The capturing dispatcher the app sends codes through."""
    return client.portal.call(container.get, NotificationDispatcher)


def bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def register(client: TestClient, email: str = "alice@example.com") -> dict:
    response = client.post("/auth/register", json={"email": email, "password": PASSWORD})
    assert response.status_code == 201
    return response.json()


def login(client: TestClient, identifier: str = "alice@example.com") -> dict:
    response = client.post(
        "/auth/login",
        json={
            "credential": {
                "kind": "password",
                "identifier": identifier,
                "password": PASSWORD,
            }
        },
    )
    assert response.status_code == 200
    return response.json()


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_lists_providers(self, client):
        """Every configured social provider is reported."""
        # Act
        response = client.get("/health")

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "github" in data["providers"]
        assert data["providers"] == sorted(data["providers"])


class TestPasswordFlow:
    """Register, log in, refresh and log out."""

    def test_full_session_lifecycle(self, client):
        """A refresh token stops working once the session is logged out."""
        # Arrange
        registered = register(client)

        # Act
        data = login(client)
        tokens = data["tokens"]
        me = client.get("/auth/me", headers=bearer(tokens["access_token"]))
        refreshed = client.post(
            "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        logout = client.post("/auth/logout", headers=bearer(tokens["access_token"]))
        after_logout = client.post(
            "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )

        # Assert
        assert data["state"] == "session_issued"
        assert data["identity"]["id"] == registered["id"]
        assert me.status_code == 200
        assert me.json()["email"] == "alice@example.com"
        assert "password_hash" not in me.json()
        assert refreshed.status_code == 200
        assert refreshed.json()["session_id"] == tokens["session_id"]
        assert logout.status_code == 204
        assert after_logout.status_code == 401
        assert after_logout.json()["error"] == "INVALID_TOKEN"

    def test_missing_token_is_unauthorized(self, client):
        """Protected routes answer 401 without a bearer token."""
        # Act
        response = client.get("/auth/me")

        # Assert
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_wrong_password_is_unauthorized(self, client):
        """Bad passwords are INVALID_CREDENTIAL."""
        # Arrange
        register(client)

        # Act
        response = client.post(
            "/auth/login",
            json={
                "credential": {
                    "kind": "password",
                    "identifier": "alice@example.com",
                    "password": "wrong password",
                }
            },
        )

        # Assert
        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_CREDENTIAL"

    def test_duplicate_registration_conflicts(self, client):
        """The same email cannot register twice."""
        # Arrange
        register(client)

        # Act
        response = client.post(
            "/auth/register",
            json={"email": "ALICE@example.com", "password": PASSWORD},
        )

        # Assert
        assert response.status_code == 409
        assert response.json()["error"] == "EMAIL_IN_USE"

    def test_malformed_email_is_bad_request(self, client):
        """Invalid addresses are VALIDATION_ERROR, not a server error."""
        # Act
        response = client.post(
            "/auth/register", json={"email": "not-an-email", "password": PASSWORD}
        )

        # Assert
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestOtpFlow:
    """Login and step-up with emailed one-time codes."""

    def enable_otp(self, client: TestClient) -> tuple[IdentityId, str]:
        identity_id = IdentityId(UUID(register(client)["id"]))
        access_token = login(client)["tokens"]["access_token"]
        response = client.put(
            "/security/otp-settings",
            json={"enabled": True, "require_for_login": True},
            headers=bearer(access_token),
        )
        assert response.status_code == 200
        assert response.json()["otp_settings"]["enabled"] is True
        return identity_id, access_token

    def test_login_requires_code(self, client, dispatcher):
        """The first step withholds tokens until the emailed code is verified."""
        # Arrange
        identity_id, _ = self.enable_otp(client)

        # Act
        pending = login(client)
        completed = client.post(
            "/auth/login/otp",
            json={
                "otp_token": pending["otp_token"],
                "code": dispatcher.last_code(identity_id),
            },
        )

        # Assert
        assert pending["state"] == "otp_required"
        assert pending["tokens"] is None
        assert pending["identity"] is None
        assert pending["challenge"]["method"] == "email"
        assert completed.status_code == 200
        assert completed.json()["state"] == "session_issued"
        assert completed.json()["tokens"]["access_token"]

    def test_wrong_code_is_rejected(self, client):
        """A wrong code does not issue a session."""
        # Arrange
        self.enable_otp(client)
        pending = login(client)

        # Act
        response = client.post(
            "/auth/login/otp",
            json={"otp_token": pending["otp_token"], "code": "000000"},
        )

        # Assert
        assert response.status_code == 401
        assert response.json()["error"] == "OTP_INVALID"

    def test_password_change_needs_step_up(self, client, dispatcher):
        """Sensitive operations answer 403 until the session verifies a code."""
        # Arrange
        identity_id, access_token = self.enable_otp(client)
        change = {"current_password": PASSWORD, "new_password": "a new passphrase"}

        # Act
        blocked = client.post(
            "/security/password", json=change, headers=bearer(access_token)
        )
        challenge = client.post(
            "/security/step-up", json={}, headers=bearer(access_token)
        )
        verified = client.post(
            "/security/step-up/verify",
            json={"code": dispatcher.last_code(identity_id)},
            headers=bearer(access_token),
        )
        allowed = client.post(
            "/security/password", json=change, headers=bearer(access_token)
        )

        # Assert
        assert blocked.status_code == 403
        assert blocked.json()["error"] == "OTP_VERIFICATION_REQUIRED"
        assert blocked.json()["operation"] == "change_password"
        assert blocked.json()["methods"] == ["email"]
        assert challenge.status_code == 200
        assert challenge.json()["purpose"] == "sensitive_op"
        assert verified.json() == {"verified": True}
        assert allowed.status_code == 204

    def test_login_code_for_unknown_email_is_accepted(self, client, dispatcher):
        """Requesting a code never reveals whether the address exists."""
        # Act
        response = client.post("/auth/login/code", json={"email": "nobody@example.com"})

        # Assert
        assert response.status_code == 202
        assert response.json() == {"sent": True}
        assert dispatcher.sent == []

    def test_passwordless_login(self, client, dispatcher):
        """An emailed code logs the identity in."""
        # Arrange
        identity_id = IdentityId(UUID(register(client)["id"]))
        client.post("/auth/login/code", json={"email": "alice@example.com"})

        # Act
        response = client.post(
            "/auth/login",
            json={
                "credential": {
                    "kind": "one_time_code",
                    "email": "alice@example.com",
                    "code": dispatcher.last_code(identity_id),
                }
            },
        )

        # Assert
        assert response.status_code == 200
        assert response.json()["state"] == "session_issued"


class TestSocialFlow:
    """Social login and account linking."""

    def test_link_list_and_unlink(self, client):
        """A password identity can link and unlink a provider account."""
        # Arrange
        register(client)
        access_token = login(client)["tokens"]["access_token"]

        # Act
        linked = client.post(
            "/social/links",
            json={"provider": "github", "token": mock_token("583231", "alice@example.com")},
            headers=bearer(access_token),
        )
        listed = client.get("/social/links", headers=bearer(access_token))
        unlinked = client.delete("/social/links/github", headers=bearer(access_token))
        after = client.get("/social/links", headers=bearer(access_token))

        # Assert
        assert linked.status_code == 201
        assert linked.json()["provider_id"] == "583231"
        assert [link["provider"] for link in listed.json()] == ["github"]
        assert unlinked.status_code == 204
        assert after.json() == []

    def test_last_login_method_cannot_be_unlinked(self, client):
        """A social-only identity keeps its only provider link."""
        # Arrange
        login_response = client.post(
            "/auth/login",
            json={
                "credential": {
                    "kind": "social",
                    "provider": "discord",
                    "token": mock_token("80351110224678912", "nelly@example.com"),
                }
            },
        )
        access_token = login_response.json()["tokens"]["access_token"]

        # Act
        response = client.delete("/social/links/discord", headers=bearer(access_token))

        # Assert
        assert login_response.json()["is_new_user"] is True
        assert login_response.json()["identity"]["has_password"] is False
        assert response.status_code == 400
        assert response.json()["error"] == "LAST_AUTH_METHOD"


class TestRecoveryAndVerification:
    """Password reset, email verification and the account overview."""

    def test_forgot_and_reset_password(self, client, dispatcher):
        """The emailed code sets a new password and old refresh tokens die."""
        # Arrange
        identity_id = IdentityId(UUID(register(client)["id"]))
        tokens = login(client)["tokens"]

        # Act
        forgot = client.post("/auth/password/forgot", json={"email": "alice@example.com"})
        reset = client.post(
            "/auth/password/reset",
            json={
                "email": "alice@example.com",
                "code": dispatcher.last_code(identity_id),
                "new_password": "a brand new passphrase",
            },
        )
        refreshed = client.post(
            "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        relogin = client.post(
            "/auth/login",
            json={
                "credential": {
                    "kind": "password",
                    "identifier": "alice@example.com",
                    "password": "a brand new passphrase",
                }
            },
        )

        # Assert
        assert forgot.status_code == 202
        assert forgot.json() == {"sent": True}
        assert reset.status_code == 204
        assert refreshed.status_code == 401
        assert relogin.status_code == 200

    def test_forgot_password_for_unknown_email_is_accepted(self, client, dispatcher):
        """The answer is the same whether or not the address exists."""
        # Act
        response = client.post(
            "/auth/password/forgot", json={"email": "nobody@example.com"}
        )

        # Assert
        assert response.status_code == 202
        assert response.json() == {"sent": True}
        assert dispatcher.sent == []

    def test_reset_with_wrong_code_is_rejected(self, client):
        """A wrong reset code is OTP_INVALID."""
        # Arrange
        register(client)
        client.post("/auth/password/forgot", json={"email": "alice@example.com"})

        # Act
        response = client.post(
            "/auth/password/reset",
            json={
                "email": "alice@example.com",
                "code": "not-a-code",
                "new_password": "a brand new passphrase",
            },
        )

        # Assert
        assert response.status_code == 401
        assert response.json()["error"] == "OTP_INVALID"

    def test_email_verification(self, client, dispatcher):
        """The emailed code marks the address verified."""
        # Arrange
        identity_id = IdentityId(UUID(register(client)["id"]))
        access_token = login(client)["tokens"]["access_token"]

        # Act
        requested = client.post("/security/email/verify", headers=bearer(access_token))
        confirmed = client.post(
            "/security/email/verify/confirm",
            json={"code": dispatcher.last_code(identity_id)},
            headers=bearer(access_token),
        )
        again = client.post("/security/email/verify", headers=bearer(access_token))

        # Assert
        assert requested.status_code == 200
        assert requested.json()["purpose"] == "verification"
        assert requested.json()["method"] == "email"
        assert confirmed.status_code == 200
        assert confirmed.json()["email_verified"] is True
        assert again.status_code == 400
        assert again.json()["error"] == "VALIDATION_ERROR"

    def test_login_history_and_summary(self, client):
        """Users can read their recent logins and a security summary."""
        # Arrange
        register(client)
        client.post(
            "/auth/login",
            json={
                "credential": {
                    "kind": "password",
                    "identifier": "alice@example.com",
                    "password": "wrong password",
                }
            },
        )
        access_token = login(client)["tokens"]["access_token"]

        # Act
        history = client.get("/security/login-history", headers=bearer(access_token))
        failures = client.get(
            "/security/login-history",
            params={"successful": "false"},
            headers=bearer(access_token),
        )
        summary = client.get("/security/summary", headers=bearer(access_token))

        # Assert
        assert history.status_code == 200
        assert [r["successful"] for r in history.json()] == [True, False]
        assert [r["failure_reason"] for r in failures.json()] == ["invalid_password"]
        assert summary.status_code == 200
        assert summary.json()["active_sessions"] == 1
        assert summary.json()["email_verified"] is False
        assert "verify_email" in summary.json()["recommendations"]


class TestSessionsAndAdmin:
    """Session listing and guarded admin routes."""

    def test_sessions_mark_the_current_one(self, client):
        """The listing flags the session behind the access token."""
        # Arrange
        register(client)
        first = login(client)["tokens"]
        second = login(client)["tokens"]

        # Act
        response = client.get("/sessions", headers=bearer(second["access_token"]))

        # Assert
        assert response.status_code == 200
        current = {s["id"]: s["current"] for s in response.json()}
        assert current == {first["session_id"]: False, second["session_id"]: True}

    def test_revoke_all_sessions(self, client):
        """Every session of the identity is revoked, the caller's included."""
        # Arrange
        register(client)
        first = login(client)["tokens"]
        access_token = login(client)["tokens"]["access_token"]

        # Act
        response = client.delete("/sessions", headers=bearer(access_token))
        refreshed = client.post(
            "/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )

        # Assert
        assert response.json() == {"revoked": 2}
        assert refreshed.status_code == 401

    def test_admin_routes_are_forbidden_to_users(self, client):
        """Plain users cannot read other identities' security events."""
        # Arrange
        register(client)
        access_token = login(client)["tokens"]["access_token"]

        # Act
        response = client.get(
            f"/admin/identities/{uuid4()}/security-events",
            headers=bearer(access_token),
        )

        # Assert
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_own_security_events(self, client):
        """Users can read their own security log."""
        # Arrange
        register(client)
        access_token = login(client)["tokens"]["access_token"]

        # Act
        response = client.get("/security/events", headers=bearer(access_token))

        # Assert
        assert response.status_code == 200
        assert "login_success" in [event["event_type"] for event in response.json()]
