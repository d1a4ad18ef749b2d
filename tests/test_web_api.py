"""Tests for the Flask JSON gateway."""

import pytest

from ballotvault.core.auth.roles import Role
from ballotvault.core.config import AppConfig, BallotVaultConfig
from ballotvault.services import build_services
from ballotvault.web import create_app


SUPER_ID = "root"
SUPER_PASSWORD = "Root12345"


def login(client, account_id, password, **kwargs):
    return client.post("/api/auth/login", json={"account_id": account_id, "password": password}, **kwargs)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def super_token(client, super_admin):
    response = login(client, SUPER_ID, SUPER_PASSWORD)
    assert response.status_code == 200
    return response.get_json()["token"]


@pytest.fixture
def manager(services):
    return services.store.create("a1", "Alice", "Abc12345", Role.VOTER_MANAGER).value


@pytest.fixture
def manager_token(client, manager):
    return login(client, "a1", "Abc12345").get_json()["token"]


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"
        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestLogin:

    def test_login_returns_token(self, client, manager):
        response = login(client, "a1", "Abc12345")

        assert response.status_code == 200
        data = response.get_json()
        assert data["token"]
        assert data["role"] == "VoterManager"
        assert data["needs_password_reset"] is False
        assert data["expires_in"] == 1800

    def test_wrong_password_is_401(self, client, manager):
        response = login(client, "a1", "Wrong1234")

        assert response.status_code == 401
        assert response.get_json()["kind"] == "invalid_credentials"

    def test_unknown_account_looks_the_same(self, client, manager):
        unknown = login(client, "ghost", "Abc12345").get_json()
        wrong = login(client, "a1", "Wrong1234").get_json()
        assert unknown == wrong

    def test_malformed_body(self, client):
        response = client.post("/api/auth/login", data="not json", content_type="text/plain")
        assert response.status_code == 401

    def test_lockout_is_423(self, client, manager, clock):
        for _ in range(5):
            login(client, "a1", "Wrong1234")

        assert login(client, "a1", "Abc12345").status_code == 423

        clock.advance(minutes=16)
        assert login(client, "a1", "Abc12345").status_code == 200


class TestSessionRoutes:

    def test_validate(self, client, manager_token):
        response = client.get("/api/auth/validate", headers=bearer(manager_token))

        assert response.status_code == 200
        data = response.get_json()
        assert data["account_id"] == "a1"
        assert data["permissions"] == ["add_voter", "delete_voter", "edit_voter", "view_voter"]

    def test_missing_or_bad_token(self, client):
        assert client.get("/api/auth/validate").status_code == 401
        assert client.get("/api/auth/validate", headers=bearer("nonsense")).status_code == 401

    def test_token_pinned_to_address(self, client, manager_token):
        response = client.get(
            "/api/auth/validate",
            headers=bearer(manager_token),
            environ_base={"REMOTE_ADDR": "192.168.7.7"},
        )
        assert response.status_code == 401

    def test_logout(self, client, manager_token):
        assert client.post("/api/auth/logout", headers=bearer(manager_token)).status_code == 200
        assert client.get("/api/auth/validate", headers=bearer(manager_token)).status_code == 401

    def test_session_expires(self, client, manager_token, clock):
        clock.advance(minutes=31)
        assert client.get("/api/auth/validate", headers=bearer(manager_token)).status_code == 401

    def test_change_password(self, client, manager_token):
        response = client.post(
            "/api/auth/password",
            json={"old_password": "Abc12345", "new_password": "Xyz98765"},
            headers=bearer(manager_token),
        )

        assert response.status_code == 200
        assert login(client, "a1", "Xyz98765").status_code == 200

    def test_change_password_wrong_current(self, client, manager_token):
        response = client.post(
            "/api/auth/password",
            json={"old_password": "Nope12345", "new_password": "Xyz98765"},
            headers=bearer(manager_token),
        )
        assert response.status_code == 401

    @pytest.mark.parametrize("payload,status", [
        ({"old_password": "Abc12345", "new_password": 12345678}, 400),
        ({"old_password": "Abc12345", "new_password": ["Xyz98765"]}, 400),
        ({"old_password": 12345678, "new_password": "Xyz98765"}, 401),
    ])
    def test_change_password_non_string_fields(self, client, manager_token, payload, status):
        response = client.post("/api/auth/password", json=payload, headers=bearer(manager_token))

        assert response.status_code == status
        assert login(client, "a1", "Abc12345").status_code == 200


class TestAccountRoutes:

    def test_list_accounts(self, client, super_token, manager):
        response = client.get("/api/accounts", headers=bearer(super_token))

        assert response.status_code == 200
        accounts = response.get_json()["accounts"]
        assert {a["account_id"] for a in accounts} == {SUPER_ID, "a1"}
        assert all("password_digest" not in a and "salt" not in a for a in accounts)

    def test_add_account(self, client, super_token):
        response = client.post(
            "/api/accounts",
            json={"account_id": "a2", "display_name": "Bob", "password": "Abc12345", "role": "AuditViewer"},
            headers=bearer(super_token),
        )

        assert response.status_code == 201
        assert response.get_json()["account"]["role"] == "AuditViewer"

    @pytest.mark.parametrize("payload,status", [
        ({"account_id": "a1", "display_name": "Alice", "password": "Abc12345", "role": "ReportViewer"}, 409),
        ({"account_id": "a2", "display_name": "Bob", "password": "weak", "role": "ReportViewer"}, 400),
        ({"account_id": "no spaces", "display_name": "Bob", "password": "Abc12345"}, 400),
        ({"account_id": "a2", "display_name": "Bob", "password": 12345678, "role": "ReportViewer"}, 400),
        ({"account_id": "a2", "display_name": 42, "password": "Abc12345", "role": "ReportViewer"}, 400),
    ])
    def test_add_account_failures(self, client, super_token, manager, payload, status):
        response = client.post("/api/accounts", json=payload, headers=bearer(super_token))
        assert response.status_code == status

    def test_non_super_gets_403(self, client, manager_token):
        assert client.get("/api/accounts", headers=bearer(manager_token)).status_code == 403
        response = client.post(
            "/api/accounts",
            json={"account_id": "a2", "display_name": "Bob", "password": "Abc12345"},
            headers=bearer(manager_token),
        )
        assert response.status_code == 403

    def test_delete_account_ends_its_sessions(self, client, super_token, manager_token):
        response = client.delete("/api/accounts/a1", headers=bearer(super_token))

        assert response.status_code == 200
        assert client.get("/api/auth/validate", headers=bearer(manager_token)).status_code == 401
        assert client.delete("/api/accounts/a1", headers=bearer(super_token)).status_code == 404

    def test_cannot_delete_self(self, client, super_token):
        assert client.delete(f"/api/accounts/{SUPER_ID}", headers=bearer(super_token)).status_code == 403

    def test_reassign_role(self, client, super_token, manager):
        response = client.put(
            "/api/accounts/a1/role", json={"role": "NomineeManager"}, headers=bearer(super_token),
        )

        assert response.status_code == 200
        assert response.get_json()["account"]["role"] == "NomineeManager"

    def test_reassign_unknown_role_is_400(self, client, super_token, manager):
        response = client.put(
            "/api/accounts/a1/role", json={"role": "NomineeManger"}, headers=bearer(super_token),
        )

        assert response.status_code == 400
        assert response.get_json()["kind"] == "invalid_input"

    def test_reset_password(self, client, super_token, manager):
        response = client.post(
            "/api/accounts/a1/password", json={"new_password": "Tmp12345x"}, headers=bearer(super_token),
        )

        assert response.status_code == 200
        assert login(client, "a1", "Tmp12345x").get_json()["needs_password_reset"] is True

    def test_reset_password_non_string(self, client, super_token, manager):
        response = client.post(
            "/api/accounts/a1/password", json={"new_password": 12345678}, headers=bearer(super_token),
        )

        assert response.status_code == 400
        assert login(client, "a1", "Abc12345").status_code == 200


class TestAuditRoutes:

    def test_own_trail(self, client, manager_token):
        response = client.get("/api/audit?limit=5", headers=bearer(manager_token))

        assert response.status_code == 200
        actions = [e["action"] for e in response.get_json()["entries"]]
        assert "LOGIN_SUCCESS" in actions

    def test_other_trail_forbidden_for_manager(self, client, manager_token, super_admin):
        response = client.get(f"/api/audit?account_id={SUPER_ID}", headers=bearer(manager_token))
        assert response.status_code == 403

    def test_recent_for_super(self, client, super_token):
        response = client.get("/api/audit/recent", headers=bearer(super_token))

        assert response.status_code == 200
        assert response.get_json()["entries"]


class TestForgotPassword:

    def test_disabled_by_default(self, client, manager):
        response = client.post("/api/auth/forgot-password", json={"account_id": "a1", "new_password": "Xyz98765"})
        assert response.status_code == 404

    def test_enabled_answers_generically(self, clock, config):
        enabled = BallotVaultConfig(
            paths=config.paths, security=config.security,
            app=AppConfig(allow_self_service_reset=True),
        )
        services = build_services(enabled, clock=clock)
        services.store.create("a1", "Alice", "Abc12345", Role.VOTER_MANAGER)
        client = create_app(services).test_client()

        known = client.post("/api/auth/forgot-password", json={"account_id": "a1", "new_password": "Xyz98765"})
        unknown = client.post("/api/auth/forgot-password", json={"account_id": "ghost", "new_password": "Xyz98765"})

        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()
        assert login(client, "a1", "Xyz98765").get_json()["needs_password_reset"] is True
