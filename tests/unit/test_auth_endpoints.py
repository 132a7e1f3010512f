"""Unit tests for auth API endpoints.

Tests /auth/register, /auth/login, /auth/refresh, /auth/revoke and /auth/me
using FastAPI TestClient against the in-memory backend.
"""

from unittest.mock import AsyncMock

import pytest

from session_auth.api.errors import STATUS_BY_KIND
from session_auth.errors import Err, ErrorKind

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ADA = {
    "name": "Ada",
    "email": "ada@x.com",
    "age": 30,
    "password": "Str0ng!Pass",
    "confirm_password": "Str0ng!Pass",
}


def _register(client, **overrides):
    body = {**ADA, **overrides}
    return client.post("/auth/register", json=body)


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# POST /auth/register
# ---------------------------------------------------------------------------

class TestRegister:
    """Tests for POST /auth/register."""

    def test_register_returns_201_with_tokens(self, client):
        response = _register(client)

        assert response.status_code == 201
        data = response.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 900
        assert data["user"]["email"] == "ada@x.com"
        assert data["user"]["age"] == 30
        assert "password_hash" not in data["user"]

    def test_duplicate_email_returns_409(self, client):
        _register(client)
        response = _register(client)

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_underage_returns_422(self, client):
        response = _register(client, age=16)

        assert response.status_code == 422
        assert response.json()["error"] == "business_rule_violation"
        assert response.json()["detail"] == "User must be at least 18 years old"

    def test_password_mismatch_returns_400(self, client):
        response = _register(client, confirm_password="Other!Pass1")

        assert response.status_code == 400
        assert response.json()["detail"] == "Passwords do not match"

    def test_invalid_email_returns_400(self, client):
        response = _register(client, email="not-an-email")

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert "email" in data["detail"]
        assert data["correlation_id"]

    def test_short_name_returns_400(self, client):
        response = _register(client, name="A")
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# POST /auth/login
# ---------------------------------------------------------------------------

class TestLogin:
    """Tests for POST /auth/login."""

    def test_valid_credentials(self, client):
        _register(client)

        response = client.post("/auth/login", json={"email": "ada@x.com", "password": "Str0ng!Pass"})

        assert response.status_code == 200
        assert response.json()["user"]["name"] == "Ada"

    def test_wrong_password_returns_401(self, client):
        _register(client)

        response = client.post("/auth/login", json={"email": "ada@x.com", "password": "wrong"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_credentials"
        assert response.json()["detail"] == "Invalid email or password"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_email_same_response(self, client):
        _register(client)
        wrong = client.post("/auth/login", json={"email": "ada@x.com", "password": "wrong"})
        unknown = client.post("/auth/login", json={"email": "eve@x.com", "password": "wrong"})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["detail"] == unknown.json()["detail"]

    def test_missing_password_returns_400(self, client):
        response = client.post("/auth/login", json={"email": "ada@x.com"})
        assert response.status_code == 400

    def test_internal_error_exposes_only_correlation_id(self, client, app):
        app.state.sessions.users.get_by_email = AsyncMock(side_effect=RuntimeError("db password=hunter2"))

        response = client.post(
            "/auth/login",
            json={"email": "ada@x.com", "password": "Str0ng!Pass"},
            headers={"X-Correlation-Id": "req-42"},
        )

        assert response.status_code == 500
        data = response.json()
        assert data == {
            "error": "internal",
            "detail": "An internal error occurred",
            "correlation_id": "req-42",
        }

    def test_store_timeout_returns_503(self, client, app):
        app.state.sessions.login = AsyncMock(
            return_value=Err(ErrorKind.SERVICE_UNAVAILABLE, "The service is temporarily unavailable", "cid-1")
        )

        response = client.post("/auth/login", json={"email": "ada@x.com", "password": "x"})

        assert response.status_code == 503
        assert response.json()["correlation_id"] == "cid-1"


# ---------------------------------------------------------------------------
# POST /auth/refresh
# ---------------------------------------------------------------------------

class TestRefresh:
    """Tests for POST /auth/refresh."""

    def test_refresh_rotates_tokens(self, client):
        tokens = _register(client).json()

        response = client.post(
            "/auth/refresh",
            json={"access_token": tokens["access_token"], "refresh_token": tokens["refresh_token"]},
        )

        assert response.status_code == 200
        assert response.json()["refresh_token"] != tokens["refresh_token"]

    def test_reused_refresh_token_returns_401(self, client):
        tokens = _register(client).json()
        body = {"access_token": tokens["access_token"], "refresh_token": tokens["refresh_token"]}
        client.post("/auth/refresh", json=body)

        response = client.post("/auth/refresh", json=body)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_bad_access_token_returns_401(self, client):
        tokens = _register(client).json()

        response = client.post(
            "/auth/refresh",
            json={"access_token": "bad", "refresh_token": tokens["refresh_token"]},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid access token"

    def test_unknown_rotation_outcome_returns_503(self, client, app):
        tokens = _register(client).json()
        app.state.sessions.refresh_tokens.rotate = AsyncMock(
            return_value=Err(ErrorKind.ROTATION_OUTCOME_UNKNOWN, "timed out")
        )

        response = client.post(
            "/auth/refresh",
            json={"access_token": tokens["access_token"], "refresh_token": tokens["refresh_token"]},
        )

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"


# ---------------------------------------------------------------------------
# POST /auth/revoke
# ---------------------------------------------------------------------------

class TestRevoke:
    """Tests for POST /auth/revoke."""

    def test_revoke_twice_returns_200(self, client):
        tokens = _register(client).json()

        first = client.post("/auth/revoke", json={"refresh_token": tokens["refresh_token"]})
        second = client.post("/auth/revoke", json={"refresh_token": tokens["refresh_token"]})

        assert first.status_code == second.status_code == 200
        assert second.json() == {"message": "Token revoked successfully"}

    @pytest.mark.parametrize("value", ["", "not-a-token"])
    def test_unknown_or_empty_token_returns_200(self, client, value):
        response = client.post("/auth/revoke", json={"refresh_token": value})

        assert response.status_code == 200
        assert response.json() == {"message": "Token revoked successfully"}

    def test_revoked_token_cannot_refresh(self, client):
        tokens = _register(client).json()
        client.post("/auth/revoke", json={"refresh_token": tokens["refresh_token"]})

        response = client.post(
            "/auth/refresh",
            json={"access_token": tokens["access_token"], "refresh_token": tokens["refresh_token"]},
        )

        assert response.status_code == 401


# ---------------------------------------------------------------------------
# GET /auth/me
# ---------------------------------------------------------------------------

class TestMe:
    """Tests for GET /auth/me."""

    def test_returns_account(self, client):
        tokens = _register(client).json()

        response = client.get("/auth/me", headers=_bearer(tokens["access_token"]))

        assert response.status_code == 200
        assert response.json()["email"] == "ada@x.com"
        assert response.json()["id"] == tokens["user"]["id"]

    def test_missing_token_returns_401(self, client):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing bearer token"

    def test_invalid_token_returns_401(self, client):
        response = client.get("/auth/me", headers=_bearer("garbage"))

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid access token"


# ---------------------------------------------------------------------------
# Correlation ids and health
# ---------------------------------------------------------------------------

class TestCorrelationId:
    """Tests for the correlation id middleware."""

    def test_generated_when_absent(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Correlation-Id"]) == 36

    def test_inbound_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-Id": "abc.123-x"})
        assert response.headers["X-Correlation-Id"] == "abc.123-x"

    @pytest.mark.parametrize("inbound", ["has space", "x" * 65, "inj\\ected"])
    def test_malformed_inbound_id_replaced(self, client, inbound):
        response = client.get("/health", headers={"X-Correlation-Id": inbound})
        assert response.headers["X-Correlation-Id"] != inbound

    def test_error_body_quotes_request_id(self, client):
        response = client.get("/auth/me", headers={"X-Correlation-Id": "trace-7"})
        assert response.json()["correlation_id"] == "trace-7"
        assert response.headers["X-Correlation-Id"] == "trace-7"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestStatusMapping:
    def test_every_error_kind_has_a_status(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)
        assert all(isinstance(code, int) for code in STATUS_BY_KIND.values())

    def test_business_rule_violation_is_422(self):
        assert STATUS_BY_KIND[ErrorKind.BUSINESS_RULE_VIOLATION] == 422
