"""Integration tests for complete session flows over HTTP.

Runs the real application (in-memory backend) end to end: registration,
login, refresh rotation with replay detection, logout, and OAuth sign-in.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from session_auth.main import create_app
from session_auth.services.oauth_service import OAuthService

ADA = {
    "name": "Ada",
    "email": "ada@x.com",
    "age": 30,
    "password": "Str0ng!Pass",
    "confirm_password": "Str0ng!Pass",
}


def _refresh(client, tokens):
    return client.post(
        "/auth/refresh",
        json={"access_token": tokens["access_token"], "refresh_token": tokens["refresh_token"]},
    )


class TestPasswordSessionLifecycle:
    """Register, login, refresh and revoke as one user would."""

    def test_register_then_login(self, client):
        registered = client.post("/auth/register", json=ADA)
        assert registered.status_code == 201
        assert registered.json()["access_token"]
        assert registered.json()["refresh_token"]

        good = client.post("/auth/login", json={"email": "ada@x.com", "password": "Str0ng!Pass"})
        bad = client.post("/auth/login", json={"email": "ada@x.com", "password": "wrong"})

        assert good.status_code == 200
        assert good.json()["user"]["id"] == registered.json()["user"]["id"]
        assert bad.status_code == 401
        assert bad.json()["error"] == "invalid_credentials"

    def test_register_same_email_twice_conflicts(self, client):
        assert client.post("/auth/register", json=ADA).status_code == 201
        second = client.post("/auth/register", json=ADA)

        assert second.status_code == 409
        assert second.json()["detail"] == "User with email ada@x.com already exists"

    def test_refresh_chain_and_replay(self, client):
        session = client.post("/auth/register", json=ADA).json()

        rotated = _refresh(client, session)
        assert rotated.status_code == 200
        rotated_again = _refresh(client, rotated.json())
        assert rotated_again.status_code == 200

        # The first token was already exchanged: replaying it fails and
        # invalidates everything descended from it.
        replay = _refresh(client, session)
        assert replay.status_code == 401
        assert _refresh(client, rotated_again.json()).status_code == 401

        # A fresh login still works.
        login = client.post("/auth/login", json={"email": "ada@x.com", "password": "Str0ng!Pass"})
        assert _refresh(client, login.json()).status_code == 200

    def test_sessions_are_independent(self, client):
        first = client.post("/auth/register", json=ADA).json()
        second = client.post(
            "/auth/login", json={"email": "ada@x.com", "password": "Str0ng!Pass"}
        ).json()

        client.post("/auth/revoke", json={"refresh_token": first["refresh_token"]})

        assert _refresh(client, first).status_code == 401
        assert _refresh(client, second).status_code == 200

    def test_logout_is_idempotent(self, client):
        session = client.post("/auth/register", json=ADA).json()

        for _ in range(2):
            response = client.post("/auth/revoke", json={"refresh_token": session["refresh_token"]})
            assert response.status_code == 200

        assert _refresh(client, session).status_code == 401

    def test_access_token_resolves_current_user(self, client):
        session = client.post("/auth/register", json=ADA).json()

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {session['access_token']}"})

        assert me.status_code == 200
        assert me.json() == session["user"]


class TestOAuthSignIn:
    """OAuth sign-in through a mocked provider."""

    @pytest.fixture
    def oauth_client(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"access_token": "provider-token"})
            return httpx.Response(200, json={"email": "bob@x.com", "login": "bob", "name": "Bob"})

        app = create_app(settings)
        with TestClient(app) as tc:
            app.state.oauth = OAuthService(settings, transport=httpx.MockTransport(handler))
            yield tc

    def _sign_in(self, client):
        state = client.get("/oauth/github/authorize").json()["state"]
        return client.get("/oauth/github/callback", params={"code": "code", "state": state})

    def test_first_sign_in_provisions_then_reuses_account(self, oauth_client):
        first = self._sign_in(oauth_client)
        second = self._sign_in(oauth_client)

        assert first.status_code == second.status_code == 200
        assert first.json()["user"]["email"] == "bob@x.com"
        assert first.json()["user"]["id"] == second.json()["user"]["id"]

    def test_oauth_session_refreshes(self, oauth_client):
        session = self._sign_in(oauth_client).json()
        assert _refresh(oauth_client, session).status_code == 200

    def test_oauth_account_has_no_usable_password(self, oauth_client):
        self._sign_in(oauth_client)
        response = oauth_client.post("/auth/login", json={"email": "bob@x.com", "password": "x"})
        assert response.status_code == 401
