"""Tests for the auth blueprint and auth service.

Covers:
- Registration validation (email shape, password rules, missing fields)
- Duplicate email rejection (case-insensitive)
- Password storage (salted hash, never the plaintext)
- Login / logout / session introspection
- OAuth account resolution and the callback route
- Provider listing and unknown providers
"""

from unittest.mock import patch

import pytest
from werkzeug.security import check_password_hash

from saaskit.errors import DuplicateAccount, InvalidCredentials, InvalidInput
from saaskit.extensions import db
from saaskit.models.oauth_account import OAuthAccount
from saaskit.models.user import User
from saaskit.services import auth_service

PASSWORD = "Passw0rdOK"  # same as conftest.PASSWORD


class TestRegistration:
    """Tests for POST /api/auth/register."""

    def test_register_success(self, client):
        resp = client.post(
            "/api/auth/register",
            json={"email": "New.User@Example.com", "password": "Str0ngPass", "name": "New User"},
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["user"]["email"] == "new.user@example.com"
        assert data["user"]["name"] == "New User"
        assert set(data["user"]) == {"id", "email", "name"}

        user = User.query.filter_by(email="new.user@example.com").first()
        assert user is not None
        assert user.stripe_customer_id is None
        assert user.is_subscribed is False

    def test_password_is_hashed(self, client):
        client.post(
            "/api/auth/register",
            json={"email": "hash@example.com", "password": "Str0ngPass"},
        )
        user = User.query.filter_by(email="hash@example.com").first()
        assert user.password_hash != "Str0ngPass"
        assert "Str0ngPass" not in user.password_hash
        assert check_password_hash(user.password_hash, "Str0ngPass")

    def test_weak_password_rejected(self, client):
        resp = client.post(
            "/api/auth/register",
            json={"email": "weak@example.com", "password": "Weak1"},
        )
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "Password must be at least 8 characters long"}
        assert User.query.count() == 0

    @pytest.mark.parametrize("password,message", [
        ("alllowercase1", "Password must contain at least one uppercase letter"),
        ("ALLUPPERCASE1", "Password must contain at least one lowercase letter"),
        ("NoDigitsHere", "Password must contain at least one number"),
        ("A1" + "a" * 127, "Password must be less than 128 characters"),
    ])
    def test_password_rules(self, client, password, message):
        resp = client.post(
            "/api/auth/register",
            json={"email": "rules@example.com", "password": password},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message

    @pytest.mark.parametrize("email", ["not-an-email", "a@b", "two words@example.com"])
    def test_invalid_email_rejected(self, client, email):
        resp = client.post(
            "/api/auth/register",
            json={"email": email, "password": "Str0ngPass"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Please enter a valid email address"

    def test_missing_fields_rejected(self, client):
        resp = client.post("/api/auth/register", json={"email": "only@example.com"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Email and password are required"

    def test_non_json_body_rejected(self, client):
        resp = client.post("/api/auth/register", data="email=x", content_type="text/plain")
        assert resp.status_code == 400

    def test_duplicate_email_different_case(self, client, user):
        resp = client.post(
            "/api/auth/register",
            json={"email": "JANE@example.com", "password": "An0therPass"},
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "User with this email already exists"
        assert User.query.count() == 1

    def test_service_register_then_verify(self, app):
        created = auth_service.register_user("svc@example.com", "Str0ngPass")
        found = auth_service.verify_credentials("SVC@example.com", "Str0ngPass")
        assert found.id == created.id

    def test_long_name_truncated(self, app):
        created = auth_service.register_user("long@example.com", "Str0ngPass", "x" * 300)
        assert len(created.name) == 100


class TestLogin:
    """Tests for login, logout and /api/auth/session."""

    def test_login_success_sets_session(self, client, user):
        resp = client.post(
            "/api/auth/login",
            json={"email": "jane@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == user.id

        session = client.get("/api/auth/session").get_json()
        assert session["user"]["email"] == "jane@example.com"

    def test_wrong_password(self, client, user):
        resp = client.post(
            "/api/auth/login",
            json={"email": "jane@example.com", "password": "WrongPass1"},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_unknown_email_same_message(self, client):
        resp = client.post(
            "/api/auth/login",
            json={"email": "nobody@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_oauth_only_account_cannot_use_password(self, client, make_user):
        make_user(email="oauth@example.com", password=None)
        resp = client.post(
            "/api/auth/login",
            json={"email": "oauth@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 401

    def test_missing_credentials(self, client):
        resp = client.post("/api/auth/login", json={"email": "jane@example.com"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Email and password are required"

    def test_logout_clears_session(self, client, user, login):
        login()
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert client.get("/api/auth/session").get_json() == {}

    def test_anonymous_session_is_empty(self, client):
        assert client.get("/api/auth/session").get_json() == {}

    def test_verify_credentials_raises(self, app, user):
        with pytest.raises(InvalidCredentials):
            auth_service.verify_credentials("jane@example.com", "WrongPass1")
        with pytest.raises(InvalidInput):
            auth_service.verify_credentials("", PASSWORD)


class TestOAuthService:
    """Tests for auth_service.link_oauth_account."""

    def test_first_sign_in_creates_user_and_link(self, app):
        user = auth_service.link_oauth_account(
            "google", "g-123", "Octo@Example.com", name="Octo", image="https://img/o.png"
        )
        assert user.email == "octo@example.com"
        assert user.password_hash is None
        link = OAuthAccount.query.filter_by(provider="google").one()
        assert link.user_id == user.id
        assert link.provider_account_id == "g-123"

    def test_second_sign_in_returns_same_user(self, app):
        first = auth_service.link_oauth_account("github", 42, "gh@example.com")
        second = auth_service.link_oauth_account("github", "42", "gh@example.com", name="Hub")
        assert first.id == second.id
        assert second.name == "Hub"
        assert User.query.count() == 1

    def test_existing_email_not_linked(self, app, user):
        with pytest.raises(DuplicateAccount):
            auth_service.link_oauth_account("google", "g-999", "jane@example.com")
        assert OAuthAccount.query.count() == 0

    def test_missing_email_rejected(self, app):
        with pytest.raises(InvalidInput):
            auth_service.link_oauth_account("github", "7", None)


class TestOAuthRoutes:
    """Tests for /api/auth/providers, /signin/<p>, /callback/<p>."""

    def test_providers_lists_configured_only(self, client):
        data = client.get("/api/auth/providers").get_json()
        ids = [p["id"] for p in data["providers"]]
        assert ids == ["credentials", "google"]
        assert data["providers"][1]["signinUrl"] == "/api/auth/signin/google"

    def test_unconfigured_provider_404(self, client):
        resp = client.get("/api/auth/signin/github")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Unknown sign-in provider"

    @patch("saaskit.blueprints.auth._fetch_profile")
    def test_callback_signs_in(self, mock_profile, client):
        mock_profile.return_value = {
            "provider_account_id": "g-555",
            "email": "callback@example.com",
            "name": "Callback User",
            "image": None,
        }
        resp = client.get("/api/auth/callback/google")
        assert resp.status_code == 302
        assert resp.headers["Location"] == "http://localhost:3000/dashboard"

        session = client.get("/api/auth/session").get_json()
        assert session["user"]["email"] == "callback@example.com"

    @patch("saaskit.blueprints.auth._fetch_profile")
    def test_callback_email_taken(self, mock_profile, client, user):
        mock_profile.return_value = {
            "provider_account_id": "g-777",
            "email": "jane@example.com",
            "name": None,
            "image": None,
        }
        resp = client.get("/api/auth/callback/google")
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/login?error=OAuthAccountNotLinked")
        assert client.get("/api/auth/session").get_json() == {}

    @patch("saaskit.blueprints.auth._fetch_profile")
    def test_callback_provider_failure(self, mock_profile, client):
        mock_profile.side_effect = RuntimeError("mismatching_state")
        resp = client.get("/api/auth/callback/google")
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/login?error=OAuthCallback")
        db.session.expire_all()
        assert User.query.count() == 0
