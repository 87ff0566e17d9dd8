"""Shared test fixtures for the saaskit test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- make_user / user: credential accounts, optionally with billing fields
- login: signs a test client in through /api/auth/login
- stripe_signature: Stripe-Signature header value for a raw payload
- post_webhook: posts an event to /api/stripe/webhook with a real
  Stripe-Signature header computed from the test webhook secret
"""

import hashlib
import hmac
import json
import time

import pytest
from werkzeug.security import generate_password_hash

from saaskit import create_app
from saaskit.extensions import db as _db
from saaskit.models.user import User

PASSWORD = "Passw0rdOK"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def make_user(db_session):
    """Factory for committed users. password=None makes an OAuth-only account."""

    def _make_user(email="jane@example.com", password=PASSWORD, **fields):
        user = User(
            email=email,
            password_hash=generate_password_hash(password) if password else None,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def user(make_user):
    return make_user(name="Jane Doe")


@pytest.fixture
def login(client):
    def _login(email="jane@example.com", password=PASSWORD):
        resp = client.post(
            "/api/auth/login",
            json={"email": email, "password": password},
        )
        assert resp.status_code == 200, resp.get_json()
        return resp

    return _login


def sign_payload(payload, secret, timestamp=None):
    """Build a Stripe-Signature header value (t=..., v1=HMAC-SHA256)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def stripe_signature(app):
    """Signs a raw payload with the configured webhook secret."""

    def _sign(payload, timestamp=None):
        return sign_payload(payload, app.config["STRIPE_WEBHOOK_SECRET"], timestamp)

    return _sign


@pytest.fixture
def post_webhook(client, stripe_signature):
    """POST a webhook event, signed with the configured secret unless headers are given."""

    def _post(event, headers=None, timestamp=None):
        payload = event if isinstance(event, str) else json.dumps(event)
        if headers is None:
            headers = {"Stripe-Signature": stripe_signature(payload, timestamp)}
        return client.post(
            "/api/stripe/webhook",
            data=payload,
            content_type="application/json",
            headers=headers,
        )

    return _post
