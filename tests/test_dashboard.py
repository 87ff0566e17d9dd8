"""Tests for the dashboard blueprint, entitlement derivation and app-wide behaviour.

Covers:
- Dashboard routes require a session (401 JSON, no redirect)
- Plan / isSubscribed derived from the stored period end
- Billing summary and plan catalog
- Profile read and update (email is read-only)
- Security headers and JSON error bodies
"""

from datetime import datetime, timedelta, timezone

import pytest

from saaskit.services.billing_service import format_price, get_plan_key


def _future(days=10):
    return datetime.now(timezone.utc) + timedelta(days=days)


class TestDashboard:
    """Tests for GET /api/dashboard and /api/dashboard/billing."""

    def test_requires_login(self, client):
        resp = client.get("/api/dashboard")
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Authentication required"}

    def test_free_user(self, client, user, login):
        login()
        data = client.get("/api/dashboard").get_json()
        assert data["plan"] == "free"
        assert data["isSubscribed"] is False
        assert data["user"]["email"] == "jane@example.com"
        assert data["user"]["hasPassword"] is True
        assert "password_hash" not in data["user"]

    def test_active_subscriber(self, client, make_user, login):
        make_user(
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            stripe_price_id="price_enterprise_test",
            stripe_current_period_end=_future(),
        )
        login()
        data = client.get("/api/dashboard").get_json()
        assert data["plan"] == "enterprise"
        assert data["isSubscribed"] is True

    def test_lapsed_period_is_free(self, client, make_user, login):
        make_user(
            stripe_customer_id="cus_2",
            stripe_subscription_id="sub_2",
            stripe_price_id="price_pro_test",
            stripe_current_period_end=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        login()
        data = client.get("/api/dashboard").get_json()
        assert data["plan"] == "free"
        assert data["isSubscribed"] is False

    def test_billing_summary(self, client, make_user, login):
        period_end = _future(days=5).replace(microsecond=0)
        make_user(
            stripe_customer_id="cus_3",
            stripe_subscription_id="sub_3",
            stripe_price_id="price_pro_test",
            stripe_current_period_end=period_end,
        )
        login()
        data = client.get("/api/dashboard/billing").get_json()
        assert data["plan"] == "pro"
        assert data["isSubscribed"] is True
        assert data["hasBillingAccount"] is True
        assert datetime.fromisoformat(data["periodEnd"]) == period_end

        plans = {p["key"]: p for p in data["plans"]}
        assert list(plans) == ["free", "pro", "enterprise"]
        assert plans["pro"]["current"] is True
        assert plans["pro"]["priceId"] == "price_pro_test"
        assert plans["pro"]["priceDisplay"] == "$19.00"
        assert plans["free"]["priceId"] == ""

    def test_billing_summary_no_account(self, client, user, login):
        login()
        data = client.get("/api/dashboard/billing").get_json()
        assert data["plan"] == "free"
        assert data["periodEnd"] is None
        assert data["hasBillingAccount"] is False


class TestProfile:
    """Tests for GET/PATCH /api/user."""

    def test_get_profile(self, client, user, login):
        login()
        data = client.get("/api/user").get_json()
        assert data["user"] == {
            "id": user.id,
            "email": "jane@example.com",
            "name": "Jane Doe",
            "image": None,
            "hasPassword": True,
        }

    def test_update_name(self, client, user, login, db_session):
        login()
        resp = client.patch("/api/user", json={"name": "  Jane Q. Doe  "})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["name"] == "Jane Q. Doe"

        db_session.refresh(user)
        assert user.name == "Jane Q. Doe"

    def test_same_email_is_accepted(self, client, user, login):
        login()
        resp = client.patch("/api/user", json={"email": "JANE@example.com", "name": "J"})
        assert resp.status_code == 200

    def test_email_change_rejected(self, client, user, login, db_session):
        login()
        resp = client.patch("/api/user", json={"email": "new@example.com", "name": "X"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Email cannot be changed. Contact support if needed."

        db_session.refresh(user)
        assert user.email == "jane@example.com"
        assert user.name == "Jane Doe"

    def test_patch_requires_login(self, client):
        resp = client.patch("/api/user", json={"name": "Nobody"})
        assert resp.status_code == 401


class TestPlans:

    @pytest.mark.parametrize("cents,currency,expected", [
        (1900, "USD", "$19.00"),
        (4999, "usd", "$49.99"),
        (123456, "EUR", "€1,234.56"),
        (500, "CHF", "5.00 CHF"),
    ])
    def test_format_price(self, cents, currency, expected):
        assert format_price(cents, currency) == expected

    def test_plan_key_lookup(self, app):
        assert get_plan_key("price_pro_test", app.config) == "pro"
        assert get_plan_key("price_enterprise_test", app.config) == "enterprise"
        assert get_plan_key("price_retired", app.config) == "free"
        assert get_plan_key(None, app.config) == "free"


class TestAppBehaviour:

    def test_security_headers(self, client):
        resp = client.get("/api/auth/session")
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"
        assert resp.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Not found"}

    def test_wrong_method_is_json_405(self, client):
        resp = client.get("/api/stripe/webhook")
        assert resp.status_code == 405
        assert resp.get_json() == {"error": "Method not allowed"}
