"""Billing service: account store writes and entitlement logic.

Responsible for:
- The plan catalog (free / pro / enterprise) and price ID -> plan mapping
- Claiming a Stripe customer ID for a user exactly once (compare-and-set)
- Applying subscription snapshots from webhook events as single
  conditional UPDATEs, guarded against out-of-order delivery
- Building the billing summary read by the dashboard
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, true
from sqlalchemy.exc import IntegrityError

from saaskit.extensions import db
from saaskit.models.user import User

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Plan catalog
# ──────────────────────────────────────────────

PLANS = {
    "free": {
        "name": "Free",
        "description": "Perfect for trying out the platform",
        "price": 0,
        "price_config_key": None,  # No Stripe price for free tier
        "features": [
            "Up to 3 projects",
            "Basic analytics",
            "Community support",
        ],
    },
    "pro": {
        "name": "Pro",
        "description": "For professionals and growing teams",
        "price": 1900,  # $19.00 in cents
        "price_config_key": "STRIPE_PRO_PRICE_ID",
        "features": [
            "Unlimited projects",
            "Advanced analytics",
            "Priority support",
            "Custom domains",
            "API access",
        ],
    },
    "enterprise": {
        "name": "Enterprise",
        "description": "For large organizations",
        "price": 4900,  # $49.00 in cents
        "price_config_key": "STRIPE_ENTERPRISE_PRICE_ID",
        "features": [
            "Everything in Pro",
            "Dedicated support",
            "SLA guarantee",
            "Custom integrations",
            "Audit logs",
            "SSO/SAML",
        ],
    },
}

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}


def format_price(price_in_cents, currency="USD"):
    """Format an amount in cents for display, e.g. 4999 -> "$49.99"."""
    amount = f"{price_in_cents / 100:,.2f}"
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol:
        return f"{symbol}{amount}"
    return f"{amount} {currency.upper()}"


def get_price_id(plan_key, app_config):
    """Stripe price ID configured for a plan ("" for free or unset)."""
    config_key = PLANS[plan_key]["price_config_key"]
    if not config_key:
        return ""
    return app_config.get(config_key) or ""


def get_plan_key(price_id, app_config):
    """Map a Stripe price ID to a plan key; unknown or empty -> "free"."""
    if not price_id:
        return "free"
    for key in PLANS:
        if get_price_id(key, app_config) == price_id:
            return key
    return "free"


def current_plan_key(user, app_config):
    """The plan the user is entitled to right now.

    An expired or missing period end means free tier, whatever price is on file.
    """
    if not user.is_subscribed:
        return "free"
    return get_plan_key(user.stripe_price_id, app_config)


def list_plans(app_config, current_key=None):
    """The catalog as JSON-ready dicts, in display order."""
    plans = []
    for key, plan in PLANS.items():
        plans.append({
            "key": key,
            "name": plan["name"],
            "description": plan["description"],
            "price": plan["price"],
            "priceDisplay": "Free" if plan["price"] == 0 else format_price(plan["price"]),
            "priceId": get_price_id(key, app_config),
            "features": list(plan["features"]),
            "current": key == current_key,
        })
    return plans


def billing_summary(user, app_config):
    """Plan / entitlement state for the dashboard billing page."""
    plan_key = current_plan_key(user, app_config)
    period_end = user.period_end
    return {
        "plan": plan_key,
        "isSubscribed": user.is_subscribed,
        "periodEnd": period_end.isoformat() if period_end else None,
        "hasBillingAccount": user.stripe_customer_id is not None,
        "plans": list_plans(app_config, current_key=plan_key),
    }


# ──────────────────────────────────────────────
# Customer ID (set once)
# ──────────────────────────────────────────────

def claim_stripe_customer_id(user_id, stripe_customer_id):
    """Store a Stripe customer ID on the user unless one is already set.

    Single compare-and-set UPDATE; commits. Returns the customer ID now on
    file, which is the caller's ID only if it won the write.
    """
    try:
        updated = (
            User.query
            .filter(User.id == user_id, User.stripe_customer_id.is_(None))
            .update(
                {User.stripe_customer_id: stripe_customer_id},
                synchronize_session=False,
            )
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        updated = 0

    if updated:
        return stripe_customer_id

    # Lost the race (or the ID was already set): re-read what's stored.
    db.session.expire_all()
    user = db.session.get(User, user_id)
    return user.stripe_customer_id if user else None


# ──────────────────────────────────────────────
# Subscription snapshots (webhook writes)
# ──────────────────────────────────────────────

def _ordering_guard(event_created):
    """Match rows whose last applied event is not newer than this one."""
    if event_created is None:
        return true()
    return or_(
        User.stripe_event_created.is_(None),
        User.stripe_event_created <= event_created,
    )


def _stamp(values, event_created):
    if event_created is not None:
        values[User.stripe_event_created] = event_created
    return values


def period_end_from_timestamp(ts):
    """Convert Stripe's epoch seconds to an aware UTC datetime (None passes through)."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def apply_checkout_snapshot(stripe_customer_id, stripe_subscription_id,
                            stripe_price_id, current_period_end,
                            event_created=None, fallback_user_id=None):
    """Record a completed checkout on the user owning the Stripe customer.

    Falls back to the user ID carried in the checkout metadata when no user
    has this customer ID yet; that user's customer ID is then set if empty.
    Returns the number of rows updated (0 or 1). Flushes only; the caller
    owns the commit.
    """
    if not stripe_customer_id:
        return 0

    values = _stamp({
        User.stripe_subscription_id: stripe_subscription_id,
        User.stripe_price_id: stripe_price_id,
        User.stripe_current_period_end: current_period_end,
    }, event_created)

    updated = (
        User.query
        .filter(
            User.stripe_customer_id == stripe_customer_id,
            _ordering_guard(event_created),
        )
        .update(values, synchronize_session=False)
    )

    if not updated and fallback_user_id:
        values[User.stripe_customer_id] = stripe_customer_id
        updated = (
            User.query
            .filter(
                User.id == fallback_user_id,
                or_(
                    User.stripe_customer_id.is_(None),
                    User.stripe_customer_id == stripe_customer_id,
                ),
                _ordering_guard(event_created),
            )
            .update(values, synchronize_session=False)
        )

    db.session.flush()
    return updated


def apply_subscription_update(stripe_subscription_id, stripe_price_id,
                              current_period_end, event_created=None):
    """Refresh price and period end on the user holding this subscription."""
    if not stripe_subscription_id:
        return 0

    values = _stamp({
        User.stripe_price_id: stripe_price_id,
        User.stripe_current_period_end: current_period_end,
    }, event_created)

    updated = (
        User.query
        .filter(
            User.stripe_subscription_id == stripe_subscription_id,
            _ordering_guard(event_created),
        )
        .update(values, synchronize_session=False)
    )
    db.session.flush()
    return updated


def clear_subscription(stripe_subscription_id, event_created=None):
    """Revoke entitlement: null the subscription, price and period end."""
    if not stripe_subscription_id:
        return 0

    values = _stamp({
        User.stripe_subscription_id: None,
        User.stripe_price_id: None,
        User.stripe_current_period_end: None,
    }, event_created)

    updated = (
        User.query
        .filter(
            User.stripe_subscription_id == stripe_subscription_id,
            _ordering_guard(event_created),
        )
        .update(values, synchronize_session=False)
    )
    db.session.flush()
    return updated
