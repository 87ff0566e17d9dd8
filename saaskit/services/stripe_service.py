"""Stripe service: all Stripe API calls and webhook handling.

Responsible for:
- Lazily configuring the Stripe client (the app boots without a key)
- Creating Stripe Checkout Sessions (subscriptions) or, for users who
  already have a subscription on file, Customer Portal Sessions
- Verifying webhook signatures over the raw request body
- Dispatching verified events to event-specific handlers
- Idempotency via the stripe_events table
"""

import json
import logging

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from saaskit.errors import (
    InvalidInput,
    InvalidSignature,
    MissingParameter,
    MissingSignature,
    NotConfigured,
    NotFound,
    Unauthenticated,
    UpstreamError,
)
from saaskit.extensions import db
from saaskit.models.stripe_event import StripeEvent
from saaskit.models.user import User
from saaskit.services.billing_service import (
    apply_checkout_snapshot,
    apply_subscription_update,
    claim_stripe_customer_id,
    clear_subscription,
    period_end_from_timestamp,
)
from saaskit.utils import absolute_url

logger = logging.getLogger(__name__)


def get_stripe():
    """Return the stripe module configured with STRIPE_SECRET_KEY.

    Raises NotConfigured if the key is absent. Called on first use rather
    than at startup so deployments without billing still boot.
    """
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise NotConfigured("STRIPE_SECRET_KEY is not configured")
    stripe.api_key = api_key
    return stripe


def _extract_price_id(sub_data):
    """Price ID of the subscription's first line item, or None."""
    items = sub_data.get("items")
    if items and items.get("data"):
        price = items["data"][0].get("price") or {}
        return price.get("id")
    return None


def _extract_period_end(sub_data):
    """Extract current_period_end from a Stripe subscription object.

    In newer Stripe API versions, current_period_end has moved from the
    subscription top level to items.data[0].current_period_end.
    This helper checks both locations.

    Returns a timezone-aware datetime or None.
    """
    # Try top-level first (older API versions / webhook payloads)
    ts = sub_data.get("current_period_end")

    # Fall back to items.data[0].current_period_end (newer API versions)
    if not ts:
        items = sub_data.get("items")
        if items and items.get("data"):
            ts = items["data"][0].get("current_period_end")

    return period_end_from_timestamp(ts)


# ──────────────────────────────────────────────
# Checkout & Portal Sessions
# ──────────────────────────────────────────────

def _load_user(user_id):
    if not user_id:
        raise Unauthenticated("You must be logged in to subscribe")
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _ensure_customer(client, user):
    """Return the user's Stripe customer ID, creating and storing it if needed.

    The stored ID is claimed with a compare-and-set write, so two
    simultaneous first checkouts keep a single customer on file.
    """
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = client.Customer.create(
        email=user.email or None,
        name=user.name or None,
        metadata={"userId": user.id},
    )
    stored_id = claim_stripe_customer_id(user.id, customer.id)
    if stored_id != customer.id:
        logger.warning(
            f"Stripe customer {customer.id} orphaned: user {user.id} "
            f"already has customer {stored_id}"
        )
    return stored_id


def create_checkout_url(user_id, price_id):
    """Return the URL the user should be redirected to for a plan purchase.

    - No subscription on file: a new subscription-mode Checkout Session
      for price_id, tagged with the user ID in its metadata.
    - Subscription on file: a Customer Portal Session (manage flow),
      never a second subscription checkout.

    Raises Unauthenticated, NotFound, MissingParameter, NotConfigured,
    or UpstreamError when a Stripe call fails.
    """
    user = _load_user(user_id)

    if not price_id:
        raise MissingParameter("Price ID is required")

    client = get_stripe()

    try:
        stripe_customer_id = _ensure_customer(client, user)

        if user.stripe_subscription_id:
            portal_session = client.billing_portal.Session.create(
                customer=stripe_customer_id,
                return_url=absolute_url("/dashboard/settings"),
            )
            return portal_session.url

        checkout_session = client.checkout.Session.create(
            customer=stripe_customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=absolute_url("/dashboard?success=true"),
            cancel_url=absolute_url("/pricing?canceled=true"),
            metadata={"userId": user.id},
        )
        return checkout_session.url
    except stripe.StripeError as e:
        logger.error(f"Checkout error for user {user.id}: {e}", exc_info=True)
        raise UpstreamError("An error occurred creating checkout session")


def create_portal_url(user_id):
    """Create a Stripe Customer Portal Session for the user.

    Raises NotFound if the user never started a checkout (no customer ID).
    """
    user = _load_user(user_id)

    if not user.stripe_customer_id:
        raise NotFound("No billing account found")

    client = get_stripe()

    try:
        session = client.billing_portal.Session.create(
            customer=user.stripe_customer_id,
            return_url=absolute_url("/dashboard/settings"),
        )
    except stripe.StripeError as e:
        logger.error(f"Portal session error for user {user.id}: {e}", exc_info=True)
        raise UpstreamError("An error occurred creating billing portal session")

    return session.url


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header over the raw body and parse the event.

    payload must be the body exactly as received; re-serialized JSON
    does not match the signature.
    Returns the event as a plain dict.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise NotConfigured("Webhook not configured")

    if not sig_header:
        raise MissingSignature("Missing stripe-signature header")

    try:
        stripe.WebhookSignature.verify_header(
            payload, sig_header, webhook_secret,
            tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise InvalidSignature("Invalid signature")

    # Handlers take plain dicts; construct_event would return a StripeObject.
    try:
        event = json.loads(payload)
    except ValueError:
        raise InvalidInput("Invalid payload")

    if not isinstance(event, dict) or "type" not in event:
        raise InvalidInput("Invalid payload")

    return event


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: checks stripe_events table before processing.
    If the event was already processed, returns immediately.
    Unrecognized event types are acknowledged without any write.

    Returns (success: bool, message: str).
    """
    event_id = event.get("id")
    event_type = event["type"]

    # --- Idempotency check ---
    if event_id:
        existing = StripeEvent.query.filter_by(
            stripe_event_id=event_id
        ).first()
        if existing:
            logger.info(f"Duplicate webhook event {event_id}, skipping")
            return True, "already_processed"

    # --- Route to handler ---
    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "customer.subscription.updated": _handle_subscription_updated,
        "customer.subscription.deleted": _handle_subscription_deleted,
    }

    handler = handlers.get(event_type)
    if handler:
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Error handling {event_type}: {e}", exc_info=True)
            db.session.rollback()
            return False, str(e)
    else:
        logger.info(f"Unhandled event type: {event_type}")

    # --- Record event for idempotency ---
    if event_id:
        db.session.add(StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
        ))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event committed first
        db.session.rollback()
        return True, "already_processed"

    return True, "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed.

    Retrieves the full subscription from Stripe and records it on the
    user owning the session's customer (falling back to metadata.userId).
    """
    session = event["data"]["object"]
    stripe_subscription_id = session.get("subscription")
    stripe_customer_id = session.get("customer")

    if not stripe_subscription_id or not stripe_customer_id:
        logger.info("checkout.session.completed without subscription or customer, ignoring")
        return

    client = get_stripe()
    sub = client.Subscription.retrieve(stripe_subscription_id)

    stripe_price_id = _extract_price_id(sub)
    if not stripe_price_id:
        logger.warning(
            f"checkout.session.completed: subscription {stripe_subscription_id} "
            "has no line item price, dropping"
        )
        return

    metadata = session.get("metadata") or {}

    updated = apply_checkout_snapshot(
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=sub.get("id") or stripe_subscription_id,
        stripe_price_id=stripe_price_id,
        current_period_end=_extract_period_end(sub),
        event_created=event.get("created"),
        fallback_user_id=metadata.get("userId"),
    )
    if not updated:
        logger.warning(
            f"checkout.session.completed: no user for customer={stripe_customer_id} "
            f"(or event is stale), dropping"
        )


def _handle_subscription_updated(event):
    """Handle customer.subscription.updated.

    Refreshes price and period end from the event payload.
    """
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")
    if not stripe_subscription_id:
        logger.warning("subscription.updated without a subscription id, dropping")
        return

    stripe_price_id = _extract_price_id(sub_data)
    if not stripe_price_id:
        logger.warning(
            f"subscription.updated: sub={stripe_subscription_id} has no line item price, dropping"
        )
        return

    updated = apply_subscription_update(
        stripe_subscription_id=stripe_subscription_id,
        stripe_price_id=stripe_price_id,
        current_period_end=_extract_period_end(sub_data),
        event_created=event.get("created"),
    )
    if not updated:
        logger.warning(
            f"subscription.updated: no user for sub={stripe_subscription_id} "
            f"(or event is stale), dropping"
        )


def _handle_subscription_deleted(event):
    """Handle customer.subscription.deleted.

    Clears the subscription fields, which revokes entitlement.
    """
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")
    if not stripe_subscription_id:
        logger.warning("subscription.deleted without a subscription id, dropping")
        return

    updated = clear_subscription(
        stripe_subscription_id,
        event_created=event.get("created"),
    )
    if not updated:
        logger.warning(
            f"subscription.deleted: no user for sub={stripe_subscription_id} "
            f"(or event is stale), dropping"
        )
