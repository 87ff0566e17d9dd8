"""Billing blueprint: /api/stripe/*

Routes:
- POST /api/stripe/checkout  Checkout Session URL for a plan, or a
  Customer Portal URL when a subscription is already on file
- POST /api/stripe/portal    Customer Portal URL (manage subscription)

Both answer {url}; the client redirects the browser there.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from saaskit.errors import SaaSKitError, UpstreamError
from saaskit.services.stripe_service import create_checkout_url, create_portal_url
from saaskit.utils import get_json_body

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/api/stripe")


def _session_user_id():
    """The signed-in user's ID, or None (the service raises Unauthenticated)."""
    if not current_user.is_authenticated:
        return None
    return current_user.get_id()


# ──────────────────────────────────────────────
# POST /api/stripe/checkout
# ──────────────────────────────────────────────

@billing_bp.route("/checkout", methods=["POST"])
def checkout():
    """Start a subscription purchase.

    Body: {priceId}
    200 {url} | 401 | 400 | 404 | 500
    """
    user_id = _session_user_id()
    price_id = get_json_body(request).get("priceId")

    try:
        url = create_checkout_url(user_id, price_id)
    except SaaSKitError:
        raise
    except Exception as e:
        logger.error(f"Checkout error: {e}", exc_info=True)
        raise UpstreamError("An error occurred creating checkout session")

    return jsonify({"url": url})


# ──────────────────────────────────────────────
# POST /api/stripe/portal
# ──────────────────────────────────────────────

@billing_bp.route("/portal", methods=["POST"])
def customer_portal():
    """Open the Stripe Customer Portal for an existing billing account."""
    url = create_portal_url(_session_user_id())
    return jsonify({"url": url})
