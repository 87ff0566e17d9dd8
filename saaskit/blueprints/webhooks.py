"""Webhooks blueprint: /api/stripe/webhook

Receives Stripe webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from saaskit.services.stripe_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/stripe")


@webhooks_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
       (NotConfigured -> 500, missing/invalid signature -> 400)
    3. Pass to handle_webhook_event (idempotent via stripe_events table)
    4. Return 200 {received: true} to acknowledge receipt, or 500 so
       Stripe redelivers after a processing failure

    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    event = verify_webhook_signature(payload, sig_header)

    # --- Process event (idempotent) ---
    success, message = handle_webhook_event(event)

    if success:
        logger.info(f"Webhook {event.get('id')} ({event['type']}): {message}")
        return jsonify({"received": True}), 200
    else:
        logger.error(f"Webhook processing failed: {message}")
        return jsonify({"error": "Webhook handler failed"}), 500
