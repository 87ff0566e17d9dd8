import os
import logging

import click
from flask import Flask, jsonify

from saaskit.config import config_by_name, is_stripe_configured
from saaskit.errors import SaaSKitError
from saaskit.extensions import db, migrate, login_manager, csrf, limiter, oauth


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")
        if not is_stripe_configured(app.config):
            app.logger.warning(
                "Stripe is not configured; checkout and webhooks will fail until "
                "STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET are set"
            )

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    oauth.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from saaskit import models  # noqa: F401

    # --- Register blueprints ---
    from saaskit.blueprints.auth import auth_bp, register_oauth_providers
    from saaskit.blueprints.billing import billing_bp
    from saaskit.blueprints.dashboard import dashboard_bp
    from saaskit.blueprints.webhooks import webhooks_bp

    register_oauth_providers(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF; the raw body is needed for Stripe signature verification
    csrf.exempt(webhooks_bp)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render every error as {"error": message} JSON."""

    @app.errorhandler(SaaSKitError)
    def handle_app_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": getattr(e, "description", None) or "Bad request"}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests. Please try again later."}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("create-user")
    @click.option("--email", required=True, help="Account email")
    @click.option("--password", required=True, help="Account password")
    @click.option("--name", default=None, help="Display name")
    def create_user(email, password, name):
        """Create an email/password account (same rules as /api/auth/register).

        Usage:
            flask create-user --email jane@example.com --password S3cretPass
        """
        from saaskit.services.auth_service import register_user

        try:
            user = register_user(email, password, name)
        except SaaSKitError as e:
            raise click.ClickException(e.message)

        click.echo(f"Created user {user.email} (id: {user.id})")

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Check every paid plan's price ID against Stripe.

        Reports whether each configured price exists, is active, matches the
        key's mode (live/test) and charges the catalog amount.
        """
        import stripe as _stripe

        from saaskit.services.billing_service import PLANS, format_price, get_price_id

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            raise click.ClickException("STRIPE_SECRET_KEY is not set.")
        live_key = api_key.startswith("sk_live_")
        click.echo(f"Stripe key mode: {'Live' if live_key else 'Test'}\n")

        _stripe.api_key = api_key
        problems = 0

        for key, plan in PLANS.items():
            config_key = plan["price_config_key"]
            if not config_key:
                continue
            price_id = get_price_id(key, app.config)
            click.echo(f"{plan['name']} ({config_key}): {price_id or '(not set)'}")
            if not price_id:
                problems += 1
                continue

            try:
                price = _stripe.Price.retrieve(price_id)
            except _stripe.InvalidRequestError as e:
                click.echo(f"    ERROR: {e}")
                problems += 1
                continue

            amount = price.get("unit_amount")
            currency = (price.get("currency") or "usd").upper()
            click.echo(
                f"    active={price.get('active')}, livemode={price.get('livemode')}, "
                f"amount={format_price(amount, currency) if amount is not None else '?'}"
            )
            if price.get("livemode") is not live_key:
                click.echo("    WARNING: price and key are in different modes.")
                problems += 1
            if amount != plan["price"]:
                click.echo(f"    WARNING: catalog lists {format_price(plan['price'])}.")
                problems += 1

        if problems:
            raise click.ClickException(f"{problems} problem(s) found.")
        click.echo("\nAll plan prices look good.")
