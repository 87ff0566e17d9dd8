"""Auth blueprint: /api/auth/*

Credential registration and login, session introspection, logout, and
OAuth sign-in (Google / GitHub) through Authlib. A provider is only
registered when its client ID and secret are configured.
"""

import logging
from urllib.parse import urlencode

from flask import Blueprint, current_app, jsonify, redirect, request, url_for
from flask_login import current_user, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from saaskit.config import oauth_providers
from saaskit.errors import DuplicateAccount, InvalidInput, NotFound, SaaSKitError
from saaskit.extensions import limiter, oauth
from saaskit.services import auth_service

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

PROVIDER_LABELS = {"google": "Google", "github": "GitHub"}


def register_oauth_providers(app):
    """Register the configured OAuth clients on the shared Authlib registry."""
    enabled = oauth_providers(app.config)

    if "google" in enabled:
        oauth.register(
            name="google",
            client_id=app.config["GOOGLE_CLIENT_ID"],
            client_secret=app.config["GOOGLE_CLIENT_SECRET"],
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )

    if "github" in enabled:
        oauth.register(
            name="github",
            client_id=app.config["GITHUB_CLIENT_ID"],
            client_secret=app.config["GITHUB_CLIENT_SECRET"],
            access_token_url="https://github.com/login/oauth/access_token",
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )

    if enabled:
        logger.info(f"OAuth providers enabled: {', '.join(enabled)}")


def _session_user(user):
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
    }


# ──────────────────────────────────────────────
# POST /api/auth/register
# ──────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    """Email/password registration.

    Body: {email, password, name?}
    201 {user: {id, email, name}} | 400 | 409
    OAuth users are created on first sign-in instead.
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InvalidInput("Email and password are required")

    try:
        user = auth_service.register_user(
            email=body.get("email"),
            password=body.get("password"),
            name=body.get("name"),
        )
    except SaaSKitError:
        raise
    except Exception as e:
        logger.error(f"Registration error: {e}", exc_info=True)
        return jsonify({"error": "An error occurred during registration"}), 500

    return jsonify({"user": user.to_public_dict()}), 201


# ──────────────────────────────────────────────
# POST /api/auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Email/password login. Issues the session cookie on success."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InvalidInput("Email and password are required")

    user = auth_service.verify_credentials(body.get("email"), body.get("password"))
    login_user(user, remember=bool(body.get("remember")))

    return jsonify({"user": _session_user(user)})


# ──────────────────────────────────────────────
# POST /api/auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"success": True})


# ──────────────────────────────────────────────
# GET /api/auth/session, /csrf, /providers
# ──────────────────────────────────────────────

@auth_bp.route("/session")
def session():
    """Current session: {user} when signed in, {} otherwise."""
    if not current_user.is_authenticated:
        return jsonify({})
    return jsonify({"user": _session_user(current_user)})


@auth_bp.route("/csrf")
def csrf_token():
    """CSRF token for the session.

    Every POST/PATCH outside /api/stripe/webhook must send it as X-CSRFToken.
    A missing or stale token is rejected with 400 before the view runs, so an
    anonymous request without one never reaches the 401 check.
    """
    return jsonify({"csrfToken": generate_csrf()})


@auth_bp.route("/providers")
def providers():
    """Sign-in methods available on this deployment."""
    available = [{"id": "credentials", "name": "Email"}]
    for provider in oauth_providers(current_app.config):
        available.append({
            "id": provider,
            "name": PROVIDER_LABELS[provider],
            "signinUrl": url_for("auth.oauth_signin", provider=provider),
        })
    return jsonify({"providers": available})


# ──────────────────────────────────────────────
# GET /api/auth/signin/<provider>
# GET /api/auth/callback/<provider>
# ──────────────────────────────────────────────

def _get_client(provider):
    if provider not in oauth_providers(current_app.config):
        raise NotFound("Unknown sign-in provider")
    client = oauth.create_client(provider)
    if client is None:
        raise NotFound("Unknown sign-in provider")
    return client


def _fetch_profile(provider, client):
    """Exchange the callback code and return the provider's profile.

    Returns {provider_account_id, email, name, image}.
    """
    token = client.authorize_access_token()

    if provider == "google":
        userinfo = token.get("userinfo") or client.userinfo()
        return {
            "provider_account_id": userinfo["sub"],
            "email": userinfo.get("email") if userinfo.get("email_verified", True) else None,
            "name": userinfo.get("name"),
            "image": userinfo.get("picture"),
        }

    profile = client.get("user", token=token).json()
    email = profile.get("email")
    if not email:
        # Private GitHub emails only show up on /user/emails
        emails = client.get("user/emails", token=token).json()
        primary = [
            e for e in emails
            if isinstance(e, dict) and e.get("primary") and e.get("verified")
        ]
        email = primary[0]["email"] if primary else None
    return {
        "provider_account_id": profile["id"],
        "email": email,
        "name": profile.get("name") or profile.get("login"),
        "image": profile.get("avatar_url"),
    }


def _login_page(error):
    base = current_app.config["APP_BASE_URL"].rstrip("/")
    return redirect(f"{base}/login?{urlencode({'error': error})}")


@auth_bp.route("/signin/<provider>")
def oauth_signin(provider):
    client = _get_client(provider)
    redirect_uri = url_for("auth.oauth_callback", provider=provider, _external=True)
    return client.authorize_redirect(redirect_uri)


@auth_bp.route("/callback/<provider>")
def oauth_callback(provider):
    """Finish an OAuth sign-in, creating the account on first use."""
    client = _get_client(provider)

    try:
        profile = _fetch_profile(provider, client)
    except Exception as e:
        logger.warning(f"OAuth callback failed for {provider}: {e}")
        return _login_page("OAuthCallback")

    try:
        user = auth_service.link_oauth_account(
            provider=provider,
            provider_account_id=profile["provider_account_id"],
            email=profile["email"],
            name=profile["name"],
            image=profile["image"],
        )
    except SaaSKitError as e:
        logger.info(f"OAuth sign-in refused for {provider}: {e.message}")
        if isinstance(e, DuplicateAccount):
            return _login_page("OAuthAccountNotLinked")
        return _login_page("OAuthCallback")

    login_user(user)

    base = current_app.config["APP_BASE_URL"].rstrip("/")
    return redirect(f"{base}/dashboard")
