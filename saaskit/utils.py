"""Small helpers shared by services and blueprints."""

from flask import current_app


def absolute_url(path):
    """Absolute URL for a path on the public site (redirect targets handed to Stripe)."""
    base = current_app.config["APP_BASE_URL"].rstrip("/")
    return f"{base}{path}"


def get_json_body(request):
    """Request JSON as a dict; anything else (missing, malformed, a list) -> {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
