"""Dashboard blueprint: /api/dashboard, /api/user

Read side of the account store for the dashboard shell:
- GET   /api/dashboard           greeting + current plan / entitlement
- GET   /api/dashboard/billing   billing page: plan, renewal date, catalog
- GET   /api/user                settings page profile
- PATCH /api/user                update display name (email is read-only)
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from saaskit.errors import InvalidInput
from saaskit.services import auth_service
from saaskit.services.billing_service import billing_summary, current_plan_key
from saaskit.utils import get_json_body

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api")


def _profile(user):
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "hasPassword": user.has_password,
    }


@dashboard_bp.route("/dashboard")
@login_required
def overview():
    return jsonify({
        "user": _profile(current_user),
        "plan": current_plan_key(current_user, current_app.config),
        "isSubscribed": current_user.is_subscribed,
    })


@dashboard_bp.route("/dashboard/billing")
@login_required
def billing():
    return jsonify(billing_summary(current_user, current_app.config))


@dashboard_bp.route("/user", methods=["GET"])
@login_required
def get_profile():
    return jsonify({"user": _profile(current_user)})


@dashboard_bp.route("/user", methods=["PATCH"])
@login_required
def update_profile():
    body = get_json_body(request)

    email = body.get("email")
    if email is not None and (
        not isinstance(email, str)
        or auth_service.normalize_email(email) != current_user.email
    ):
        raise InvalidInput("Email cannot be changed. Contact support if needed.")

    user = current_user._get_current_object()
    if "name" in body:
        user = auth_service.update_profile(user, body["name"])
    return jsonify({"user": _profile(user)})
