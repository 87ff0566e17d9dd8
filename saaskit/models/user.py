"""User model.

One row per registered identity. Stores credentials (optional for
OAuth-only accounts), profile info, and the billing fields synced from
Stripe webhooks. Flask-Login integration via UserMixin.

Entitlement is derived from stripe_current_period_end at read time and is
never stored.
"""

import uuid
from datetime import datetime, timezone

from flask_login import UserMixin

from saaskit.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)  # null = OAuth-only
    name = db.Column(db.String(100), nullable=True)
    image = db.Column(db.String(2048), nullable=True)

    # --- Billing (written by the webhook handlers only, except the customer id) ---
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    stripe_current_period_end = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    stripe_event_created = db.Column(
        db.BigInteger, nullable=True
    )  # epoch seconds of the last applied webhook event

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    oauth_accounts = db.relationship(
        "OAuthAccount",
        back_populates="user",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def period_end(self):
        """stripe_current_period_end as an aware UTC datetime (SQLite drops tzinfo)."""
        value = self.stripe_current_period_end
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_subscribed(self):
        period_end = self.period_end
        return period_end is not None and period_end > datetime.now(timezone.utc)

    @property
    def has_password(self):
        return self.password_hash is not None

    def to_public_dict(self):
        """Sanitized projection for API responses (never includes the hash)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
        }

    def __repr__(self):
        return f"<User {self.email}>"
