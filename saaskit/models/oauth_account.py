"""OAuth account model.

Links a provider identity (Google "sub", GitHub user id) to a local user.
The first OAuth sign-in creates the user and this link; later sign-ins
resolve the user through it.
"""

import uuid

from saaskit.extensions import db


class OAuthAccount(db.Model):
    __tablename__ = "oauth_accounts"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    provider = db.Column(db.String(50), nullable=False)  # google | github
    provider_account_id = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "provider", "provider_account_id", name="uq_oauth_provider_account"
        ),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="oauth_accounts")

    def __repr__(self):
        return f"<OAuthAccount {self.provider}:{self.provider_account_id}>"
