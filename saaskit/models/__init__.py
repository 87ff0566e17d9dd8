# Models package: import all models here so Alembic can discover them.

from saaskit.models.user import User  # noqa: F401
from saaskit.models.oauth_account import OAuthAccount  # noqa: F401
from saaskit.models.stripe_event import StripeEvent  # noqa: F401
