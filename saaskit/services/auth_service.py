"""Auth service: registration, credential verification, OAuth linking.

Responsible for:
- Validating registration input (email shape, password complexity)
- Creating credential accounts with a salted one-way password hash
- Verifying email/password pairs (constant-time hash comparison)
- Resolving or creating accounts for OAuth sign-ins

Errors are raised as saaskit.errors types; the blueprints turn them into
JSON responses.
"""

import logging
import re

from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from saaskit.errors import DuplicateAccount, InvalidCredentials, InvalidInput
from saaskit.extensions import db
from saaskit.models.oauth_account import OAuthAccount
from saaskit.models.user import User

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_NAME_LENGTH = 100

# Checked against when the email is unknown so both paths cost one hash.
_DUMMY_HASH = generate_password_hash("dummy-password-for-timing")


def normalize_email(email):
    return (email or "").strip().lower()


def is_valid_email(email):
    """Basic local@domain.tld structure, at most 254 characters."""
    return bool(EMAIL_RE.match(email)) and len(email) <= MAX_EMAIL_LENGTH


def password_error(password):
    """Return the first complexity rule the password breaks, or None."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return "Password must be at least 8 characters long"
    if len(password) > MAX_PASSWORD_LENGTH:
        return "Password must be less than 128 characters"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    return None


def _sanitize_name(name):
    if name is None:
        return None
    name = str(name).strip()[:MAX_NAME_LENGTH]
    return name or None


# ──────────────────────────────────────────────
# Registration
# ──────────────────────────────────────────────

def register_user(email, password, name=None):
    """Create a credential account.

    Returns the committed User.
    Raises InvalidInput on malformed input, DuplicateAccount when the
    normalized email is taken.
    """
    if not email or not password:
        raise InvalidInput("Email and password are required")

    if not isinstance(email, str) or not is_valid_email(email.strip()):
        raise InvalidInput("Please enter a valid email address")

    if not isinstance(password, str):
        raise InvalidInput("Invalid password format")

    error = password_error(password)
    if error:
        raise InvalidInput(error)

    email = normalize_email(email)

    if User.query.filter_by(email=email).first():
        raise DuplicateAccount("User with this email already exists")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        name=_sanitize_name(name),
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        db.session.rollback()
        raise DuplicateAccount("User with this email already exists")

    logger.info(f"Registered user {user.id}")
    return user


# ──────────────────────────────────────────────
# Credential verification
# ──────────────────────────────────────────────

def verify_credentials(email, password):
    """Return the User matching an email/password pair.

    Raises InvalidInput if either is missing, InvalidCredentials for an
    unknown email, an OAuth-only account, or a wrong password.
    """
    if not email or not password or not isinstance(email, str) \
            or not isinstance(password, str):
        raise InvalidInput("Email and password are required")

    user = User.query.filter_by(email=normalize_email(email)).first()

    if user is None or user.password_hash is None:
        check_password_hash(_DUMMY_HASH, password)
        raise InvalidCredentials("Invalid email or password")

    if not check_password_hash(user.password_hash, password):
        raise InvalidCredentials("Invalid email or password")

    return user


# ──────────────────────────────────────────────
# OAuth
# ──────────────────────────────────────────────

def link_oauth_account(provider, provider_account_id, email, name=None, image=None):
    """Resolve the local user for an OAuth identity, creating it on first sign-in.

    An email already registered through another sign-in method is not
    linked automatically; DuplicateAccount is raised instead.
    """
    provider_account_id = str(provider_account_id)

    link = OAuthAccount.query.filter_by(
        provider=provider,
        provider_account_id=provider_account_id,
    ).first()
    if link:
        user = link.user
        if not user.name and name:
            user.name = _sanitize_name(name)
        if not user.image and image:
            user.image = image
        db.session.commit()
        return user

    email = normalize_email(email)
    if not email:
        raise InvalidInput("OAuth provider did not return an email address")

    if User.query.filter_by(email=email).first():
        raise DuplicateAccount(
            "An account with this email already exists. "
            "Sign in with the method you used originally."
        )

    user = User(
        email=email,
        password_hash=None,
        name=_sanitize_name(name),
        image=image,
    )
    db.session.add(user)
    db.session.flush()  # get user.id

    db.session.add(OAuthAccount(
        user_id=user.id,
        provider=provider,
        provider_account_id=provider_account_id,
    ))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateAccount("An account with this email already exists.")

    logger.info(f"Created user {user.id} from {provider} sign-in")
    return user


def update_profile(user, name):
    """Update the editable profile fields (display name only)."""
    if name is not None and not isinstance(name, str):
        raise InvalidInput("Name must be a string")
    user.name = _sanitize_name(name)
    db.session.commit()
    return user
