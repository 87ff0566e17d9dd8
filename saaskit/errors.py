"""Error taxonomy.

Every error raised by a service carries a user-facing message and the
HTTP status the API answers with. create_app() registers one handler that
renders them as {"error": message}.
"""


class SaaSKitError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class InvalidInput(SaaSKitError):
    """Malformed email/password or missing fields."""

    status_code = 400


class MissingParameter(InvalidInput):
    """A required request parameter was not supplied."""


class InvalidCredentials(SaaSKitError):
    """Email/password pair did not match an account."""

    status_code = 401


class Unauthenticated(SaaSKitError):
    """No valid session on a route that needs one."""

    status_code = 401


class NotFound(SaaSKitError):
    status_code = 404


class DuplicateAccount(SaaSKitError):
    status_code = 409


class MissingSignature(SaaSKitError):
    status_code = 400


class InvalidSignature(SaaSKitError):
    status_code = 400


class NotConfigured(SaaSKitError):
    """Operator error: a required secret is absent."""

    status_code = 500


class UpstreamError(SaaSKitError):
    """A Stripe API call failed."""

    status_code = 500
