"""Auth-specific errors."""

from app.core.errors import ProxyError


class AuthenticationError(ProxyError):
    """Raised when the X-API-Key credential is missing, malformed or wrong.

    details only ever carry the masked credential.
    """

    status_code = 401
    default_message = "Invalid or missing API key"
