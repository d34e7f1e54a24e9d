"""
Shared-secret authentication.

Flow:
  1. Check the X-API-Key format (length, charset)
  2. Compare against CLIENT_API_KEY in constant time
  3. Raise AuthenticationError (401) on any failure

There is one secret for every caller and the public UI embeds it, so it
is confidential rather than secret. Abuse protection comes from the rate
limiter and the edge network in front of the proxy.

Security:
  • Raw keys are NEVER logged or echoed — only ***<last 4>
  • An empty CLIENT_API_KEY rejects every request
"""

from __future__ import annotations

import logging

from app.auth.errors import AuthenticationError
from app.auth.hashing import keys_match
from app.core.errors import mask_credential
from app.services.validators import validate_credential_format

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class Authenticator:
    """Validates the caller's credential against one configured secret."""

    def __init__(self, secret: str) -> None:
        self._secret = secret
        if not secret:
            logger.warning("CLIENT_API_KEY is empty — every request will be rejected with 401")

    def authenticate(self, credential: str | None) -> None:
        """
        Raises:
            AuthenticationError: Missing, malformed or non-matching credential.
        """
        details = {"providedKey": mask_credential(credential)}

        check = validate_credential_format(credential)
        if not check:
            raise AuthenticationError(check.error, details=details)

        if not self._secret or not keys_match(credential, self._secret):  # type: ignore[arg-type]
            logger.info("Rejected credential %s", details["providedKey"])
            raise AuthenticationError("Invalid API key", details=details)
