"""
Credential hashing utilities.

Security notes:
  • Credentials are compared as SHA-256 digests with hmac.compare_digest,
    so the comparison time does not depend on how many leading
    characters match.
  • generate_client_key() output satisfies the credential format
    enforced by validators.validate_credential_format
    (10–100 chars of [A-Za-z0-9_-]).
"""

import hashlib
import hmac
import secrets


_KEY_PREFIX = "pk_live_"


def hash_api_key(raw_key: str) -> str:
    """
    Hash a raw API key using SHA-256.

    Returns the hex digest string.
    """
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def keys_match(provided: str, expected: str) -> bool:
    """Constant-time equality check of two credentials."""
    return hmac.compare_digest(hash_api_key(provided), hash_api_key(expected))


def generate_client_key() -> str:
    """Generate a new shared client credential (72 chars)."""
    random_part = secrets.token_hex(32)  # 64 hex chars = 256 bits
    return f"{_KEY_PREFIX}{random_part}"
