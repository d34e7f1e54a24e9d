"""
Pure request validators.

Each check returns a ValidationResult instead of raising, so the pipeline
decides which HTTP status a failure maps to. No validator touches the
network, the store or the clock.

The dangerous-pattern scan in validate_message_text is defense in depth
only — whatever renders model output must still encode it.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlsplit

# ── Limits ──────────────────────────────────────────────────
ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"})
ALLOWED_SCHEMES = frozenset({"http", "https"})
ALLOWED_MIME_TYPES = frozenset({"application/json", "text/plain", "text/html"})
ALLOWED_TASK_TYPES = frozenset({"extraction", "priceCorrection", "costEstimation", "general"})

CREDENTIAL_MIN_LENGTH = 10
CREDENTIAL_MAX_LENGTH = 100
MAX_CONTENTS = 10
MAX_PARTS = 50
MAX_TEXT_LENGTH = 100_000
MAX_SYSTEM_INSTRUCTION_LENGTH = 10_000
TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (1, 100_000)

_CREDENTIAL_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_DANGEROUS_PATTERNS = (
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    # onclick=, onerror = … ; \b keeps words like "condition=" out
    re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE | re.ASCII),
)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a single check.

    Attributes:
        valid: True when the input passed.
        error: Human-readable reason (None when valid).
        field: Name of the offending field (None when valid).
    """

    valid: bool
    error: str | None = None
    field: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return _OK

    @classmethod
    def fail(cls, field: str, error: str) -> ValidationResult:
        return cls(valid=False, error=error, field=field)

    def __bool__(self) -> bool:
        return self.valid


_OK = ValidationResult(valid=True)


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false is not a number
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ── Envelope checks ─────────────────────────────────────────
def validate_method(method: str) -> ValidationResult:
    if not isinstance(method, str) or method.upper() not in ALLOWED_METHODS:
        return ValidationResult.fail("method", "HTTP method not allowed")
    return ValidationResult.ok()


def validate_url(raw: str) -> ValidationResult:
    """Absolute http(s) URL with a host."""
    try:
        parts = urlsplit(raw)
    except (TypeError, ValueError):
        return ValidationResult.fail("url", "Invalid URL format")
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return ValidationResult.fail("url", "URL must use the HTTP or HTTPS scheme")
    if not parts.netloc:
        return ValidationResult.fail("url", "Invalid URL format")
    return ValidationResult.ok()


def validate_headers(headers: Mapping[str, str]) -> ValidationResult:
    """If a Content-Type is present it must be application/json."""
    content_type = None
    for name, value in headers.items():
        if name.lower() == "content-type":
            content_type = value
            break
    if content_type and "application/json" not in content_type.lower():
        return ValidationResult.fail("Content-Type", "Content-Type must be application/json")
    return ValidationResult.ok()


def validate_credential_format(key: Any) -> ValidationResult:
    """Format only — equality against the secret is the Authenticator's job."""
    if not key or not isinstance(key, str):
        return ValidationResult.fail("X-API-Key", "API key is missing or has an invalid format")
    if not CREDENTIAL_MIN_LENGTH <= len(key) <= CREDENTIAL_MAX_LENGTH:
        return ValidationResult.fail("X-API-Key", "API key has an invalid length")
    if not _CREDENTIAL_RE.match(key):
        return ValidationResult.fail("X-API-Key", "API key contains invalid characters")
    return ValidationResult.ok()


def validate_client_ip(ip: Any) -> ValidationResult:
    if not ip or not isinstance(ip, str):
        return ValidationResult.fail("client_ip", "Client IP is missing")
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return ValidationResult.fail("client_ip", "Client IP has an invalid format")
    return ValidationResult.ok()


# ── Body checks ─────────────────────────────────────────────
def validate_request_structure(body: Any) -> ValidationResult:
    if not isinstance(body, dict):
        return ValidationResult.fail("body", "Request body must be a JSON object")
    contents = body.get("contents")
    if not isinstance(contents, list):
        return ValidationResult.fail("contents", 'Field "contents" must be an array')
    if not contents:
        return ValidationResult.fail("contents", 'Array "contents" must not be empty')
    if len(contents) > MAX_CONTENTS:
        return ValidationResult.fail(
            "contents", f'Too many elements in "contents" (maximum {MAX_CONTENTS})'
        )
    return ValidationResult.ok()


def validate_content(content: Any) -> ValidationResult:
    if not isinstance(content, dict):
        return ValidationResult.fail("contents[]", "Each content element must be an object")
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ValidationResult.fail("parts", 'Field "parts" must be an array')
    if not parts:
        return ValidationResult.fail("parts", 'Array "parts" must not be empty')
    if len(parts) > MAX_PARTS:
        return ValidationResult.fail("parts", f"Too many parts in a message (maximum {MAX_PARTS})")
    return ValidationResult.ok()


def validate_message_text(text: Any) -> ValidationResult:
    if text is None:
        return ValidationResult.fail("text", "Message text must not be null")
    if not isinstance(text, str):
        return ValidationResult.fail("text", "Message text must be a string")
    if not text:
        return ValidationResult.fail("text", "Message text must not be empty")
    if len(text) > MAX_TEXT_LENGTH:
        return ValidationResult.fail(
            "text", f"Message text is too long (maximum {MAX_TEXT_LENGTH} characters)"
        )
    for pattern in _DANGEROUS_PATTERNS:
        if pattern.search(text):
            return ValidationResult.fail("text", "Message text contains potentially dangerous patterns")
    return ValidationResult.ok()


def validate_generation_config(config: Any) -> ValidationResult:
    if config is None:
        return ValidationResult.ok()
    if not isinstance(config, dict):
        return ValidationResult.fail("generationConfig", "generationConfig must be an object")

    if "temperature" in config and config["temperature"] is not None:
        temperature = config["temperature"]
        if not _is_number(temperature):
            return ValidationResult.fail("temperature", "temperature must be a number")
        low, high = TEMPERATURE_RANGE
        if not low <= temperature <= high:
            return ValidationResult.fail("temperature", "temperature must be between 0 and 2")

    if "max_tokens" in config and config["max_tokens"] is not None:
        max_tokens = config["max_tokens"]
        if not _is_number(max_tokens):
            return ValidationResult.fail("max_tokens", "max_tokens must be a number")
        low, high = MAX_TOKENS_RANGE
        if not low <= max_tokens <= high:
            return ValidationResult.fail("max_tokens", "max_tokens must be between 1 and 100000")

    if "responseMimeType" in config and config["responseMimeType"] is not None:
        mime = config["responseMimeType"]
        if not isinstance(mime, str):
            return ValidationResult.fail("responseMimeType", "responseMimeType must be a string")
        if mime not in ALLOWED_MIME_TYPES:
            return ValidationResult.fail("responseMimeType", "Unsupported responseMimeType")

    return ValidationResult.ok()


def validate_system_instruction(text: Any) -> ValidationResult:
    if text is None:
        return ValidationResult.ok()
    if not isinstance(text, str):
        return ValidationResult.fail("systemInstruction", "systemInstruction must be a string")
    if len(text) > MAX_SYSTEM_INSTRUCTION_LENGTH:
        return ValidationResult.fail(
            "systemInstruction",
            f"systemInstruction is too long (maximum {MAX_SYSTEM_INSTRUCTION_LENGTH} characters)",
        )
    return ValidationResult.ok()


def validate_task_type(tag: Any) -> ValidationResult:
    """Optional explicit task tag set by the UI layer."""
    if tag is None:
        return ValidationResult.ok()
    if not isinstance(tag, str) or tag not in ALLOWED_TASK_TYPES:
        allowed = ", ".join(sorted(ALLOWED_TASK_TYPES))
        return ValidationResult.fail("taskType", f"taskType must be one of: {allowed}")
    return ValidationResult.ok()


def validate_body(body: Any) -> ValidationResult:
    """
    Run every body check in order; the first failure wins.

    Order: structure → each content block → each part's text →
    generationConfig → systemInstruction → taskType.
    """
    result = validate_request_structure(body)
    if not result:
        return result

    for content in body["contents"]:
        result = validate_content(content)
        if not result:
            return result
        for part in content["parts"]:
            if not isinstance(part, dict):
                return ValidationResult.fail("parts[]", "Each part must be an object")
            result = validate_message_text(part.get("text"))
            if not result:
                return result

    for check, key in (
        (validate_generation_config, "generationConfig"),
        (validate_system_instruction, "systemInstruction"),
        (validate_task_type, "taskType"),
    ):
        result = check(body.get(key))
        if not result:
            return result

    return ValidationResult.ok()
