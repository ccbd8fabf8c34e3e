"""Input sanitizing and token checks."""

import re
import secrets

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]")


def sanitize_string(value: str, max_length: int | None = None) -> str:
    """
    Sanitize string input:
    - Remove null bytes and control characters (newlines and tabs are kept)
    - Strip whitespace
    - Optionally limit length
    """
    if not isinstance(value, str):
        return ""

    value = CONTROL_CHARS.sub("", value)

    value = value.strip()

    if max_length is not None:
        value = value[:max_length]

    return value


def truncate(value: str, max_length: int, suffix: str = "...") -> str:
    """Shorten text for previews, keeping the result within max_length."""
    if len(value) <= max_length:
        return value
    return value[: max(0, max_length - len(suffix))].rstrip() + suffix


def verify_bearer_token(authorization: str | None, expected: str) -> bool:
    """Constant-time check of an `Authorization: Bearer <token>` header."""
    if not expected or not authorization:
        return False

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False

    return secrets.compare_digest(token.strip(), expected)
