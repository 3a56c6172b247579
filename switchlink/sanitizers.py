"""
Helpers that strip credentials out of strings before they reach the logs.
"""

import re
from typing import Any

SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"password[=:]\s*\S+", re.IGNORECASE), "password=***"),
    (re.compile(r"token[=:]\s*\S+", re.IGNORECASE), "token=***"),
    (re.compile(r"email[=:]\s*\S+", re.IGNORECASE), "email=***"),
    (re.compile(r"authorization[=:]\s*\S+", re.IGNORECASE), "Authorization=***"),
    (re.compile(r"bearer\s+\S+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r'"password"\s*:\s*"[^"]+"', re.IGNORECASE), '"password":"***"'),
    (re.compile(r'"token"\s*:\s*"[^"]+"', re.IGNORECASE), '"token":"***"'),
    (re.compile(r'"id"\s*:\s*"[a-zA-Z0-9]{20,}"', re.IGNORECASE), '"id":"***"'),
]

SENSITIVE_KEYS = {
    "password",
    "token",
    "authorization",
    "secret",
    "apikey",
    "api_key",
    "accesstoken",
    "access_token",
    "refreshtoken",
    "refresh_token",
}


def sanitize_string(text: str) -> str:
    """Redact anything that looks like a credential."""
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_error(error: Any) -> str:
    """Message of an exception (or any value) with credentials redacted."""
    return sanitize_string(str(error))


def sanitize_mapping(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with sensitive keys masked, recursing into dicts."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in SENSITIVE_KEYS:
            result[key] = "***"
        elif isinstance(value, dict):
            result[key] = sanitize_mapping(value)
        elif isinstance(value, str):
            result[key] = sanitize_string(value)
        else:
            result[key] = value
    return result


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix


def mask_token(token: str, visible_chars: int = 4) -> str:
    """Show only the first and last few characters of a token."""
    if len(token) <= visible_chars * 2:
        return "***"
    return f"{token[:visible_chars]}...{token[-visible_chars:]}"


def create_response_preview(body: str, max_length: int = 200) -> str:
    """Sanitized, truncated response body for debug logging."""
    return truncate(sanitize_string(body), max_length)
