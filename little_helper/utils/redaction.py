"""
Utilities for redacting sensitive data from logs and output.

This module provides functions to safely redact credentials and sensitive
information from strings and data structures, preventing accidental exposure
in logs, audit entries, error messages, and debugging output.
"""

from __future__ import annotations

import re
from typing import Any

# Patterns for detecting sensitive data
SENSITIVE_PATTERNS = {
    "anthropic_key": r"sk-ant-[a-zA-Z0-9_-]{8,}",
    "openai_key": r"sk-(?:proj-)?[a-zA-Z0-9_-]{20,}",
    "google_key": r"AIza[0-9A-Za-z_-]{30,}",
    "bearer": r"(?<=Bearer )[a-zA-Z0-9._~+/=-]{16,}",
    "api_key": r"(?<=api_key=)[a-zA-Z0-9_-]{20,}|(?<=api-key: )[a-zA-Z0-9_-]{20,}",
    "auth_token": r"(?<=token=)[a-zA-Z0-9_-]{20,}|(?<=token: )[a-zA-Z0-9_-]{20,}",
    "private_key": r"-----BEGIN [A-Z ]+ PRIVATE KEY-----.*?-----END [A-Z ]+ PRIVATE KEY-----",
}

_COMPILED_PATTERNS = {
    name: re.compile(pattern, flags=re.DOTALL | re.IGNORECASE)
    for name, pattern in SENSITIVE_PATTERNS.items()
}

# Keys that should always be considered sensitive (compared lower-cased)
SENSITIVE_KEYS = {
    "api_key",
    "apikey",
    "x-api-key",
    "authorization",
    "auth_token",
    "token",
    "password",
    "secret",
    "access_token",
    "refresh_token",
    "access_secret",
    "refresh_secret",
    "accesstoken",
    "refreshtoken",
    "elevation_secret",
}


def redact_sensitive_data(text: str) -> str:
    """
    Redact sensitive data from string using pattern matching.

    Args:
        text: String potentially containing sensitive data

    Returns:
        String with sensitive patterns replaced with [REDACTED_*] placeholders
    """
    result = text
    for name, pattern in _COMPILED_PATTERNS.items():
        result = pattern.sub(f"[REDACTED_{name.upper()}]", result)
    return result


def redact_dict(data: dict[str, Any]) -> dict[str, Any]:
    """
    Create a redacted copy of dictionary, hiding sensitive keys.

    String values under other keys are pattern-scrubbed, so a secret pasted
    into a command line or an error message is caught as well.

    Args:
        data: Dictionary potentially containing sensitive values

    Returns:
        New dictionary with sensitive values replaced with [REDACTED]
    """
    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(key, str) and key.lower() in SENSITIVE_KEYS and value is not None:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = redact_value(value)
    return redacted


def redact_value(value: Any) -> Any:
    """Redact any JSON-like value (dicts, lists, strings)."""
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(item) for item in value]
    if isinstance(value, str):
        return redact_sensitive_data(value)
    return value
