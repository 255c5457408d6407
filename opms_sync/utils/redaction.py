"""Secret redaction for sync logs and persisted error messages.

Webhook headers, ERP responses and exception text can carry bearer tokens
or RESTlet credentials. Everything written to the sync log tables or
returned in an error payload passes through here first.
"""

import re
from typing import Any

# Substring patterns matched case-insensitively against dict keys
_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "password",
    "credential", "consumer_key", "signature",
})

# Keys whose entire value is redacted regardless of content type
_CONTAINER_KEYS = frozenset({"credentials", "headers"})

REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower().replace("-", "_")
    return any(pattern in key_lower for pattern in _SENSITIVE_PATTERNS)


def redact_sensitive(data: Any, _depth: int = 0) -> Any:
    """Recursively redact sensitive values from a data structure.

    Args:
        data: Dict, list or scalar to redact (not mutated).
        _depth: Internal recursion depth counter.

    Returns:
        A copy of the data with sensitive values replaced.
    """
    if _depth > 10:
        return REDACTED
    if isinstance(data, list):
        return [redact_sensitive(item, _depth + 1) for item in data]
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_str = str(key)
            if key_str.lower() in _CONTAINER_KEYS or _is_sensitive_key(key_str):
                result[key] = REDACTED
            else:
                result[key] = redact_sensitive(value, _depth + 1)
        return result
    return data


_SENSITIVE_KEYWORDS = (
    r"secret|token|password|api_key|authorization|credential|consumer_key"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Authorization: Bearer <token>
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    # "key": "value"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    # key=value
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 2000) -> str | None:
    """Sanitize an error message for safe DB persistence.

    Redacts sensitive-looking key=value pairs and truncates to max_length.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
