"""Utility functions for funnelctl."""

import re
from typing import Any

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "passwd",
        "token",
        "secret",
        "authorization",
        "auth",
        "api_key",
        "credentials",
    }
)


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or isinstance(port, bool) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def collapse_slashes(path: str) -> str:
    """Collapse runs of slashes into a single slash, keeping the ends."""
    return re.sub(r"/+", "/", path)


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 0
) -> str:
    """Mask sensitive data for logging.

    Args:
        value: Sensitive string to mask (e.g. a LocalAPI password)
        mask_char: Character to use for masking
        show_chars: Number of trailing characters to keep visible

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if show_chars <= 0 or len(value) <= show_chars:
        return mask_char * 8

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(field in lowered for field in SENSITIVE_FIELDS)


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize dictionary data for safe logging by masking sensitive fields.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Sanitized dictionary safe for logging
    """
    sanitized = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
