"""
Input sanitization utilities for API payloads.
Provides functions to clean and validate string and URL inputs.
"""

import re
from typing import Optional
from urllib.parse import urlsplit

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
_ALLOWED_SCHEMES = {"http", "https"}


def sanitize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    # Remove leading/trailing whitespace and dangerous characters
    value = value.strip()
    # Remove control characters
    value = _CONTROL_CHARS.sub("", value)
    # Escape HTML
    value = value.replace("<", "&lt;").replace(">", "&gt;")
    return value


def sanitize_text(value: Optional[str], max_length: int = 255) -> str:
    """Sanitize a free-text field such as a file name; never returns ``None``."""
    cleaned = sanitize_string(value) or ""
    return cleaned[:max_length]


def sanitize_url(value: Optional[str]) -> str:
    """Return a cleaned http(s) URL, or ``""`` when ``value`` is not one.

    Callers treat the empty string as "invalid URL".
    """
    if not value:
        return ""
    candidate = _CONTROL_CHARS.sub("", value.strip())
    if any(ch in candidate for ch in ('"', "'", "<", ">", " ")):
        return ""
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return ""
    if parts.scheme.lower() not in _ALLOWED_SCHEMES or not parts.netloc:
        return ""
    return candidate
