"""Input sanitization for notification content.

Titles, messages and payload data reach email clients and browser
notifications, so everything user-supplied passes through here first.
HTML is cleaned with bleach against an allow-list; addresses are validated
with email-validator.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Any
from urllib.parse import urlparse

import bleach
from email_validator import EmailNotValidError
from email_validator import validate_email as validate_email_address

logger = logging.getLogger(__name__)

__all__ = [
    "sanitize_email",
    "sanitize_email_html",
    "sanitize_html",
    "sanitize_json",
    "sanitize_notification_content",
    "sanitize_text",
    "sanitize_url",
    "truncate_text",
    "validate_length",
]

ALLOWED_TAGS = frozenset(
    {
        "p",
        "br",
        "b",
        "i",
        "u",
        "strong",
        "em",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "ul",
        "ol",
        "li",
        "a",
        "div",
        "span",
    }
)
ALLOWED_ATTRIBUTES = {"*": ["class", "id"], "a": ["href", "title"]}
ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto"})

# Layout tags email templates rely on
EMAIL_TAGS = ALLOWED_TAGS | {"table", "thead", "tbody", "tr", "td", "th", "img", "hr", "blockquote"}

_ZERO_WIDTH = re.compile(r"[\u200b-\u200d\ufeff]")
# Removed together with their content
_CONTENT_BLOCKS = re.compile(r"<(script|style|iframe|form)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TRAILING_ENTITY = re.compile(r"&[^;\s]{0,6}\.\.\.$")


def sanitize_html(value: str | None) -> str:
    """Strip scripts, event handlers and unsafe URLs, keeping basic formatting.

    Example:
        >>> sanitize_html('<p onclick="x()">Hi<script>alert(1)</script></p>')
        '<p>Hi</p>'
    """
    if not value:
        return ""
    return bleach.clean(
        _CONTENT_BLOCKS.sub("", value),
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )


def _email_attribute(tag: str, name: str, value: str) -> bool:
    if name in ("class", "id", "title", "alt", "width", "height", "align"):
        return True
    if name in ("href", "src"):
        # Relative links break in mail clients
        scheme = urlparse(value.strip()).scheme.lower()
        if tag == "a" and scheme == "mailto":
            return True
        return scheme in ("http", "https")
    return False


def sanitize_email_html(value: str | None) -> str:
    """Sanitize an HTML email body.

    Allows table layout and images, and keeps only absolute http(s) links
    and image sources.
    """
    if not value:
        return ""
    return bleach.clean(
        _CONTENT_BLOCKS.sub("", value),
        tags=EMAIL_TAGS,
        attributes=_email_attribute,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )


def sanitize_text(value: str | None) -> str:
    """Reduce ``value`` to plain text: no tags, no zero-width characters, single spaces."""
    if not value:
        return ""
    text = html.unescape(bleach.clean(_CONTENT_BLOCKS.sub("", value), tags=set(), strip=True, strip_comments=True))
    text = _ZERO_WIDTH.sub("", text)
    return " ".join(text.split())


def sanitize_email(value: str | None) -> str:
    """Normalize an address (trim, lowercase) or return ``""`` when invalid."""
    if not value:
        return ""
    candidate = value.strip().lower()
    try:
        result = validate_email_address(candidate, check_deliverability=False)
    except EmailNotValidError:
        logger.warning("Invalid email address rejected", extra={"email_prefix": candidate[:20]})
        return ""
    return result.normalized.lower()


def sanitize_url(value: str | None) -> str:
    """Return the trimmed URL if it is absolute http(s), else ``""``."""
    if not value:
        return ""
    url = value.strip()
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        logger.warning("Unsafe URL rejected", extra={"url_prefix": url[:50]})
        return ""
    return url


def sanitize_json(data: Any) -> Any:
    """Recursively sanitize strings (keys included) inside JSON-like data."""
    if isinstance(data, str):
        return sanitize_text(data)
    if isinstance(data, list | tuple):
        return [sanitize_json(item) for item in data]
    if isinstance(data, dict):
        return {sanitize_text(str(key)): sanitize_json(item) for key, item in data.items()}
    return data


def sanitize_notification_content(
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> tuple[str, str, dict[str, Any] | None]:
    """Sanitize the user-visible parts of a notification."""
    return (
        sanitize_text(title),
        sanitize_text(message),
        sanitize_json(data) if data is not None else None,
    )


def validate_length(value: str | None, max_length: int) -> bool:
    if not value:
        return True
    if len(value) > max_length:
        logger.warning("Input exceeds maximum length", extra={"length": len(value), "max_length": max_length})
        return False
    return True


def truncate_text(value: str, max_length: int) -> str:
    """Cut ``value`` to ``max_length`` characters, ending in an ellipsis.

    A partially cut HTML entity at the end is dropped.
    """
    if not value or len(value) <= max_length:
        return value
    truncated = value[: max(max_length - 3, 0)] + "..."
    return _TRAILING_ENTITY.sub("...", truncated)
