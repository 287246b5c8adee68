"""Output escaping helpers.

Stateless functions for putting untrusted values into HTML.
"""

import html
from collections.abc import Mapping
from urllib.parse import urlsplit


def escape(value) -> str:
    """HTML-escape *value*, quotes included."""
    return html.escape(str(value), quote=True)


def is_valid_url(url: str) -> bool:
    """Absolute URL with a scheme and a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def escape_url(url: str, default: str | None = None) -> str:
    """Escape a valid URL; otherwise fall back to *default* or an http:// prefix."""
    if is_valid_url(url):
        return escape(url)
    if default is None:
        return "http://" + escape(url)
    return escape(default)


def get_value(mapping: Mapping, key: str, default: str = "") -> str:
    """Escaped ``mapping[key]``, or the escaped default when the key is missing."""
    value = mapping.get(key)
    if value is None:
        return escape(default)
    return escape(value)


def get_attr(obj, name: str, default: str = "") -> str:
    """Escaped attribute of *obj*, or the escaped default when it is missing or None."""
    value = getattr(obj, name, None)
    if value is None:
        return escape(default)
    return escape(value)
