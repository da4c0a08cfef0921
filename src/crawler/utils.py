"""Utility helpers for URL handling and credential masking.

These helpers provide safe, consistent formatting for URLs and API keys when
logging. They intentionally avoid exposing credentials in logs.
"""

from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse, urlunparse

_SLUG_SEPARATORS = re.compile(r"[-_]+")


def mask_api_key(key: str | None) -> str | None:
    """Return an API key with everything but the last four characters redacted.

    Examples:
        jina_abcdef123456 -> ***3456
        abc -> ***

    Returns None if key is None or empty.
    """
    if not key:
        return None
    if len(key) <= 4:
        return "***"
    return f"***{key[-4:]}"


def normalize_url(url: str) -> str:
    """Add a scheme when missing and strip surrounding whitespace."""
    normalized = (url or "").strip()
    if not normalized:
        return normalized
    if not normalized.startswith(("http://", "https://")):
        normalized = f"https://{normalized}"
    return normalized


def canonicalize_url(url: str) -> str:
    """Canonical absolute form used as the identity of a discovered URL.

    Lower-cases the scheme and host and drops the fragment. Path, query and
    trailing slashes are preserved because sites treat them as distinct.
    """
    normalized = normalize_url(url)
    try:
        parsed = urlparse(normalized)
    except ValueError:
        return normalized
    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            parsed.path or "/",
            parsed.params,
            parsed.query,
            "",
        )
    )


def resolve_url(base_url: str, href: str) -> str | None:
    """Resolve ``href`` against ``base_url``; None for non-http targets."""
    if not href:
        return None
    href = href.strip()
    if href.startswith(("mailto:", "tel:", "javascript:", "data:")):
        return None
    try:
        absolute = urljoin(base_url, href)
    except ValueError:
        return None
    if not absolute.startswith(("http://", "https://")):
        return None
    return absolute


def get_domain(url: str) -> str:
    """Return the lower-cased host of ``url`` without a leading ``www.``."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def site_root(url: str) -> str:
    """Return ``scheme://host`` for ``url``."""
    parsed = urlparse(normalize_url(url))
    return f"{parsed.scheme}://{parsed.netloc}"


def path_segments(url: str) -> list[str]:
    try:
        path = urlparse(url).path
    except ValueError:
        return []
    return [segment for segment in path.split("/") if segment]


def derive_title_from_slug(url: str) -> str:
    """Derive a human-readable title from the last path segment of ``url``."""
    segments = path_segments(url)
    if not segments:
        return "Blog Post"
    slug = segments[-1]
    slug = re.sub(r"\.(html?|php|aspx?)$", "", slug, flags=re.IGNORECASE)
    words = _SLUG_SEPARATORS.sub(" ", slug).strip()
    if not words:
        return "Blog Post"
    return " ".join(word[:1].upper() + word[1:] for word in words.split())
