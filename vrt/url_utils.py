"""Swap the origin of scenario URLs between environments."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


def replace_domain(url: str, new_domain: str | None) -> str:
    """Replace the scheme and host of ``url``, keeping path, query and fragment.

    ``replace_domain("https://local.site/page?a=1#top", "https://prod.site/")``
    returns ``"https://prod.site/page?a=1#top"``. A blank domain returns the
    URL unchanged.
    """
    if not new_domain or not new_domain.strip():
        return url

    try:
        parsed = urlsplit(url)
    except ValueError:
        logger.warning("Could not parse URL %r, using original", url)
        return url
    if not parsed.scheme or not parsed.netloc:
        logger.warning("Could not parse URL %r, using original", url)
        return url

    domain = new_domain.strip().rstrip("/")
    path = parsed.path or "/"
    query = f"?{parsed.query}" if parsed.query else ""
    fragment = f"#{parsed.fragment}" if parsed.fragment else ""
    return f"{domain}{path}{query}{fragment}"


def is_http_url(value: str) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    try:
        parsed = urlsplit(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
