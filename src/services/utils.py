"""Utility functions for service layer operations."""
from urllib.parse import quote, urlparse

FAVICON_SERVICE_URL = "https://www.google.com/s2/favicons"


def extract_domain(url: str) -> str:
    """
    Extract the hostname of a URL without a leading "www.".

    Returns an empty string for URLs that cannot be parsed.
    """
    try:
        hostname = urlparse(url.strip()).hostname
    except ValueError:
        return ""
    if not hostname:
        return ""
    return hostname.removeprefix("www.")


def get_favicon_url(url: str, size: int = 32) -> str | None:
    """Build a favicon URL for a bookmark, or None if the URL has no host."""
    try:
        hostname = urlparse(url.strip()).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return f"{FAVICON_SERVICE_URL}?domain={quote(hostname)}&sz={size}"
