"""
Shared validation functions for Pydantic schemas.

These are also called directly by the reconciliation engine, which validates
user input before applying any optimistic change.
"""
from urllib.parse import urlparse

from core.categories import is_known_category
from core.config import get_settings


def validate_url(url: str | None) -> str:
    """
    Validate that a URL is a syntactically valid absolute URL.

    Args:
        url: The URL to validate.

    Returns:
        The URL with surrounding whitespace removed.

    Raises:
        ValueError: If the URL is empty, relative, or missing a host.
    """
    if url is None or not url.strip():
        raise ValueError("URL is required")
    trimmed = url.strip()
    if any(ch.isspace() for ch in trimmed):
        raise ValueError(f"URL is not a valid URL: '{trimmed}'")
    try:
        parsed = urlparse(trimmed)
        # Accessing .port raises ValueError for malformed ports (e.g. 'http://a:x')
        _ = parsed.port
    except ValueError as e:
        raise ValueError(f"URL is not a valid URL: '{trimmed}'") from e
    if not parsed.scheme or not parsed.netloc or not parsed.hostname:
        raise ValueError(f"URL is not a valid URL: '{trimmed}'")
    return trimmed


def normalize_url(url: str) -> str:
    """
    Normalize a URL for duplicate detection.

    Comparison stays case-sensitive; only surrounding whitespace and a bare
    root slash ("https://a.com/" -> "https://a.com") are removed.
    """
    trimmed = url.strip()
    parsed = urlparse(trimmed)
    if parsed.path == "/" and not parsed.query and not parsed.fragment:
        return trimmed[:-1]
    return trimmed


def validate_title(title: str | None) -> str:
    """Validate that a title is non-empty and within the length limit."""
    if title is None or not title.strip():
        raise ValueError("Title cannot be empty")
    trimmed = title.strip()
    settings = get_settings()
    if len(trimmed) > settings.max_title_length:
        raise ValueError(
            f"Title exceeds maximum length of {settings.max_title_length:,} characters "
            f"(got {len(trimmed):,} characters).",
        )
    return trimmed


def validate_category(category: str) -> str:
    """Validate that a user-chosen category is one of the fixed categories."""
    if not is_known_category(category):
        raise ValueError(f"Unknown category: '{category}'")
    return category


def validate_and_normalize_tags(tags: list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """
    Normalize a list of tags.

    Args:
        tags: Tag strings to normalize.

    Returns:
        Tuple of normalized tags (lowercase, trimmed), with empty strings filtered out
        and duplicates removed (preserving first occurrence order).

    Raises:
        ValueError: If a tag is not a string.
    """
    if not tags:
        return ()
    normalized: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        if not isinstance(tag, str):
            raise ValueError(f"Tags must be strings (got {type(tag).__name__})")
        trimmed = tag.lower().strip()
        if not trimmed:
            continue  # Skip empty tags silently
        if trimmed not in seen:
            seen.add(trimmed)
            normalized.append(trimmed)
    return tuple(normalized)
