"""Deterministic categorization fallbacks and title resolution."""
from core.categories import guess_category
from schemas.classification import ClassifierSuggestion
from services.utils import extract_domain


def domain_fallback(
    url: str,
    page_title: str | None = None,
    user_title: str | None = None,
) -> ClassifierSuggestion:
    """
    Categorize a URL from its domain alone.

    Used whenever the LLM (server side) or the classifier call (client side)
    is unavailable. Never fails.

    Args:
        url: The bookmark URL.
        page_title: Title scraped from the page, if any.
        user_title: Title the user typed, if any.

    Returns:
        Suggestion with a guessed category, the site name as the only tag, and
        a generic summary.
    """
    domain = extract_domain(url)
    site = domain.split(".")[0] if domain else ""
    return ClassifierSuggestion(
        category=guess_category(domain),
        tags=[site] if site else [],
        summary=f"Bookmarked from {domain}" if domain else None,
        suggested_title=page_title or user_title or domain or None,
        page_title=page_title,
    )


def resolve_title(
    user_title: str | None,
    suggestion: ClassifierSuggestion | None,
    url: str,
) -> str:
    """Pick the bookmark title: user title, then suggested title, then page title, then URL."""
    candidates = [user_title]
    if suggestion is not None:
        candidates.extend([suggestion.suggested_title, suggestion.page_title])
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return url
