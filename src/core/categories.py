"""Bookmark categories and the domain lookup used for deterministic categorization."""

DEFAULT_CATEGORY = "Other"

CATEGORIES: tuple[str, ...] = (
    "Development",
    "Design",
    "News",
    "Social Media",
    "Video",
    "Music",
    "Shopping",
    "Finance",
    "Education",
    "Health",
    "Travel",
    "Food",
    "Sports",
    "Gaming",
    "Productivity",
    "Reference",
    "Entertainment",
    "Business",
    "Science",
    DEFAULT_CATEGORY,
)

# Well-known sites, keyed by hostname without a leading "www."
DOMAIN_MAP: dict[str, str] = {
    "github.com": "Development",
    "gitlab.com": "Development",
    "stackoverflow.com": "Development",
    "developer.mozilla.org": "Development",
    "npmjs.com": "Development",
    "pypi.org": "Development",
    "dev.to": "Development",
    "figma.com": "Design",
    "dribbble.com": "Design",
    "behance.net": "Design",
    "medium.com": "News",
    "news.ycombinator.com": "News",
    "bbc.com": "News",
    "nytimes.com": "News",
    "theguardian.com": "News",
    "twitter.com": "Social Media",
    "x.com": "Social Media",
    "instagram.com": "Social Media",
    "facebook.com": "Social Media",
    "reddit.com": "Social Media",
    "linkedin.com": "Social Media",
    "youtube.com": "Video",
    "vimeo.com": "Video",
    "spotify.com": "Music",
    "soundcloud.com": "Music",
    "amazon.com": "Shopping",
    "ebay.com": "Shopping",
    "etsy.com": "Shopping",
    "coinbase.com": "Finance",
    "bloomberg.com": "Finance",
    "coursera.org": "Education",
    "udemy.com": "Education",
    "khanacademy.org": "Education",
    "booking.com": "Travel",
    "airbnb.com": "Travel",
    "allrecipes.com": "Food",
    "espn.com": "Sports",
    "store.steampowered.com": "Gaming",
    "twitch.tv": "Entertainment",
    "netflix.com": "Entertainment",
    "imdb.com": "Entertainment",
    "notion.so": "Productivity",
    "chatgpt.com": "Productivity",
    "chat.openai.com": "Productivity",
    "google.com": "Productivity",
    "trello.com": "Productivity",
    "wikipedia.org": "Reference",
    "arxiv.org": "Science",
    "nature.com": "Science",
}


def is_known_category(value: str | None) -> bool:
    """Check whether a value is one of the fixed categories."""
    return value in CATEGORIES


def normalize_category(value: str | None) -> str:
    """Coerce a stored or suggested category into the fixed set (unknown -> Other)."""
    if value is None:
        return DEFAULT_CATEGORY
    stripped = value.strip()
    if stripped in CATEGORIES:
        return stripped
    # Case-insensitive match for classifier output like "social media"
    for category in CATEGORIES:
        if category.lower() == stripped.lower():
            return category
    return DEFAULT_CATEGORY


def guess_category(domain: str) -> str:
    """
    Guess a category for a bare domain.

    Exact match first, then suffix match (subdomains), then a match on the
    site's name label (e.g. "youtube" for "m.youtube.co.uk").
    """
    if not domain:
        return DEFAULT_CATEGORY
    domain = domain.lower()
    if domain in DOMAIN_MAP:
        return DOMAIN_MAP[domain]
    for known, category in DOMAIN_MAP.items():
        if domain.endswith("." + known):
            return category
    labels = domain.split(".")
    for known, category in DOMAIN_MAP.items():
        # Short names like "x" or "bbc" are too ambiguous to match on their own
        name = known.split(".")[-2]
        if len(name) >= 4 and name in labels:
            return category
    return DEFAULT_CATEGORY
