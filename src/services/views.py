"""
Read-only projections over a bookmark collection snapshot.

Pure functions: no side effects and no caching. They are cheap enough to be
recomputed on every collection change.
"""
import unicodedata
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Literal

from core.categories import DEFAULT_CATEGORY
from schemas.bookmark import Bookmark

SortKey = Literal["newest", "oldest", "title-az", "title-za", "most-visited", "least-visited"]

FILTER_ALL = "all"
FILTER_FAVOURITES = "favourites"

SORT_OPTIONS: dict[str, str] = {
    "newest": "Newest first",
    "oldest": "Oldest first",
    "title-az": "Title A → Z",
    "title-za": "Title Z → A",
    "most-visited": "Most visited",
    "least-visited": "Least visited",
}


def _matches_query(bookmark: Bookmark, query: str) -> bool:
    fields = [bookmark.title, bookmark.url, bookmark.category, bookmark.summary or ""]
    if any(query in field.lower() for field in fields):
        return True
    return any(query in tag.lower() for tag in bookmark.tags)


def filter_bookmarks(
    bookmarks: Iterable[Bookmark],
    filter_key: str = FILTER_ALL,
    tag_filter: str | None = None,
    search_query: str | None = None,
) -> list[Bookmark]:
    """
    Filter bookmarks by tab, tag, and search query (all conditions AND-ed).

    Args:
        bookmarks: Collection snapshot.
        filter_key: "all", "favourites", or a literal category name.
        tag_filter: Exact tag the bookmark must carry, or None.
        search_query:
            Case-insensitive substring matched against title, url, category,
            summary, and tags (any field may match). Blank queries match all.

    Returns:
        Matching bookmarks in their original order.
    """
    result = list(bookmarks)

    if filter_key == FILTER_FAVOURITES:
        result = [b for b in result if b.is_favorite]
    elif filter_key != FILTER_ALL:
        result = [b for b in result if (b.category or DEFAULT_CATEGORY) == filter_key]

    if tag_filter:
        result = [b for b in result if tag_filter in b.tags]

    if search_query and search_query.strip():
        query = search_query.strip().lower()
        result = [b for b in result if _matches_query(b, query)]

    return result


def _title_key(bookmark: Bookmark) -> tuple[str, str]:
    # Case- and accent-insensitive primary key, raw title as tie-break
    folded = unicodedata.normalize("NFKD", bookmark.title).casefold()
    base = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return (base, bookmark.title)


def sort_bookmarks(bookmarks: Iterable[Bookmark], sort_key: SortKey | str) -> list[Bookmark]:
    """
    Sort bookmarks, then move pinned bookmarks to the front.

    The pinned pass is a stable partition rather than a comparator tie-break,
    so the primary order is preserved within the pinned and unpinned groups.

    Raises:
        ValueError: If sort_key is not one of SORT_OPTIONS.
    """
    items = list(bookmarks)
    match sort_key:
        case "newest":
            items.sort(key=lambda b: b.created_at, reverse=True)
        case "oldest":
            items.sort(key=lambda b: b.created_at)
        case "title-az":
            items.sort(key=_title_key)
        case "title-za":
            items.sort(key=_title_key, reverse=True)
        case "most-visited":
            items.sort(key=lambda b: b.click_count, reverse=True)
        case "least-visited":
            items.sort(key=lambda b: b.click_count)
        case _:
            raise ValueError(f"Unknown sort key: '{sort_key}'")

    pinned = [b for b in items if b.is_pinned]
    unpinned = [b for b in items if not b.is_pinned]
    return pinned + unpinned


def _counts_descending(counter: Counter[str]) -> list[tuple[str, int]]:
    # Counter preserves first-seen order; sorted() is stable, so ties keep it
    return sorted(counter.items(), key=lambda item: item[1], reverse=True)


def compute_categories(bookmarks: Iterable[Bookmark]) -> list[tuple[str, int]]:
    """Count bookmarks per category, most common first."""
    return _counts_descending(Counter(b.category or DEFAULT_CATEGORY for b in bookmarks))


def compute_tags(bookmarks: Iterable[Bookmark]) -> list[tuple[str, int]]:
    """Count bookmarks per tag, most common first."""
    return _counts_descending(Counter(tag for b in bookmarks for tag in b.tags))


def count_favorites(bookmarks: Sequence[Bookmark]) -> int:
    """Number of favourite bookmarks."""
    return sum(1 for b in bookmarks if b.is_favorite)
