"""
Portable JSON import/export of a bookmark collection.

Export always writes the wrapped document::

    {"app": "LinkNest", "exportedAt": "...", "count": N, "bookmarks": [...]}

Import accepts that document or a bare array of ``{title, url, ...}`` objects.
Ids and owner ids are never exported so a file can be imported into any account.
"""
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from schemas.bookmark import Bookmark, BookmarkImportItem

EXPORT_APP_NAME = "LinkNest"


@dataclass
class ParsedImport:
    """Valid items from an import file plus human-readable per-item errors."""

    bookmarks: list[BookmarkImportItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def parse_import_data(raw: Any) -> ParsedImport:
    """
    Validate already-decoded import data.

    Args:
        raw: Either a list of bookmark objects or a dict with a "bookmarks" list.

    Returns:
        ParsedImport. Items without a string url are reported, not raised.
    """
    items = raw if isinstance(raw, list) else (raw.get("bookmarks") if isinstance(raw, dict) else None)
    if not isinstance(items, list) or not items:
        return ParsedImport(
            errors=["No bookmarks found. Expected a JSON array or { bookmarks: [...] }."],
        )

    result = ParsedImport()
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            result.errors.append(f"Item {position}: expected an object.")
            continue
        url = item.get("url")
        if not url or not isinstance(url, str):
            result.errors.append(f'Item {position}: missing or invalid "url".')
            continue
        try:
            result.bookmarks.append(BookmarkImportItem.model_validate(item))
        except PydanticValidationError as e:
            first = e.errors()[0]
            result.errors.append(f"Item {position}: {first['msg']}.")
    return result


def parse_import_file(text: str) -> ParsedImport:
    """Parse and validate the contents of an import file."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError:
        return ParsedImport(errors=["Invalid JSON file."])
    return parse_import_data(raw)


def _export_item(bookmark: Bookmark) -> dict[str, Any]:
    return {
        "title": bookmark.title,
        "url": bookmark.url,
        "category": bookmark.category,
        "tags": list(bookmark.tags),
        "ai_summary": bookmark.summary,
        "is_favorite": bookmark.is_favorite,
        "is_pinned": bookmark.is_pinned,
        "click_count": bookmark.click_count,
        "created_at": bookmark.created_at.isoformat(),
    }


def export_bookmarks(bookmarks: Sequence[Bookmark], now: datetime | None = None) -> dict[str, Any]:
    """Build the export document for a collection (ids and owner stripped)."""
    now = now or datetime.now(UTC)
    return {
        "app": EXPORT_APP_NAME,
        "exportedAt": now.isoformat(),
        "count": len(bookmarks),
        "bookmarks": [_export_item(b) for b in bookmarks],
    }


def export_bookmarks_json(bookmarks: Sequence[Bookmark], now: datetime | None = None) -> str:
    """Serialize the export document as indented JSON."""
    return json.dumps(export_bookmarks(bookmarks, now), indent=2, ensure_ascii=False)


def export_filename(now: datetime | None = None) -> str:
    """Default download filename, e.g. ``linknest-bookmarks-2025-01-31.json``."""
    now = now or datetime.now(UTC)
    return f"linknest-bookmarks-{now.date().isoformat()}.json"
