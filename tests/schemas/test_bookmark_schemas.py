"""Tests for bookmark, feed and classification schemas and their validators."""
import pytest
from pydantic import ValidationError

from schemas.bookmark import Bookmark, BookmarkImportItem
from schemas.classification import CategorizeRequest, ClassifierSuggestion
from schemas.feed import FeedEvent, FeedEventKind
from schemas.validators import (
    normalize_url,
    validate_and_normalize_tags,
    validate_category,
    validate_title,
    validate_url,
)


class TestValidateUrl:
    """Tests for absolute URL validation."""

    @pytest.mark.parametrize(
        "url",
        ["https://example.com", "http://localhost:8080/x?y=1", "  https://a.com/path  ", "ftp://files.example"],
    )
    def test_valid_urls(self, url: str) -> None:
        """Absolute URLs are accepted and trimmed."""
        assert validate_url(url) == url.strip()

    @pytest.mark.parametrize(
        "url",
        ["", "   ", None, "not-a-url", "example.com", "/relative", "https://", "https://a .com", "http://a.com:port"],
    )
    def test_invalid_urls(self, url: str | None) -> None:
        """Empty, relative, host-less and malformed URLs are rejected."""
        with pytest.raises(ValueError):
            validate_url(url)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://a.com/", "https://a.com"),
        (" https://a.com ", "https://a.com"),
        ("https://a.com/path/", "https://a.com/path/"),
        ("https://a.com/?q=1", "https://a.com/?q=1"),
        ("https://A.com", "https://A.com"),
    ],
)
def test__normalize_url(url: str, expected: str) -> None:
    assert normalize_url(url) == expected


def test__validate_title__strips_and_limits_length() -> None:
    assert validate_title("  Hello  ") == "Hello"
    with pytest.raises(ValueError, match="cannot be empty"):
        validate_title("   ")
    with pytest.raises(ValueError, match="exceeds maximum length"):
        validate_title("x" * 501)


def test__validate_category__is_strict() -> None:
    assert validate_category("Design") == "Design"
    with pytest.raises(ValueError, match="Unknown category"):
        validate_category("design")


def test__validate_and_normalize_tags() -> None:
    assert validate_and_normalize_tags([" Python ", "python", "", "ML"]) == ("python", "ml")
    assert validate_and_normalize_tags(None) == ()
    with pytest.raises(ValueError, match="Tags must be strings"):
        validate_and_normalize_tags(["ok", 3])


class TestBookmark:
    """Tests for the stored bookmark schema."""

    def test_store_row_with_nulls_and_aliases(self) -> None:
        """Rows from the store tolerate nulls and snake/camel aliases."""
        bookmark = Bookmark.model_validate({
            "id": 7,
            "user_id": "owner-1",
            "url": "https://a.com",
            "title": "",
            "category": None,
            "tags": None,
            "ai_summary": "  ",
            "is_favorite": None,
            "isPinned": True,
            "click_count": None,
            "created_at": "2025-01-01T00:00:00+00:00",
        })

        assert bookmark.id == "7"
        assert bookmark.owner_id == "owner-1"
        assert bookmark.title == "https://a.com"
        assert bookmark.category == "Other"
        assert bookmark.tags == ()
        assert bookmark.summary is None
        assert bookmark.is_favorite is False
        assert bookmark.is_pinned is True
        assert bookmark.click_count == 0

    def test_is_frozen(self) -> None:
        """Bookmarks are immutable; updates go through model_copy."""
        bookmark = Bookmark(id="1", owner_id="o", url="https://a.com", title="A")
        with pytest.raises(ValidationError):
            bookmark.title = "B"
        assert bookmark.model_copy(update={"title": "B"}).title == "B"

    def test_negative_click_count_rejected(self) -> None:
        """Click counts cannot be negative."""
        with pytest.raises(ValidationError):
            Bookmark(id="1", owner_id="o", url="https://a.com", title="A", click_count=-1)

    def test_invalid_url_rejected(self) -> None:
        """Stored bookmarks must have absolute URLs."""
        with pytest.raises(ValidationError):
            BookmarkImportItem(url="nope")


class TestFeedEvent:
    """Tests for change-feed event parsing."""

    def test_kind_shape(self) -> None:
        """Insert events carry the bookmark and derive its id."""
        event = FeedEvent.from_payload({
            "kind": "insert",
            "bookmark": {"id": "1", "owner_id": "o", "url": "https://a.com"},
        })
        assert event.kind is FeedEventKind.INSERT
        assert event.bookmark_id == "1"

    def test_realtime_shape(self) -> None:
        """Realtime UPDATE/DELETE payloads map onto feed events."""
        update = FeedEvent.from_payload({
            "eventType": "UPDATE",
            "new": {"id": "1", "user_id": "o", "url": "https://a.com", "title": "A"},
            "old": {"id": "1"},
        })
        delete = FeedEvent.from_payload({"eventType": "DELETE", "new": {}, "old": {"id": 5}})

        assert update.kind is FeedEventKind.UPDATE
        assert update.bookmark.title == "A"
        assert delete.kind is FeedEventKind.DELETE
        assert delete.bookmark_id == "5"
        assert delete.bookmark is None

    def test_update_without_bookmark_rejected(self) -> None:
        """Insert and update events need the full bookmark."""
        with pytest.raises(ValidationError, match="requires a bookmark"):
            FeedEvent.from_payload({"kind": "update", "bookmark_id": "1"})

    def test_mismatched_ids_rejected(self) -> None:
        """bookmark_id must agree with the bookmark."""
        with pytest.raises(ValidationError, match="does not match"):
            FeedEvent.from_payload({
                "kind": "insert",
                "bookmark_id": "2",
                "bookmark": {"id": "1", "owner_id": "o", "url": "https://a.com"},
            })

    def test_unknown_kind_rejected(self) -> None:
        """Unknown kinds are invalid."""
        with pytest.raises(ValidationError):
            FeedEvent.from_payload({"kind": "truncate", "bookmark_id": "1"})


class TestClassifierSuggestion:
    """Tests for classifier suggestions."""

    def test_normalizes_category_tags_and_blanks(self) -> None:
        """Unknown categories become Other, tags are capped at four, blanks are None."""
        suggestion = ClassifierSuggestion.model_validate({
            "category": "science",
            "tags": ["A", "b", "c", "d", "e"],
            "summary": "",
            "suggestedTitle": "  Title ",
            "pageTitle": "",
        })

        assert suggestion.category == "Science"
        assert suggestion.tags == ("a", "b", "c", "d")
        assert suggestion.summary is None
        assert suggestion.suggested_title == "Title"
        assert suggestion.page_title is None

    def test_serializes_camel_case(self) -> None:
        """Responses use camelCase keys for title fields."""
        data = ClassifierSuggestion(suggested_title="T").model_dump(by_alias=True)
        assert data["suggestedTitle"] == "T"
        assert "pageTitle" in data

    def test_categorize_request_requires_url(self) -> None:
        """A url is required; userTitle is optional."""
        assert CategorizeRequest.model_validate({"url": "https://a.com", "userTitle": "A"}).user_title == "A"
        with pytest.raises(ValidationError):
            CategorizeRequest.model_validate({"userTitle": "A"})
