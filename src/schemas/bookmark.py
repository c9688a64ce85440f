"""Pydantic schemas for bookmarks held by the sync engine and exchanged with the store."""
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from core.categories import DEFAULT_CATEGORY, normalize_category
from schemas.validators import validate_and_normalize_tags, validate_url


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _default_title_to_url(data: Any) -> Any:
    """Rows and import items with no title fall back to their URL."""
    if isinstance(data, dict):
        title = data.get("title")
        if not (isinstance(title, str) and title.strip()) and isinstance(data.get("url"), str):
            data = {**data, "title": data["url"]}
    return data


class _BookmarkFields(BaseModel):
    """Fields shared by stored bookmarks and import items."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    url: str
    category: str = DEFAULT_CATEGORY
    tags: tuple[str, ...] = ()
    summary: str | None = Field(
        default=None,
        validation_alias=AliasChoices("summary", "ai_summary", "aiSummary"),
    )
    is_favorite: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_favorite", "isFavorite"),
    )
    is_pinned: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_pinned", "isPinned"),
    )
    click_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("click_count", "clickCount"),
    )

    @model_validator(mode="before")
    @classmethod
    def default_title(cls, data: Any) -> Any:
        """Use the URL as title when none is given."""
        return _default_title_to_url(data)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        """Validate URL is absolute."""
        return validate_url(v)

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        """Strip title whitespace."""
        return v.strip()

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: str | None) -> str:
        """Map missing or unknown categories to Other."""
        return normalize_category(v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> tuple[str, ...]:
        """Normalize tags."""
        return validate_and_normalize_tags(v)

    @field_validator("summary", mode="before")
    @classmethod
    def empty_summary_is_none(cls, v: str | None) -> str | None:
        """Treat blank summaries as missing."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("is_favorite", "is_pinned", mode="before")
    @classmethod
    def null_flag_is_false(cls, v: bool | None) -> bool:
        """Null flags from the store read as False."""
        return False if v is None else v

    @field_validator("click_count", mode="before")
    @classmethod
    def null_count_is_zero(cls, v: int | None) -> int:
        """Null counts from the store read as 0."""
        return 0 if v is None else v


class Bookmark(_BookmarkFields):
    """
    A bookmark owned by a single user.

    Immutable: the engine replaces bookmarks with updated copies (``model_copy``)
    so snapshots held for rollback and undo can never be mutated in place.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    id: str
    owner_id: str = Field(validation_alias=AliasChoices("owner_id", "user_id", "ownerId"))
    created_at: datetime = Field(
        default_factory=_utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )


class BookmarkImportItem(_BookmarkFields):
    """A bookmark parsed from an import file (no id or owner yet)."""

    created_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )


class BookmarkDraft(BaseModel):
    """Fields sent to the store when creating a single bookmark."""

    title: str
    url: str
    category: str = DEFAULT_CATEGORY
    tags: tuple[str, ...] = ()
    summary: str | None = None

