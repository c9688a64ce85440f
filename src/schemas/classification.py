"""Pydantic schemas for the categorization service and its client."""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from core.categories import DEFAULT_CATEGORY, normalize_category
from schemas.validators import validate_and_normalize_tags

MAX_SUGGESTED_TAGS = 4


class ClassifierSuggestion(BaseModel):
    """
    Best-effort categorization of a URL.

    Serialized with camelCase keys (``suggestedTitle``, ``pageTitle``) to match
    what the browser extension and web app already consume.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    category: str = DEFAULT_CATEGORY
    tags: tuple[str, ...] = ()
    summary: str | None = None
    suggested_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("suggestedTitle", "suggested_title"),
        serialization_alias="suggestedTitle",
    )
    page_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("pageTitle", "page_title"),
        serialization_alias="pageTitle",
    )

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: str | None) -> str:
        """Map unknown categories to Other."""
        return normalize_category(v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> tuple[str, ...]:
        """Normalize tags and keep at most four."""
        return validate_and_normalize_tags(v)[:MAX_SUGGESTED_TAGS]

    @field_validator("summary", "suggested_title", "page_title", mode="before")
    @classmethod
    def blank_is_none(cls, v: str | None) -> str | None:
        """Treat blank strings as missing so title fallbacks apply."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class CategorizeRequest(BaseModel):
    """Request body for POST /categorize."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    user_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("userTitle", "user_title"),
    )


class PageMetadata(BaseModel):
    """Metadata scraped from a page to ground the categorization prompt."""

    title: str = ""
    description: str = ""
    site_name: str = ""
    keywords: str = ""
