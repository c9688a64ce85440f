"""Pydantic schemas for change-feed events."""
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from schemas.bookmark import Bookmark

# Realtime row-change payloads use upper-case event types
_REALTIME_EVENT_TYPES = {"INSERT": "insert", "UPDATE": "update", "DELETE": "delete"}


class FeedEventKind(StrEnum):
    """Kinds of change delivered by the feed."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class FeedEvent(BaseModel):
    """
    A remote insert/update/delete notification.

    Insert and update events always carry the full bookmark. Delete events may
    carry only the id (row-change feeds send just the old primary key).
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    kind: FeedEventKind
    bookmark_id: str
    bookmark: Bookmark | None = None

    @model_validator(mode="before")
    @classmethod
    def fill_bookmark_id(cls, data: Any) -> Any:
        """Derive bookmark_id from the bookmark payload when not given explicitly."""
        if isinstance(data, dict) and data.get("bookmark_id") is None:
            bookmark = data.get("bookmark")
            if isinstance(bookmark, dict) and bookmark.get("id") is not None:
                data = {**data, "bookmark_id": bookmark["id"]}
            elif isinstance(bookmark, Bookmark):
                data = {**data, "bookmark_id": bookmark.id}
        return data

    @model_validator(mode="after")
    def check_payload(self) -> "FeedEvent":
        """Insert and update events need the full bookmark."""
        if self.kind is not FeedEventKind.DELETE and self.bookmark is None:
            raise ValueError(f"{self.kind.value} event requires a bookmark")
        if self.bookmark is not None and self.bookmark.id != self.bookmark_id:
            raise ValueError("bookmark_id does not match bookmark.id")
        return self

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FeedEvent":
        """
        Build an event from either feed payload shape.

        Accepts ``{"kind": ..., "bookmark": {...}}`` or the realtime row-change
        shape ``{"eventType": "INSERT", "new": {...}, "old": {...}}``.

        Raises:
            pydantic.ValidationError: If the payload is malformed.
        """
        event_type = payload.get("eventType")
        if event_type is None:
            return cls.model_validate(payload)
        kind = _REALTIME_EVENT_TYPES.get(str(event_type).upper(), event_type)
        if kind == "delete":
            old = payload.get("old") or {}
            return cls.model_validate({"kind": kind, "bookmark_id": old.get("id")})
        return cls.model_validate({"kind": kind, "bookmark": payload.get("new")})
