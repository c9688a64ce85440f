"""Remote Store Gateway: CRUD against the bookmark persistence API."""
import json
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.config import Settings, get_settings
from gateways.api_client import api_delete, api_get, api_patch, api_post
from schemas.bookmark import Bookmark, BookmarkDraft, BookmarkImportItem
from services.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class StoreGateway(Protocol):
    """
    Persistence operations consumed by the reconciliation engine.

    Every call is a single request/response with no local state. Failures
    raise PersistenceError.
    """

    async def list_bookmarks(self, owner_id: str) -> list[Bookmark]:
        """All bookmarks for an owner, most recent first."""
        ...

    async def create(self, owner_id: str, draft: BookmarkDraft) -> Bookmark:
        """Create a bookmark; the store assigns id and created_at."""
        ...

    async def update(self, bookmark_id: str, fields: dict[str, Any]) -> None:
        """Update some fields of one bookmark."""
        ...

    async def delete(self, bookmark_id: str) -> None:
        """Delete one bookmark."""
        ...

    async def bulk_delete(self, bookmark_ids: Sequence[str]) -> None:
        """Delete several bookmarks in one request."""
        ...

    async def bulk_update(self, bookmark_ids: Sequence[str], fields: dict[str, Any]) -> None:
        """Apply the same field update to several bookmarks in one request."""
        ...

    async def bulk_insert(
        self, owner_id: str, items: Sequence[BookmarkImportItem],
    ) -> list[Bookmark]:
        """Insert several bookmarks in one request, returning the stored rows."""
        ...

    async def increment_click(self, bookmark_id: str) -> None:
        """Best-effort click counter increment."""
        ...


def _jsonable_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert tuple values (tags) to lists for JSON bodies."""
    return {key: list(value) if isinstance(value, tuple) else value for key, value in fields.items()}


class HttpStoreGateway:
    """StoreGateway over the bookmarks REST API."""

    def __init__(self, client: httpx.AsyncClient, token: str = "") -> None:
        self._client = client
        self._token = token

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HttpStoreGateway":
        """Create a gateway with its own HTTP client configured from settings."""
        settings = settings or get_settings()
        client = httpx.AsyncClient(base_url=settings.api_url, timeout=settings.request_timeout)
        return cls(client, token=settings.api_token)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpStoreGateway":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        """Turn transport, HTTP status, and payload errors into PersistenceError."""
        try:
            yield
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("Store %s returned HTTP %s", operation, status)
            raise PersistenceError(operation, f"HTTP {status}", status_code=status) from e
        except httpx.RequestError as e:
            logger.warning("Store %s request failed: %s", operation, e)
            raise PersistenceError(operation, f"Request failed: {e}") from e
        except PydanticValidationError as e:
            logger.warning("Store %s returned an invalid bookmark: %s", operation, e)
            raise PersistenceError(operation, "Invalid bookmark in response") from e
        except json.JSONDecodeError as e:
            logger.warning("Store %s returned invalid JSON: %s", operation, e)
            raise PersistenceError(operation, "Invalid JSON in response") from e

    async def list_bookmarks(self, owner_id: str) -> list[Bookmark]:
        """GET /bookmarks?owner_id=..."""
        with self._translate_errors("list"):
            data = await api_get(
                self._client, "/bookmarks", self._token, params={"owner_id": owner_id},
            )
            items = data.get("items", []) if isinstance(data, dict) else (data or [])
            return [Bookmark.model_validate(item) for item in items]

    async def create(self, owner_id: str, draft: BookmarkDraft) -> Bookmark:
        """POST /bookmarks."""
        body = {"owner_id": owner_id, **draft.model_dump(mode="json")}
        with self._translate_errors("create"):
            data = await api_post(self._client, "/bookmarks", self._token, json=body)
            return Bookmark.model_validate(data)

    async def update(self, bookmark_id: str, fields: dict[str, Any]) -> None:
        """PATCH /bookmarks/{id}."""
        with self._translate_errors("update"):
            await api_patch(
                self._client, f"/bookmarks/{bookmark_id}", self._token, json=_jsonable_fields(fields),
            )

    async def delete(self, bookmark_id: str) -> None:
        """DELETE /bookmarks/{id}."""
        with self._translate_errors("delete"):
            await api_delete(self._client, f"/bookmarks/{bookmark_id}", self._token)

    async def bulk_delete(self, bookmark_ids: Sequence[str]) -> None:
        """POST /bookmarks/bulk-delete."""
        with self._translate_errors("bulk_delete"):
            await api_post(
                self._client, "/bookmarks/bulk-delete", self._token, json={"ids": list(bookmark_ids)},
            )

    async def bulk_update(self, bookmark_ids: Sequence[str], fields: dict[str, Any]) -> None:
        """PATCH /bookmarks/bulk."""
        body = {"ids": list(bookmark_ids), "fields": _jsonable_fields(fields)}
        with self._translate_errors("bulk_update"):
            await api_patch(self._client, "/bookmarks/bulk", self._token, json=body)

    async def bulk_insert(
        self, owner_id: str, items: Sequence[BookmarkImportItem],
    ) -> list[Bookmark]:
        """POST /bookmarks/bulk."""
        body = {
            "owner_id": owner_id,
            "bookmarks": [item.model_dump(mode="json", exclude_none=True) for item in items],
        }
        with self._translate_errors("bulk_insert"):
            data = await api_post(self._client, "/bookmarks/bulk", self._token, json=body)
            items_data = data.get("items", []) if isinstance(data, dict) else (data or [])
            return [Bookmark.model_validate(item) for item in items_data]

    async def increment_click(self, bookmark_id: str) -> None:
        """POST /bookmarks/{id}/click."""
        with self._translate_errors("increment_click"):
            await api_post(self._client, f"/bookmarks/{bookmark_id}/click", self._token)
