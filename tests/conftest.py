"""Shared fixtures: in-memory fakes of the gateway protocols and engine setup."""
import asyncio
import itertools
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from core.config import Settings, get_settings
from gateways.feed import EventCallback, Unsubscribe
from schemas.bookmark import Bookmark, BookmarkDraft, BookmarkImportItem
from schemas.classification import ClassifierSuggestion
from schemas.feed import FeedEvent
from services.exceptions import ClassificationError, PersistenceError
from services.reconciliation import BookmarkEngine, Notification

OWNER_ID = "owner-1"
BASE_TIME = datetime(2025, 1, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()


def build_bookmark(
    bookmark_id: str,
    url: str | None = None,
    title: str | None = None,
    owner_id: str = OWNER_ID,
    minutes: int = 0,
    **fields: Any,
) -> Bookmark:
    """Build a stored bookmark; ``minutes`` offsets created_at from a fixed base time."""
    return Bookmark(
        id=bookmark_id,
        owner_id=owner_id,
        url=url or f"https://example.com/{bookmark_id}",
        title=title or f"Bookmark {bookmark_id}",
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


@pytest.fixture
def make_bookmark() -> Callable[..., Bookmark]:
    """Factory fixture for bookmarks."""
    return build_bookmark


class FakeStore:
    """
    In-memory StoreGateway.

    ``fail`` holds operation names that raise PersistenceError. ``gates`` maps
    operation names to events the call waits on, to hold a call in flight.
    """

    def __init__(self, bookmarks: Sequence[Bookmark] = ()) -> None:
        self.rows: dict[str, Bookmark] = {b.id: b for b in bookmarks}
        self.calls: list[tuple[str, Any]] = []
        self.fail: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self._ids = itertools.count(1)

    async def _call(self, operation: str, payload: Any) -> None:
        self.calls.append((operation, payload))
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if operation in self.fail:
            raise PersistenceError(operation, "HTTP 500", status_code=500)

    def operations(self) -> list[str]:
        """Names of the calls made so far, in order."""
        return [operation for operation, _ in self.calls]

    def _new_row(self, owner_id: str, fields: dict[str, Any]) -> Bookmark:
        n = next(self._ids)
        row = Bookmark(
            id=f"srv-{n}",
            owner_id=owner_id,
            **{"created_at": BASE_TIME + timedelta(days=1, minutes=n), **fields},
        )
        self.rows[row.id] = row
        return row

    async def list_bookmarks(self, owner_id: str) -> list[Bookmark]:
        await self._call("list", owner_id)
        rows = [b for b in self.rows.values() if b.owner_id == owner_id]
        return sorted(rows, key=lambda b: b.created_at, reverse=True)

    async def create(self, owner_id: str, draft: BookmarkDraft) -> Bookmark:
        await self._call("create", draft)
        return self._new_row(owner_id, draft.model_dump())

    async def update(self, bookmark_id: str, fields: dict[str, Any]) -> None:
        await self._call("update", (bookmark_id, fields))
        if bookmark_id in self.rows:
            self.rows[bookmark_id] = self.rows[bookmark_id].model_copy(update=fields)

    async def delete(self, bookmark_id: str) -> None:
        await self._call("delete", bookmark_id)
        self.rows.pop(bookmark_id, None)

    async def bulk_delete(self, bookmark_ids: Sequence[str]) -> None:
        await self._call("bulk_delete", list(bookmark_ids))
        for bookmark_id in bookmark_ids:
            self.rows.pop(bookmark_id, None)

    async def bulk_update(self, bookmark_ids: Sequence[str], fields: dict[str, Any]) -> None:
        await self._call("bulk_update", (list(bookmark_ids), fields))

    async def bulk_insert(
        self, owner_id: str, items: Sequence[BookmarkImportItem],
    ) -> list[Bookmark]:
        await self._call("bulk_insert", list(items))
        return [
            self._new_row(owner_id, item.model_dump(exclude_none=True)) for item in items
        ]

    async def increment_click(self, bookmark_id: str) -> None:
        await self._call("increment_click", bookmark_id)


class FakeClassifier:
    """ClassifierGateway returning a fixed suggestion, None, or raising."""

    def __init__(
        self,
        suggestion: ClassifierSuggestion | None = None,
        error: Exception | None = None,
    ) -> None:
        self.suggestion = suggestion
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def classify(self, url: str, user_title: str | None) -> ClassifierSuggestion | None:
        self.calls.append((url, user_title))
        if self.error is not None:
            raise self.error
        return self.suggestion


class FakeFeed:
    """FeedClient whose events are pushed by the test."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, EventCallback] = {}
        self.unsubscribed: list[str] = []

    def subscribe(self, owner_id: str, on_event: EventCallback) -> Unsubscribe:
        self.subscriptions[owner_id] = on_event

        def unsubscribe() -> None:
            self.subscriptions.pop(owner_id, None)
            self.unsubscribed.append(owner_id)

        return unsubscribe

    def emit(self, event: FeedEvent | dict[str, Any], owner_id: str = OWNER_ID) -> None:
        if isinstance(event, dict):
            event = FeedEvent.from_payload(event)
        self.subscriptions[owner_id](event)


@pytest.fixture
def settings() -> Settings:
    """Settings with a short undo window so deferred deletes fire quickly."""
    return Settings(undo_grace_seconds=0.05, echo_ttl_seconds=30.0)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier(
        ClassifierSuggestion(
            category="Development",
            tags=["python", "docs"],
            summary="Python documentation",
            suggested_title="Python Docs",
            page_title="Welcome to Python.org",
        ),
    )


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


EngineFactory = Callable[..., Any]


@pytest.fixture
async def make_engine(
    store: FakeStore,
    classifier: FakeClassifier,
    feed: FakeFeed,
    settings: Settings,
) -> AsyncGenerator[EngineFactory]:
    """
    Factory that seeds the store with the given bookmarks and starts an engine.

    Pending deletes are cancelled at teardown.
    """
    engines: list[BookmarkEngine] = []

    async def factory(*bookmarks: Bookmark, owner_id: str = OWNER_ID) -> BookmarkEngine:
        for bookmark in bookmarks:
            store.rows[bookmark.id] = bookmark
        engine = BookmarkEngine(owner_id, store, classifier, feed, settings=settings)
        await engine.start()
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        await engine.close(flush_pending=False)


@pytest.fixture
async def engine(make_engine: EngineFactory) -> BookmarkEngine:
    """Started engine for OWNER_ID with an empty collection."""
    return await make_engine()


@pytest.fixture
def notifications(engine: BookmarkEngine) -> list[Notification]:
    """Every notification the engine emits during the test."""
    received: list[Notification] = []
    engine.add_listener(received.append)
    return received
