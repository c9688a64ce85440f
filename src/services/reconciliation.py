"""
Reconciliation engine: the authoritative in-memory bookmark collection.

One engine instance serves one owner session. It applies local optimistic
mutations, reconciles them with store confirmations and change-feed events,
manages deferred deletes with undo, and suppresses feed echoes of its own
writes.

Concurrency model: the engine is single-writer. Every read-modify-write of
engine state is synchronous (no await in between), so on one event loop no two
callers can interleave inside a state transition. Remote calls are the only
suspension points; calls touching the same bookmark id are serialized in call
order through per-id FIFO locks, while calls for different ids run concurrently.
"""
import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from core.config import Settings, get_settings
from gateways.classifier import ClassifierGateway
from gateways.feed import FeedClient, Unsubscribe
from gateways.store import StoreGateway
from schemas.bookmark import Bookmark, BookmarkDraft, BookmarkImportItem
from schemas.classification import ClassifierSuggestion
from schemas.feed import FeedEvent, FeedEventKind
from schemas.validators import (
    normalize_url,
    validate_and_normalize_tags,
    validate_category,
    validate_title,
    validate_url,
)
from services.classification import domain_fallback, resolve_title
from services.deferred_delete import DeferredDeletion, DeferredDeletionScheduler
from services.echo_tracker import PendingEchoes
from services.exceptions import (
    BookmarkError,
    ClassificationError,
    PersistenceError,
    ValidationError,
)
from services.import_export import export_bookmarks, parse_import_file
from services.views import SortKey, filter_bookmarks, sort_bookmarks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionChanged:
    """The collection changed; views should be recomputed from ``bookmarks``."""

    bookmarks: tuple[Bookmark, ...]


@dataclass(frozen=True)
class DeleteScheduled:
    """A bookmark was removed locally and can be restored with undo until ``deadline``."""

    bookmark: Bookmark
    deadline: float


@dataclass(frozen=True)
class DeleteUndone:
    """A deferred delete was cancelled and the bookmark restored."""

    bookmark: Bookmark


@dataclass(frozen=True)
class OperationFailed:
    """A remote call failed where no caller is waiting for the error."""

    operation: str
    bookmark_ids: tuple[str, ...]
    error: BookmarkError


Notification = CollectionChanged | DeleteScheduled | DeleteUndone | OperationFailed
Listener = Callable[[Notification], None]


@dataclass
class ImportResult:
    """Outcome of an import: stored bookmarks, skipped duplicates, parse errors."""

    bookmarks: list[Bookmark] = field(default_factory=list)
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def imported(self) -> int:
        """Number of bookmarks actually stored."""
        return len(self.bookmarks)


def _invalid(e: ValueError) -> ValidationError:
    return ValidationError(str(e))


class BookmarkEngine:
    """
    Owns one owner's bookmark collection (most recent first).

    Construct one per authenticated session, call ``start()`` to load and
    subscribe, and ``close()`` on sign-out. ``switch_owner()`` does both.
    """

    def __init__(
        self,
        owner_id: str,
        store: StoreGateway,
        classifier: ClassifierGateway | None = None,
        feed: FeedClient | None = None,
        *,
        settings: Settings | None = None,
        undo_grace_seconds: float | None = None,
        echo_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings()
        self._owner_id = owner_id
        self._store = store
        self._classifier = classifier
        self._feed = feed
        self._max_title_length = settings.max_title_length
        self._bookmarks: list[Bookmark] = []
        self._echoes = PendingEchoes(
            ttl=echo_ttl_seconds if echo_ttl_seconds is not None else settings.echo_ttl_seconds,
            clock=clock,
        )
        self._deletions = DeferredDeletionScheduler(
            grace_seconds=(
                undo_grace_seconds if undo_grace_seconds is not None
                else settings.undo_grace_seconds
            ),
            on_fire=self._fire_deletion,
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)
        self._listeners: list[Listener] = []
        # Ids removed by feed delete events, one set per in-flight bulk delete
        self._remote_deletes: list[set[str]] = []
        self._unsubscribe: Unsubscribe | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def owner_id(self) -> str:
        """Owner whose collection this engine holds."""
        return self._owner_id

    @property
    def bookmarks(self) -> tuple[Bookmark, ...]:
        """Snapshot of the collection in display order."""
        return tuple(self._bookmarks)

    def get(self, bookmark_id: str) -> Bookmark | None:
        """Return the bookmark with this id, or None."""
        index = self._index_of(bookmark_id)
        return None if index is None else self._bookmarks[index]

    def is_pending_delete(self, bookmark_id: str) -> bool:
        """True while a deferred delete for this id can still be undone."""
        return bookmark_id in self._deletions

    def __len__(self) -> int:
        return len(self._bookmarks)

    def view(
        self,
        filter_key: str = "all",
        tag_filter: str | None = None,
        search_query: str | None = None,
        sort_key: SortKey | str = "newest",
    ) -> list[Bookmark]:
        """Filtered and sorted projection of the current collection."""
        filtered = filter_bookmarks(self._bookmarks, filter_key, tag_filter, search_query)
        return sort_bookmarks(filtered, sort_key)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a notification callback. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                # State is already updated; one failing listener must not block the others
                logger.exception("Listener failed handling %s", type(notification).__name__)

    def _set_bookmarks(self, bookmarks: list[Bookmark]) -> None:
        """Single state transition: replace the collection and notify once."""
        self._bookmarks = bookmarks
        self._emit(CollectionChanged(tuple(bookmarks)))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _index_of(self, bookmark_id: str) -> int | None:
        for index, bookmark in enumerate(self._bookmarks):
            if bookmark.id == bookmark_id:
                return index
        return None

    def _replace(self, bookmark: Bookmark) -> bool:
        index = self._index_of(bookmark.id)
        if index is None:
            return False
        bookmarks = list(self._bookmarks)
        bookmarks[index] = bookmark
        self._set_bookmarks(bookmarks)
        return True

    def _restore_if_current(self, written: Sequence[Bookmark], priors: Sequence[Bookmark]) -> int:
        """
        Roll back optimistic writes that have not been superseded.

        Each written copy is swapped back to its prior snapshot only if the
        collection still holds that exact copy; a later local op or feed update
        for the same id wins. Applied as one state transition.
        """
        restore = {
            w.id: p for w, p in zip(written, priors, strict=True)
            if (index := self._index_of(w.id)) is not None and self._bookmarks[index] is w
        }
        if not restore:
            return 0
        self._set_bookmarks([restore.get(b.id, b) for b in self._bookmarks])
        return len(restore)

    def _restore_removed(self, removed: Sequence[tuple[int, Bookmark]], skip: set[str]) -> None:
        """Put removed bookmarks back at their original indices, except ids in ``skip``."""
        bookmarks = list(self._bookmarks)
        present = {b.id for b in bookmarks}
        for index, bookmark in removed:
            if bookmark.id in present or bookmark.id in skip:
                continue
            bookmarks.insert(min(index, len(bookmarks)), bookmark)
        self._set_bookmarks(bookmarks)

    @asynccontextmanager
    async def _serialized(self, *bookmark_ids: str) -> AsyncIterator[None]:
        """
        Hold the per-id locks for these ids (FIFO, so remote calls keep call order).

        Locks are taken in sorted order so overlapping bulk operations cannot deadlock.
        """
        ids = sorted(set(bookmark_ids))
        for bookmark_id in ids:
            self._lock_users[bookmark_id] += 1
        acquired: list[asyncio.Lock] = []
        try:
            for bookmark_id in ids:
                lock = self._locks.setdefault(bookmark_id, asyncio.Lock())
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for bookmark_id in ids:
                self._lock_users[bookmark_id] -= 1
                if self._lock_users[bookmark_id] == 0:
                    del self._lock_users[bookmark_id]
                    self._locks.pop(bookmark_id, None)

    def _insert_confirmed(self, confirmed: Iterable[Bookmark]) -> list[Bookmark]:
        """
        Merge store-confirmed new bookmarks into the collection.

        New ids are prepended (keeping their given order) and marked as pending
        echoes. Ids the feed already delivered are replaced in place and not
        marked, since their echo has been seen.
        """
        self._echoes.prune()
        bookmarks = list(self._bookmarks)
        positions = {b.id: i for i, b in enumerate(bookmarks)}
        fresh: list[Bookmark] = []
        seen: set[str] = set()
        for bookmark in confirmed:
            if bookmark.owner_id != self._owner_id:
                logger.warning(
                    "Dropping confirmed bookmark %s for owner %s (engine owner is %s)",
                    bookmark.id, bookmark.owner_id, self._owner_id,
                )
                continue
            if bookmark.id in seen:
                continue
            seen.add(bookmark.id)
            if bookmark.id in positions:
                bookmarks[positions[bookmark.id]] = bookmark
            else:
                self._echoes.mark(bookmark.id)
                fresh.append(bookmark)
        self._set_bookmarks(fresh + bookmarks)
        return fresh

    async def _classify(
        self, url: str, user_title: str | None,
    ) -> tuple[ClassifierSuggestion, bool]:
        """Return (suggestion, used_fallback). Never raises."""
        suggestion: ClassifierSuggestion | None = None
        if self._classifier is not None:
            try:
                suggestion = await self._classifier.classify(url, user_title)
            except ClassificationError as e:
                logger.warning("Categorization failed for %s, using domain fallback: %s", url, e)
        if suggestion is None:
            return domain_fallback(url), True
        return suggestion, False

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Subscribe to the change feed and load the owner's collection.

        The feed is subscribed first so nothing inserted during the load is
        missed; bookmarks the feed delivered while loading are kept on top.

        Raises:
            PersistenceError: If the initial load fails.
        """
        if self._feed is not None and self._unsubscribe is None:
            self._unsubscribe = self._feed.subscribe(self._owner_id, self.apply_feed_event)

        loaded = await self._store.list_bookmarks(self._owner_id)

        merged: list[Bookmark] = []
        seen: set[str] = set()
        loaded_ids = {b.id for b in loaded}
        # Feed arrivals during the load first, then the loaded rows
        for bookmark in [b for b in self._bookmarks if b.id not in loaded_ids] + list(loaded):
            if bookmark.owner_id != self._owner_id or bookmark.id in seen:
                continue
            if bookmark.id in self._deletions:
                continue
            seen.add(bookmark.id)
            merged.append(bookmark)
        self._set_bookmarks(merged)
        logger.info("Loaded %d bookmarks for owner %s", len(merged), self._owner_id)

    async def close(self, flush_pending: bool = True) -> None:
        """
        Stop the feed subscription and settle pending deferred deletes.

        Args:
            flush_pending:
                True fires pending remote deletes immediately (the user asked
                for them); False cancels them, leaving the rows on the server.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if flush_pending:
            fired = await self._deletions.flush()
            if fired:
                logger.info("Flushed %d pending deletes for owner %s", fired, self._owner_id)
        else:
            self._deletions.cancel_all()

    async def switch_owner(self, owner_id: str) -> None:
        """Tear down the current session, clear all state, and load ``owner_id``."""
        logger.info("Switching owner %s -> %s", self._owner_id, owner_id)
        await self.close(flush_pending=True)
        self._owner_id = owner_id
        self._echoes.clear()
        self._set_bookmarks([])
        await self.start()

    # ------------------------------------------------------------------
    # Local operations
    # ------------------------------------------------------------------

    async def add(
        self,
        title: str | None,
        url: str,
        classifier_hint: ClassifierSuggestion | None = None,
    ) -> Bookmark:
        """
        Categorize, persist, and insert a new bookmark.

        Not optimistic: the store assigns the id, so nothing is inserted until
        it confirms.

        Args:
            title: User-supplied title; blank means "let the classifier suggest one".
            url: Absolute URL.
            classifier_hint: Suggestion already obtained by the caller (skips the classifier).

        Returns:
            The confirmed bookmark, now at the head of the collection.

        Raises:
            ValidationError: If the url or title is invalid (nothing else happens).
            PersistenceError: If the store rejects the create (collection unchanged).
        """
        try:
            url = validate_url(url)
            user_title = validate_title(title) if title and title.strip() else None
        except ValueError as e:
            raise _invalid(e) from e

        suggestion = classifier_hint
        used_fallback = False
        if suggestion is None:
            suggestion, used_fallback = await self._classify(url, user_title)

        # A fallback carries no real title suggestion; untitled bookmarks keep the URL
        final_title = resolve_title(user_title, None if used_fallback else suggestion, url)
        draft = BookmarkDraft(
            title=final_title[: self._max_title_length],
            url=url,
            category=suggestion.category,
            tags=suggestion.tags,
            summary=suggestion.summary,
        )
        created = await self._store.create(self._owner_id, draft)
        self._insert_confirmed([created])
        logger.info("Added bookmark %s (%s)", created.id, created.category)
        return self.get(created.id) or created

    def delete(self, bookmark_id: str) -> DeferredDeletion | None:
        """
        Remove a bookmark now and delete it remotely after the grace window.

        Emits DeleteScheduled. Use ``undo(bookmark_id)`` before the deadline to
        restore it. Must be called from within the running event loop.

        Returns:
            The scheduled deletion, or None if the id is not in the collection.
        """
        index = self._index_of(bookmark_id)
        if index is None:
            return None
        bookmarks = list(self._bookmarks)
        bookmark = bookmarks.pop(index)
        deletion = self._deletions.schedule(bookmark, index)
        self._set_bookmarks(bookmarks)
        self._emit(DeleteScheduled(bookmark=bookmark, deadline=deletion.deadline))
        return deletion

    def undo(self, bookmark_id: str) -> Bookmark | None:
        """
        Cancel a pending deferred delete and put the bookmark back at the head.

        Returns:
            The restored bookmark, or None if the window has passed (or the
            deletion already fired or was cancelled by a remote delete).
        """
        deletion = self._deletions.cancel(bookmark_id)
        if deletion is None:
            return None
        if self._index_of(bookmark_id) is None:
            self._set_bookmarks([deletion.bookmark, *self._bookmarks])
        self._emit(DeleteUndone(bookmark=deletion.bookmark))
        return deletion.bookmark

    async def _fire_deletion(self, deletion: DeferredDeletion) -> None:
        """Issue the remote delete once the grace window elapses. Failures are reported, not reversed."""
        bookmark_id = deletion.bookmark_id
        async with self._serialized(bookmark_id):
            try:
                await self._store.delete(bookmark_id)
            except PersistenceError as e:
                logger.warning("Deferred delete of %s failed: %s", bookmark_id, e)
                self._emit(OperationFailed("delete", (bookmark_id,), e))
                return
        logger.info("Deleted bookmark %s", bookmark_id)

    async def toggle_favorite(self, bookmark_id: str) -> Bookmark | None:
        """
        Flip ``is_favorite`` optimistically and persist it.

        Returns:
            The updated bookmark, or None if the id is not in the collection.

        Raises:
            PersistenceError: After reverting the flag.
        """
        return await self._toggle(bookmark_id, "is_favorite")

    async def toggle_pin(self, bookmark_id: str) -> Bookmark | None:
        """Flip ``is_pinned`` optimistically and persist it (see toggle_favorite)."""
        return await self._toggle(bookmark_id, "is_pinned")

    async def _toggle(self, bookmark_id: str, flag: str) -> Bookmark | None:
        current = self.get(bookmark_id)
        if current is None:
            return None
        value = not getattr(current, flag)
        updated = current.model_copy(update={flag: value})
        self._replace(updated)
        await self._persist_update(updated, current, {flag: value}, operation=f"toggle {flag}")
        return updated

    async def edit(
        self,
        bookmark_id: str,
        title: str,
        url: str,
        category: str,
        tags: Sequence[str] = (),
    ) -> Bookmark | None:
        """
        Replace a bookmark's editable fields optimistically and persist them.

        Returns:
            The updated bookmark, or None if the id is not in the collection.

        Raises:
            ValidationError: Before any change, if a field is invalid.
            PersistenceError: After restoring the full prior snapshot.
        """
        try:
            fields: dict[str, Any] = {
                "title": validate_title(title),
                "url": validate_url(url),
                "category": validate_category(category),
                "tags": validate_and_normalize_tags(list(tags)),
            }
        except ValueError as e:
            raise _invalid(e) from e

        current = self.get(bookmark_id)
        if current is None:
            return None
        updated = current.model_copy(update=fields)
        self._replace(updated)
        await self._persist_update(updated, current, fields, operation="edit")
        return updated

    async def _persist_update(
        self,
        updated: Bookmark,
        prior: Bookmark,
        fields: dict[str, Any],
        operation: str,
    ) -> None:
        async with self._serialized(updated.id):
            try:
                await self._store.update(updated.id, fields)
            except PersistenceError:
                restored = self._restore_if_current([updated], [prior])
                logger.warning(
                    "%s of %s failed; %s", operation, updated.id,
                    "rolled back" if restored else "superseded by a later change",
                )
                raise

    async def track_click(self, bookmark_id: str) -> Bookmark | None:
        """
        Count a visit: increment ``click_count`` locally and tell the store.

        Best-effort telemetry: a failed remote increment is logged and reported
        as OperationFailed, never rolled back and never raised.
        """
        current = self.get(bookmark_id)
        if current is None:
            return None
        updated = current.model_copy(update={"click_count": current.click_count + 1})
        self._replace(updated)
        async with self._serialized(bookmark_id):
            try:
                await self._store.increment_click(bookmark_id)
            except PersistenceError as e:
                logger.warning("Click tracking for %s failed: %s", bookmark_id, e)
                self._emit(OperationFailed("increment_click", (bookmark_id,), e))
        return updated

    async def bulk_delete(self, bookmark_ids: Iterable[str]) -> list[Bookmark]:
        """
        Remove several bookmarks in one state transition and one remote call.

        Returns:
            The removed bookmarks (ids not in the collection are ignored).

        Raises:
            PersistenceError: After restoring the removed bookmarks, except any
                a feed delete event removed while the call was in flight.
        """
        wanted = set(bookmark_ids)
        removed = [(i, b) for i, b in enumerate(self._bookmarks) if b.id in wanted]
        if not removed:
            return []
        ids = [b.id for _, b in removed]
        self._set_bookmarks([b for b in self._bookmarks if b.id not in wanted])

        gone: set[str] = set()
        self._remote_deletes.append(gone)
        try:
            async with self._serialized(*ids):
                try:
                    await self._store.bulk_delete(ids)
                except PersistenceError:
                    self._restore_removed(removed, skip=gone)
                    logger.warning("Bulk delete of %d bookmarks failed; rolled back", len(ids))
                    raise
        finally:
            self._remote_deletes.remove(gone)
        logger.info("Bulk deleted %d bookmarks", len(ids))
        return [b for _, b in removed]

    async def bulk_set_category(self, bookmark_ids: Iterable[str], category: str) -> list[Bookmark]:
        """
        Set the category of several bookmarks in one state transition and one remote call.

        Returns:
            The updated bookmarks.

        Raises:
            ValidationError: If the category is unknown (nothing changes).
            PersistenceError: After restoring every affected bookmark.
        """
        try:
            category = validate_category(category)
        except ValueError as e:
            raise _invalid(e) from e

        wanted = set(bookmark_ids)
        priors = [b for b in self._bookmarks if b.id in wanted]
        if not priors:
            return []
        written = [b.model_copy(update={"category": category}) for b in priors]
        by_id = {b.id: b for b in written}
        self._set_bookmarks([by_id.get(b.id, b) for b in self._bookmarks])

        ids = [b.id for b in priors]
        async with self._serialized(*ids):
            try:
                await self._store.bulk_update(ids, {"category": category})
            except PersistenceError:
                self._restore_if_current(written, priors)
                logger.warning("Bulk category update of %d bookmarks failed; rolled back", len(ids))
                raise
        return written

    async def import_batch(self, items: Sequence[BookmarkImportItem]) -> ImportResult:
        """
        Store bookmarks whose URL is not already in the collection.

        Duplicates (against the collection and within the batch) are detected
        by exact match on the normalized URL. The rest go to the store in one
        batch insert and are prepended once confirmed.

        Raises:
            PersistenceError: If the batch insert fails (collection unchanged).
        """
        known = {normalize_url(b.url) for b in self._bookmarks}
        fresh: list[BookmarkImportItem] = []
        duplicates = 0
        for item in items:
            key = normalize_url(item.url)
            if key in known:
                duplicates += 1
                continue
            known.add(key)
            fresh.append(item)

        if not fresh:
            return ImportResult(duplicates=duplicates)

        created = await self._store.bulk_insert(self._owner_id, fresh)
        self._insert_confirmed(created)
        logger.info("Imported %d bookmarks (%d duplicates skipped)", len(created), duplicates)
        return ImportResult(bookmarks=created, duplicates=duplicates)

    async def import_file(self, text: str) -> ImportResult:
        """Parse an import file and import its valid items; parse errors are reported on the result."""
        parsed = parse_import_file(text)
        result = await self.import_batch(parsed.bookmarks) if parsed.bookmarks else ImportResult()
        result.errors.extend(parsed.errors)
        return result

    def export_document(self, now: datetime | None = None) -> dict[str, Any]:
        """Portable export of the current collection."""
        return export_bookmarks(self._bookmarks, now)

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def apply_feed_event(self, event: FeedEvent) -> None:
        """
        Merge one remote change. Events are applied in arrival order.

        - insert: a pending echo is consumed and dropped; otherwise the bookmark
          is prepended unless already present or pending local deletion.
        - update: replaces the bookmark if present, ignored otherwise.
        - delete: removes the bookmark if present and cancels any pending
          deferred delete for it (the row is already gone).
        """
        bookmark = event.bookmark
        if bookmark is not None and bookmark.owner_id != self._owner_id:
            logger.debug("Ignoring %s event for foreign owner %s", event.kind, bookmark.owner_id)
            return

        match event.kind:
            case FeedEventKind.INSERT:
                self._apply_insert(bookmark)
            case FeedEventKind.UPDATE:
                if self.get(bookmark.id) is None:
                    logger.debug("Ignoring update for absent bookmark %s", bookmark.id)
                    return
                self._replace(bookmark)
            case FeedEventKind.DELETE:
                self._apply_delete(event.bookmark_id)

    def _apply_insert(self, bookmark: Bookmark) -> None:
        if self._echoes.consume(bookmark.id):
            logger.debug("Suppressed echo of local insert %s", bookmark.id)
            return
        if bookmark.id in self._deletions:
            logger.debug("Ignoring insert for bookmark %s pending local delete", bookmark.id)
            return
        if self._index_of(bookmark.id) is not None:
            return
        self._set_bookmarks([bookmark, *self._bookmarks])

    def _apply_delete(self, bookmark_id: str) -> None:
        if self._deletions.cancel(bookmark_id) is not None:
            logger.debug("Remote delete of %s superseded local deferred delete", bookmark_id)
        self._echoes.discard(bookmark_id)
        for gone in self._remote_deletes:
            gone.add(bookmark_id)
        index = self._index_of(bookmark_id)
        if index is None:
            return
        self._set_bookmarks([b for b in self._bookmarks if b.id != bookmark_id])
