"""
Deferred deletion with an undo window.

Each deletion is an explicit state machine::

    scheduled -> cancelled   (undo, remote delete already seen, teardown)
    scheduled -> fired       (grace window elapsed, or flushed)

Transitions are synchronous and only valid from ``scheduled``, so whichever
of undo or the timer reaches the deletion first wins and the other is a no-op.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from schemas.bookmark import Bookmark

logger = logging.getLogger(__name__)


class DeletionState(StrEnum):
    """Lifecycle of a deferred deletion."""

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    FIRED = "fired"


@dataclass
class DeferredDeletion:
    """A pending remote delete plus the snapshot needed to undo it."""

    bookmark: Bookmark
    index: int
    deadline: float
    state: DeletionState = DeletionState.SCHEDULED
    task: asyncio.Task[None] | None = field(default=None, repr=False, compare=False)

    @property
    def bookmark_id(self) -> str:
        """Id of the bookmark being deleted."""
        return self.bookmark.id

    @property
    def is_scheduled(self) -> bool:
        """True while undo is still possible."""
        return self.state is DeletionState.SCHEDULED

    def cancel(self) -> bool:
        """
        Move scheduled -> cancelled and stop the timer.

        Returns:
            True if this call cancelled the deletion, False if it had already
            been cancelled or fired.
        """
        if self.state is not DeletionState.SCHEDULED:
            return False
        self.state = DeletionState.CANCELLED
        if self.task is not None and not self.task.done():
            self.task.cancel()
        return True

    def fire(self) -> bool:
        """
        Move scheduled -> fired.

        Returns:
            True if the remote delete should now be issued.
        """
        if self.state is not DeletionState.SCHEDULED:
            return False
        self.state = DeletionState.FIRED
        return True


DeleteCallback = Callable[[DeferredDeletion], Awaitable[None]]


class DeferredDeletionScheduler:
    """Schedules one cancellable remote delete per bookmark id."""

    def __init__(self, grace_seconds: float, on_fire: DeleteCallback) -> None:
        self._grace_seconds = grace_seconds
        self._on_fire = on_fire
        self._pending: dict[str, DeferredDeletion] = {}

    @property
    def grace_seconds(self) -> float:
        """Length of the undo window in seconds."""
        return self._grace_seconds

    def schedule(self, bookmark: Bookmark, index: int = 0) -> DeferredDeletion:
        """
        Start the grace window for a bookmark that was just removed locally.

        Must be called from within a running event loop. Scheduling an id that
        is already scheduled returns the existing deletion.
        """
        existing = self._pending.get(bookmark.id)
        if existing is not None and existing.is_scheduled:
            return existing

        loop = asyncio.get_running_loop()
        deletion = DeferredDeletion(
            bookmark=bookmark,
            index=index,
            deadline=loop.time() + self._grace_seconds,
        )
        deletion.task = loop.create_task(
            self._wait_and_fire(deletion),
            name=f"deferred-delete-{bookmark.id}",
        )
        self._pending[bookmark.id] = deletion
        return deletion

    async def _wait_and_fire(self, deletion: DeferredDeletion) -> None:
        await asyncio.sleep(self._grace_seconds)
        await self._execute(deletion)

    async def _execute(self, deletion: DeferredDeletion) -> None:
        if not deletion.fire():
            return
        try:
            await self._on_fire(deletion)
        except Exception:
            # Runs in a background task with no awaiting caller
            logger.exception("Deferred delete callback failed for %s", deletion.bookmark_id)
        finally:
            if self._pending.get(deletion.bookmark_id) is deletion:
                del self._pending[deletion.bookmark_id]

    def get(self, bookmark_id: str) -> DeferredDeletion | None:
        """Return the deletion for an id if it is still scheduled."""
        deletion = self._pending.get(bookmark_id)
        if deletion is not None and deletion.is_scheduled:
            return deletion
        return None

    def cancel(self, bookmark_id: str) -> DeferredDeletion | None:
        """
        Cancel the scheduled deletion for an id.

        Returns:
            The cancelled deletion (with its snapshot), or None if nothing was
            scheduled or the deletion already fired.
        """
        deletion = self._pending.get(bookmark_id)
        if deletion is None or not deletion.cancel():
            return None
        del self._pending[bookmark_id]
        return deletion

    async def flush(self) -> int:
        """Fire every scheduled deletion now. Returns the number fired."""
        scheduled = [d for d in self._pending.values() if d.is_scheduled]
        for deletion in scheduled:
            if deletion.task is not None and not deletion.task.done():
                deletion.task.cancel()
        for deletion in scheduled:
            await self._execute(deletion)
        return len(scheduled)

    def cancel_all(self) -> list[DeferredDeletion]:
        """Cancel every scheduled deletion (owner switch without flushing)."""
        cancelled = [d for d in list(self._pending.values()) if d.cancel()]
        self._pending.clear()
        return cancelled

    def __contains__(self, bookmark_id: object) -> bool:
        return self.get(bookmark_id) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return sum(1 for d in self._pending.values() if d.is_scheduled)
