"""Tracking of locally-confirmed writes whose feed echo must be suppressed."""
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PendingEchoes:
    """
    Short-lived markers for bookmark ids created by this session.

    When a local ``add`` is confirmed by the store, the change feed will also
    deliver an insert event for the same row. The id is marked here and the
    first matching insert consumes the marker. Markers expire after ``ttl``
    seconds so an echo that never arrives does not suppress a later event.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._expires_at: dict[str, float] = {}

    def mark(self, bookmark_id: str) -> None:
        """Record that an insert echo for this id is expected."""
        self._expires_at[bookmark_id] = self._clock() + self._ttl

    def consume(self, bookmark_id: str) -> bool:
        """
        Consume the marker for an id, if present and not expired.

        Returns:
            True if the event is an echo and should be suppressed.
        """
        expires_at = self._expires_at.pop(bookmark_id, None)
        if expires_at is None:
            return False
        if expires_at < self._clock():
            logger.debug("Echo marker for %s expired before its event arrived", bookmark_id)
            return False
        return True

    def discard(self, bookmark_id: str) -> None:
        """Drop a marker without consuming an event."""
        self._expires_at.pop(bookmark_id, None)

    def prune(self) -> int:
        """Remove expired markers. Returns the number removed."""
        now = self._clock()
        expired = [bid for bid, expires_at in self._expires_at.items() if expires_at < now]
        for bookmark_id in expired:
            del self._expires_at[bookmark_id]
        return len(expired)

    def clear(self) -> None:
        """Forget all markers (owner switch or teardown)."""
        self._expires_at.clear()

    def __contains__(self, bookmark_id: object) -> bool:
        expires_at = self._expires_at.get(bookmark_id)  # type: ignore[arg-type]
        return expires_at is not None and expires_at >= self._clock()

    def __len__(self) -> int:
        return len(self._expires_at)
