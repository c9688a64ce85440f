"""
Change-Feed Client: streams bookmark change events for one owner.

The feed endpoint speaks server-sent events; every ``data:`` payload is a
JSON feed event. Reconnect and backoff live here, not in the engine: the
engine only processes whatever events it receives.
"""
import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.config import Settings, get_settings
from gateways.api_client import get_headers
from schemas.feed import FeedEvent
from services.exceptions import FeedError

logger = logging.getLogger(__name__)

EventCallback = Callable[[FeedEvent], None]
Unsubscribe = Callable[[], None]


class FeedClient(Protocol):
    """Push channel scoped to one owner."""

    def subscribe(self, owner_id: str, on_event: EventCallback) -> Unsubscribe:
        """Start delivering events to ``on_event``; call the result to stop."""
        ...


class SSEParser:
    """Incremental parser turning event-stream lines into data payloads."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        """
        Consume one line of the stream.

        Returns:
            The joined data payload when a blank line ends an event, else None.
        """
        line = line.rstrip("\r")
        if not line:
            if not self._data:
                return None
            payload = "\n".join(self._data)
            self._data = []
            return payload
        if line.startswith(":"):
            return None  # comment / keep-alive
        field, _, value = line.partition(":")
        if field == "data":
            self._data.append(value.removeprefix(" "))
        return None


def decode_feed_event(data: str) -> FeedEvent:
    """
    Decode one data payload into a FeedEvent.

    Raises:
        FeedError: If the payload is not valid JSON or not a valid event.
    """
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise FeedError(f"Feed payload is not valid JSON: {data[:100]!r}") from e
    if not isinstance(payload, dict):
        raise FeedError(f"Feed payload must be an object: {data[:100]!r}")
    try:
        return FeedEvent.from_payload(payload)
    except PydanticValidationError as e:
        raise FeedError(f"Invalid feed event: {e.error_count()} validation error(s)") from e


class HttpFeedClient:
    """FeedClient over GET /bookmarks/changes (text/event-stream)."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str = "",
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ) -> None:
        self._client = client
        self._token = token
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HttpFeedClient":
        """Create a feed client; reads never time out on the open stream."""
        settings = settings or get_settings()
        client = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=httpx.Timeout(settings.request_timeout, read=None),
        )
        return cls(
            client,
            token=settings.api_token,
            reconnect_delay=settings.feed_reconnect_delay,
            max_reconnect_delay=settings.feed_max_reconnect_delay,
        )

    async def aclose(self) -> None:
        """Stop all subscriptions and close the HTTP client."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self._client.aclose()

    async def events(self, owner_id: str) -> AsyncIterator[FeedEvent]:
        """
        Stream events from a single connection until the server closes it.

        Malformed events are logged and skipped.

        Raises:
            httpx.HTTPStatusError: If the feed endpoint rejects the request.
            httpx.RequestError: On transport failures.
        """
        headers = {**get_headers(self._token), "Accept": "text/event-stream"}
        async with self._client.stream(
            "GET", "/bookmarks/changes", params={"owner_id": owner_id}, headers=headers,
        ) as response:
            response.raise_for_status()
            parser = SSEParser()
            async for line in response.aiter_lines():
                data = parser.feed(line)
                if data is None:
                    continue
                try:
                    event = decode_feed_event(data)
                except FeedError as e:
                    logger.warning("Skipping feed event for owner %s: %s", owner_id, e)
                    continue
                yield event

    def subscribe(self, owner_id: str, on_event: EventCallback) -> Unsubscribe:
        """Run the stream in a background task, reconnecting with backoff."""
        task = asyncio.get_running_loop().create_task(
            self._run(owner_id, on_event), name=f"change-feed-{owner_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _run(self, owner_id: str, on_event: EventCallback) -> None:
        delay = self._reconnect_delay
        while True:
            try:
                async for event in self.events(owner_id):
                    delay = self._reconnect_delay
                    on_event(event)
                logger.info("Change feed closed by server for owner %s", owner_id)
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                logger.warning(
                    "Change feed disconnected for owner %s: %s (retrying in %.1fs)",
                    owner_id, e, delay,
                )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_reconnect_delay)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Change feed task %s stopped: %s", task.get_name(), exc, exc_info=exc)
