"""
Scan lifecycle notifications.

`MusicLibrary` publishes a `LibraryScanEvent` when a scan starts, every
`progress_interval` processed files, and when it completes or fails.
Subscribers register for an exact event type, a dotted prefix
("library.*") or everything ("*").

    bus = EventBus()

    async def show(event: LibraryScanEvent) -> None:
        print(event.status, event.scanned, event.total)

    await bus.subscribe("library.*", show)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]


@dataclass
class Event:
    event_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type}


@dataclass
class LibraryScanEvent(Event):
    """
    One step of a scan.

    `scanned`/`total` count files of the reconcile pass; `result` is only set
    on "completed" and carries `ScanResult.to_dict()`.
    """

    event_type: str = field(default="library.scan", init=False)
    status: str = ""
    root: str = ""
    scanned: int = 0
    total: int = 0
    current_path: str = ""
    error: str = ""
    result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(status=self.status, root=self.root, scanned=self.scanned, total=self.total)
        optional = {"current_path": self.current_path, "error": self.error}
        payload.update({k: v for k, v in optional.items() if v})
        if self.result is not None:
            payload["result"] = self.result
        return payload


def _pattern_matches(pattern: str, event_type: str) -> bool:
    if pattern == "*" or pattern == event_type:
        return True
    return pattern.endswith(".*") and event_type.startswith(pattern[:-1])


class EventBus:
    """
    Async pub/sub.

    Handlers run one after another in subscription order. A handler that
    raises is logged and skipped; the publisher never sees the error.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: str, handler: EventHandler) -> None:
        async with self._lock:
            self._subscriptions.append((event_type, handler))
        logger.debug("Subscribed %s to %s", getattr(handler, "__name__", handler), event_type)

    async def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove one subscription; False if it was not registered."""
        async with self._lock:
            try:
                self._subscriptions.remove((event_type, handler))
            except ValueError:
                return False
        return True

    async def publish(self, event: Event) -> int:
        """Deliver `event` to every matching handler. Returns how many succeeded."""
        async with self._lock:
            handlers = [h for p, h in self._subscriptions if _pattern_matches(p, event.event_type)]

        delivered = 0
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type)
                continue
            delivered += 1
        return delivered

    async def clear(self) -> None:
        async with self._lock:
            self._subscriptions.clear()


# Default bus used when a library is created without one
event_bus = EventBus()
