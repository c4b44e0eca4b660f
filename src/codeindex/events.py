"""EventBus and event types for watcher-driven index updates."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of filesystem change the watcher reports."""

    FILE_CHANGED = "file_changed"
    FILE_DELETED = "file_deleted"


@dataclass(frozen=True, slots=True)
class FileEvent:
    """Immutable record of one observed filesystem change.

    Attributes:
        event_type: Whether the path was added/modified or removed.
        path: Host path of the affected file or directory.
        folder_id: Id of the indexed folder the path belongs to.
        local_path: The path as seen by this process, when it differs.
    """

    event_type: EventType
    path: str
    folder_id: str
    local_path: str | None = None


FileEventHandler = Callable[[FileEvent], Awaitable[None]]


class EventBus:
    """Fans :class:`FileEvent` objects out to async subscribers.

    A subscriber sees the event types it asked for, in subscription order.
    A subscriber that raises is logged and skipped; the rest still run.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[frozenset[EventType], FileEventHandler]] = []

    def subscribe(self, handler: FileEventHandler, *event_types: EventType) -> Callable[[], None]:
        """Deliver events of *event_types* (default: all) to *handler*.

        Returns a callable that cancels the subscription; calling it twice
        is harmless.
        """
        entry = (frozenset(event_types or EventType), handler)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    async def emit(self, event: FileEvent) -> None:
        for types, handler in list(self._subscribers):
            if event.event_type not in types:
                continue
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Subscriber %r failed on %s %s",
                    handler,
                    event.event_type.value,
                    event.path,
                    exc_info=True,
                )
