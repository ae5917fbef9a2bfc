"""Typed worktree events and the bus that delivers them.

Consumers either register callbacks (``EventBus.subscribe``) or open a bounded
asyncio channel (``EventBus.open_channel``). Handler errors are logged and
never propagate to the emitter.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ..utils.error_handling import log_and_ignore
from .models import ResourceAlert, WorktreeRecord, WorktreeStatus, utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    WORKTREE_CREATED = "worktree:created"
    WORKTREE_STATUS_CHANGED = "worktree:status-changed"
    WORKTREE_DESTROYED = "worktree:destroyed"
    RESOURCE_ALERT = "resource:alert"
    ERROR = "error"


@dataclass(frozen=True)
class WorktreeEvent:
    """Lifecycle change of a single worktree."""
    type: EventType
    record: WorktreeRecord
    previous_status: Optional[WorktreeStatus] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ResourceAlertEvent:
    alert: ResourceAlert
    type: EventType = EventType.RESOURCE_ALERT
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ErrorEvent:
    """A failed operation, with an optional user-facing hint."""
    operation: str
    error: Exception
    context: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None
    type: EventType = EventType.ERROR
    timestamp: datetime = field(default_factory=utcnow)


Event = Union[WorktreeEvent, ResourceAlertEvent, ErrorEvent]
EventHandler = Callable[[Event], None]


class _Subscription:
    def __init__(self, handler: EventHandler, event_types: Optional[Set[EventType]]):
        self.handler = handler
        self.event_types = event_types

    def accepts(self, event: Event) -> bool:
        return self.event_types is None or event.type in self.event_types


class EventChannel:
    """Bounded queue of events; the oldest event is dropped when full."""

    def __init__(self, bus: "EventBus", maxsize: int, event_types: Optional[Set[EventType]]):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.event_types = event_types
        self.dropped = 0

    def _offer(self, event: Event) -> None:
        if self.event_types is not None and event.type not in self.event_types:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self) -> Event:
        return await self._queue.get()

    def get_nowait(self) -> Event:
        return self._queue.get_nowait()

    def drain(self) -> List[Event]:
        """Return every queued event without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._bus._channels.discard(self)


class EventBus:
    """Explicit publish/subscribe for worktree events."""

    def __init__(self):
        self._subscriptions: List[_Subscription] = []
        self._channels: Set[EventChannel] = set()

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """Register a callback, optionally filtered by event type.

        Returns:
            Unsubscribe function.
        """
        subscription = _Subscription(
            handler, set(event_types) if event_types is not None else None
        )
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def open_channel(
        self,
        maxsize: int = 100,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> EventChannel:
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        channel = EventChannel(
            self, maxsize, set(event_types) if event_types is not None else None
        )
        self._channels.add(channel)
        return channel

    def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber and channel."""
        for subscription in list(self._subscriptions):
            if not subscription.accepts(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                log_and_ignore(
                    e,
                    f"Event handler failed for {event.type.value}",
                    logger_instance=logger,
                    level=logging.ERROR,
                )

        for channel in list(self._channels):
            channel._offer(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions) + len(self._channels)
