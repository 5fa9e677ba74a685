"""
Sync progress events.

The orchestrator publishes SyncEvent objects on an EventStream; anything
interested (the CLI progress display, the HTTP API, tests) subscribes
instead of handing callbacks into the sync code.

Two ways to consume:
- ``subscribe(fn)``: fn is called synchronously for every event
- ``channel()``: a queue.Queue that receives every event, for consumers on
  another thread

Example:
    >>> stream = EventStream()
    >>> seen = []
    >>> stream.subscribe(seen.append)
    >>> stream.publish(SyncEvent(kind=EventKind.PHASE_STARTED, phase=SyncPhase.INITIAL_ISSUES))
    >>> seen[0].kind
    <EventKind.PHASE_STARTED: 'phase_started'>
"""

import logging
import queue
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from flowpulse.core.store.models import SyncPhase

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    SYNC_STARTED = "sync_started"
    PHASE_STARTED = "phase_started"
    PROGRESS = "progress"
    PHASE_COMPLETED = "phase_completed"
    RETRY = "retry"
    SYNC_COMPLETED = "sync_completed"
    SYNC_STOPPED = "sync_stopped"
    SYNC_FAILED = "sync_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEvent(BaseModel):
    """One progress notification."""

    kind: EventKind
    phase: SyncPhase | None = None
    counts: dict[str, int] = Field(default_factory=dict)
    percent: int | None = None
    message: str | None = None
    at: datetime = Field(default_factory=_utcnow)


Subscriber = Callable[[SyncEvent], None]


class EventStream:
    """Fan-out of sync events to subscribers and queue channels."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._channels: list[queue.Queue[SyncEvent]] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a callable; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def channel(self, maxsize: int = 0) -> "queue.Queue[SyncEvent]":
        """Open a queue that receives every subsequent event."""
        q: queue.Queue[SyncEvent] = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._channels.append(q)
        return q

    def close_channel(self, q: "queue.Queue[SyncEvent]") -> None:
        with self._lock:
            if q in self._channels:
                self._channels.remove(q)

    def publish(self, event: SyncEvent) -> None:
        """
        Deliver an event to every subscriber and channel.

        A failing subscriber is logged and skipped; it never interrupts the
        sync. A full channel drops the event for that channel only.
        """
        with self._lock:
            subscribers = list(self._subscribers)
            channels = list(self._channels)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.warning(f"Sync event subscriber failed on {event.kind.value}: {e}")
        for q in channels:
            try:
                q.put_nowait(event)
            except queue.Full:
                logger.debug(f"Dropping {event.kind.value} event for a full channel")


class EventRecorder:
    """Subscriber that keeps every event, for callers that want the history."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def __call__(self, event: SyncEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[SyncEvent]:
        return [e for e in self.events if e.kind == kind]
