"""In-process change notifications published by the store after each commit."""

from __future__ import annotations

import queue
from dataclasses import dataclass
from threading import RLock
from typing import Any, Iterable, Mapping, Optional


INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENT_TYPES = (INSERT, UPDATE, DELETE)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    new: Optional[dict[str, Any]]
    old: Optional[dict[str, Any]]


class Subscription:
    """Queue of change events for one table, optionally filtered by column equality."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        event_types: Iterable[str],
        filters: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._feed = feed
        self.table = table
        self.event_types = frozenset(event_types)
        self.filters = dict(filters or {})
        self._queue: "queue.Queue[ChangeEvent]" = queue.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.event_type not in self.event_types:
            return False
        row = event.new if event.new is not None else event.old
        if row is None:
            return not self.filters
        return all(row.get(column) == value for column, value in self.filters.items())

    def deliver(self, event: ChangeEvent) -> None:
        self._queue.put(event)

    def poll(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Return the next event, or None when nothing arrives within `timeout`."""
        try:
            if timeout is None:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ChangeEvent]:
        events: list[ChangeEvent] = []
        while True:
            event = self.poll()
            if event is None:
                return events
            events.append(event)

    def close(self) -> None:
        if not self.closed:
            self._feed.unsubscribe(self)
            self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = RLock()
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        table: str,
        event_types: Iterable[str] = EVENT_TYPES,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Subscription:
        requested = tuple(event_types)
        unknown = set(requested) - set(EVENT_TYPES)
        if unknown:
            raise ValueError(f"Unknown event types: {sorted(unknown)}")
        subscription = Subscription(self, table, requested, filters)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [item for item in self._subscriptions if item.matches(event)]
        for subscription in targets:
            subscription.deliver(event)
