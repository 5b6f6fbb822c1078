"""In-process pub/sub with per-(topic, key) last-value replay.

Results of background work (session commits, preference rollbacks) are
published here. A view that attaches after the event already fired still
receives it: ``subscribe`` replays the cached last value for its
``(topic, key)`` before returning.

Usage:
    bus = EventBus()

    def on_outcome(event: BusEvent) -> None:
        render(event.payload)

    unsubscribe = bus.subscribe(Topic.OUTCOME_COMMITTED, session_id, on_outcome)
    ...
    unsubscribe()

One bus instance is created per client and injected; there is no module
level singleton.
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 512


class Topic(str, enum.Enum):
    OUTCOME_ESTIMATED = "outcome-estimated"
    OUTCOME_COMMITTED = "outcome-committed"
    OUTCOME_COMMIT_FAILED = "outcome-commit-failed"
    GOALS_CHANGED = "goals-changed"
    PREFERENCE_COMMITTED = "preference-committed"
    PREFERENCE_ROLLED_BACK = "preference-rolled-back"
    REMINDERS_RESCHEDULE = "reminders-reschedule"


@dataclass(frozen=True, slots=True)
class BusEvent:
    topic: Topic
    key: str
    payload: Any
    discardable: bool = False
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Handler = Callable[[BusEvent], None]


class EventBus:
    """Typed topics, keyed subscriptions, bounded last-value cache.

    Handlers run synchronously in the publisher's call. A handler that raises
    is logged and counted; it does not stop the remaining handlers and never
    reaches the publisher.
    """

    def __init__(self, cache_size: int = DEFAULT_CACHE_SIZE) -> None:
        if cache_size < 1:
            raise ValueError("cache_size must be at least 1")
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[Topic, str], BusEvent] = OrderedDict()
        self._handlers: dict[tuple[Topic, str], list[Handler]] = {}
        self._publish_count = 0
        self._error_count = 0

    def publish(self, topic: Topic, key: str, payload: Any, *, discardable: bool = False) -> int:
        """Cache the event as the last value for (topic, key) and notify handlers.

        Returns:
            Number of handlers that ran without raising.
        """
        event = BusEvent(topic=topic, key=key, payload=payload, discardable=discardable)
        slot = (topic, key)
        self._cache[slot] = event
        self._cache.move_to_end(slot)
        while len(self._cache) > self._cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("Evicted cached event %s/%s", evicted[0].value, evicted[1])
        self._publish_count += 1

        notified = 0
        for handler in list(self._handlers.get(slot, ())):
            if self._deliver(handler, event):
                notified += 1
        return notified

    def subscribe(self, topic: Topic, key: str, handler: Handler) -> Callable[[], None]:
        """Attach *handler* to (topic, key); replays the cached event if there is one.

        Returns:
            A function that detaches the handler. Calling it twice is harmless.
        """
        slot = (topic, key)
        self._handlers.setdefault(slot, []).append(handler)

        cached = self._cache.get(slot)
        if cached is not None:
            logger.debug("Replaying %s/%s to late subscriber", topic.value, key)
            self._deliver(handler, cached)

        def unsubscribe() -> None:
            handlers = self._handlers.get(slot)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[slot]

        return unsubscribe

    def last_event(self, topic: Topic, key: str) -> BusEvent | None:
        return self._cache.get((topic, key))

    def forget(self, topic: Topic, key: str) -> bool:
        """Drop the cached value for (topic, key) so it is no longer replayed."""
        return self._cache.pop((topic, key), None) is not None

    def subscriber_count(self, topic: Topic, key: str) -> int:
        return len(self._handlers.get((topic, key), ()))

    @property
    def stats(self) -> dict[str, int]:
        return {
            "cached": len(self._cache),
            "subscriptions": sum(len(h) for h in self._handlers.values()),
            "published": self._publish_count,
            "errors": self._error_count,
        }

    def _deliver(self, handler: Handler, event: BusEvent) -> bool:
        try:
            handler(event)
            return True
        except Exception:
            self._error_count += 1
            logger.exception(
                "EventBus handler %s failed on %s/%s",
                getattr(handler, "__name__", repr(handler)),
                event.topic.value,
                event.key,
            )
            return False
