"""
Lifecycle event bus.

The engine publishes an ``EngineEvent`` at each lifecycle step (provider
registration, request start, cache hit or miss, retries, completion,
cancellation). Observers subscribe to all events or to specific types.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PROVIDER_REGISTERED = "provider-registered"
    PROVIDER_INITIALIZED = "provider-initialized"
    REQUEST_STARTED = "request-started"
    CACHE_HIT = "cache-hit"
    CACHE_MISS = "cache-miss"
    RETRY = "retry"
    FALLBACK = "fallback"
    USAGE_TRACKED = "usage-tracked"
    REQUEST_SUCCESS = "request-success"
    REQUEST_ERROR = "request-error"
    REQUEST_CANCELLED = "request-cancelled"
    ALL_REQUESTS_CANCELLED = "all-requests-cancelled"


@dataclass(frozen=True)
class EngineEvent:
    """A single published event."""
    type: EventType
    request_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[EngineEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe hub.

    Handlers run in subscription order inside ``publish``. A handler that
    raises is logged and skipped; remaining handlers still run.
    """

    def __init__(self, history_size: int = 100):
        self._subscribers: list[tuple[EventHandler, frozenset[EventType]]] = []
        self._history: deque[EngineEvent] = deque(maxlen=history_size)

    def subscribe(self, handler: EventHandler, *event_types: EventType) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            handler: Called with each matching event
            *event_types: Types to receive; none means every type

        Returns:
            A callable that removes the subscription
        """
        entry = (handler, frozenset(EventType(t) for t in event_types))
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: EngineEvent) -> None:
        self._history.append(event)
        for handler, types in list(self._subscribers):
            if types and event.type not in types:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.type.value)

    def emit(self, event_type: EventType, request_id: str | None = None, **data: Any) -> EngineEvent:
        """Build and publish an event in one call."""
        event = EngineEvent(type=event_type, request_id=request_id, data=data)
        self.publish(event)
        return event

    def recent(self, limit: int = 10) -> list[EngineEvent]:
        """Most recent events, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def clear(self) -> None:
        self._history.clear()
