"""Event bus for Footnoter.

In-process pub/sub for decoupling components. Events are emitted by the
orchestrator and consumed by the CLI progress display and tests.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Base event structure."""

    event_type: str
    document: str
    data: dict = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()


EventHandler = Callable[[Event], None]


class EventBus:
    """In-process event bus.

    Handlers run synchronously in subscription order, global handlers
    first. A failing handler is logged and never stops the others.
    """

    def __init__(self, max_history: int = 1000) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._history: list[Event] = []
        self._max_history = max_history

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to a specific event type."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to all events."""
        self._global_handlers.append(handler)

    def emit(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        for handler in [*self._global_handlers, *self._handlers.get(event.event_type, [])]:
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "Event handler %s failed for %s: %s",
                    getattr(handler, "__name__", handler), event.event_type, e,
                )

    def recent_events(self, limit: int = 50) -> list[Event]:
        """Return recent events."""
        return self._history[-limit:]

    def events_of(self, event_type: str) -> list[Event]:
        return [e for e in self._history if e.event_type == event_type]
