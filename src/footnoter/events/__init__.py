"""Chunk and document lifecycle events."""

from footnoter.events.bus import Event, EventBus, EventHandler

__all__ = ["Event", "EventBus", "EventHandler"]
