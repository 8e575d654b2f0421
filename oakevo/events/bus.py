"""Event Bus — run-scoped pub/sub for evolution lifecycle events.

The loop driver is handed a bus instance and awaits every emission, so
subscribers observe events in run order. Supports topic wildcards:
"evolution.*" matches "evolution.started", "evolution.complete".
"""

from __future__ import annotations

import asyncio
import fnmatch
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Awaitable

import structlog
from pydantic import BaseModel, Field

from oakevo.types import new_id

EventHandler = Callable[["Event"], Awaitable[None]]

logger = structlog.get_logger()

# Topics emitted by the evolution loop
EVOLUTION_STARTED = "evolution.started"
GENERATION_COMPLETE = "evolution.generation_complete"
NEW_BEST_AGENT = "evolution.new_best_agent"
EVOLUTION_COMPLETE = "evolution.complete"
EVOLUTION_STOPPED = "evolution.stopped"
EVOLUTION_ERROR = "evolution.error"


class Event(BaseModel):
    """A lifecycle event."""

    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class EventBus:
    """Async pub/sub event bus with wildcard topic matching.

    Subscribe to "evolution.*" to receive all loop events.
    Subscribe to "*" to receive everything.
    """

    def __init__(self, history_limit: int = 500) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: list[Event] = []
        self._history_limit = history_limit
        self._lock = asyncio.Lock()

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe to events matching a topic pattern."""
        self._subscribers[pattern].append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        """Remove a subscription."""
        handlers = self._subscribers.get(pattern, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Emit an event and wait until every matching subscriber has handled it."""
        event = Event(topic=topic, data=data or {}, source=source)

        async with self._lock:
            self._history.append(event)
            if len(self._history) > self._history_limit:
                self._history = self._history[-self._history_limit:]

        tasks = []
        for pattern, handlers in self._subscribers.items():
            if fnmatch.fnmatch(topic, pattern):
                for handler in handlers:
                    tasks.append(handler(event))

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning("event_handler_failed", topic=topic, error=str(result))

        return event

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Get recent events, newest first, optionally filtered by topic pattern."""
        if topic_filter == "*":
            events = self._history
        else:
            events = [
                e for e in self._history
                if fnmatch.fnmatch(e.topic, topic_filter)
            ]
        return list(reversed(events[-limit:]))

    @property
    def subscriber_count(self) -> int:
        return sum(len(h) for h in self._subscribers.values())

    def topics(self) -> list[str]:
        """Get all topics that have been emitted."""
        return list({e.topic for e in self._history})
