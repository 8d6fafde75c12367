"""Event bus carrying scheduler, sale and post activity to the admin surface."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union
import logging

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types, named `<scope>.<what>`."""
    # Scheduler lifecycle
    SCHEDULER_STARTED = "scheduler.started"
    SCHEDULER_STOPPED = "scheduler.stopped"
    SCHEDULER_FORCE_STOPPED = "scheduler.force_stopped"
    SCHEDULER_RESET = "scheduler.reset"

    # Tick outcome
    TICK_COMPLETED = "tick.completed"
    TICK_FAILED = "tick.failed"

    # Sale events
    SALE_DETECTED = "sale.detected"
    SALE_ACCEPTED = "sale.accepted"

    # Post events
    POST_PUBLISHED = "post.published"
    POST_SKIPPED = "post.skipped"
    POST_FAILED = "post.failed"

    # Log events
    LOG = "log"

    @property
    def scope(self) -> str:
        """scheduler, tick, sale, post or log."""
        return self.value.split(".", 1)[0]

    @property
    def notable(self) -> bool:
        """Outcomes an operator wants to see in the server log."""
        return self in (EventType.POST_PUBLISHED, EventType.POST_FAILED, EventType.TICK_FAILED)

    @property
    def buffered(self) -> bool:
        """Whether new WebSocket clients get this event in their backlog."""
        return self is not EventType.SALE_DETECTED


@dataclass
class Event:
    """Event object passed through the event bus."""
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_message(self) -> Dict[str, Any]:
        """Flat WebSocket message: type and timestamp next to the payload."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }


EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """
    Async event bus.

    The scheduler, pipeline and publisher emit; the bot manager listens to
    everything and forwards it to WebSocket clients. A failing handler is
    logged and never stops the emitter.
    """

    def __init__(self, max_history: int = 500):
        self._handlers: Set[EventHandler] = set()
        self._history: List[Event] = []
        self._max_history = max_history

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every event."""
        self._handlers.add(handler)

    async def publish(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        for handler in list(self._handlers):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event.type.value}: {e}")

    async def emit(self, event_type: EventType, **data) -> None:
        """Convenience method to emit an event."""
        await self.publish(Event(type=event_type, data=data))

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        scope: Optional[str] = None,
        limit: int = 100,
    ) -> List[Event]:
        """Recent events, optionally narrowed to one type or one scope."""
        events = self._history
        if event_type:
            events = [e for e in events if e.type == event_type]
        if scope:
            events = [e for e in events if e.type.scope == scope]
        return events[-limit:]


# Global event bus instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
