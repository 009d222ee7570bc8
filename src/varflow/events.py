"""Engine event bus: per-variable notifications for renderers and observers.

Each engine owns its own bus. Handlers may be plain functions or coroutine
functions; `emit` awaits the latter in subscription order.

Example:
    bus = EventBus()
    bus.subscribe(EventType.VARIABLE_RESOLVED, lambda e: print(e.name, e.value))
    bus.subscribe_all(audit_log.append)
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    VARIABLE_RESOLVED = "variable_resolved"
    VARIABLE_MODIFIED = "variable_modified"
    COMMAND_FAILED = "command_failed"


@dataclass(frozen=True)
class Event:
    """One notification. `name`/`value` are unset for command failures."""

    event_type: EventType
    scope_id: str
    name: str | None = None
    value: Any = None
    error: str | None = None


EventHandler = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """Type-specific and wildcard subscriptions with a bounded history."""

    def __init__(self, max_history: int = 100):
        self._max_history = max_history
        self._handlers: dict[EventType, list[EventHandler]] = {}
        self._wildcard_handlers: list[EventHandler] = []
        self._history: list[Event] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        if handler not in self._wildcard_handlers:
            self._wildcard_handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> bool:
        try:
            self._handlers.get(event_type, []).remove(handler)
        except ValueError:
            return False
        return True

    def unsubscribe_all(self, handler: EventHandler) -> bool:
        try:
            self._wildcard_handlers.remove(handler)
        except ValueError:
            return False
        return True

    async def emit(self, event: Event) -> None:
        """Deliver `event`. A failing handler is logged and skipped."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history :]

        logger.debug("emitting %s (scope=%s, name=%s)", event.event_type.value, event.scope_id, event.name)
        for handler in [*self._handlers.get(event.event_type, []), *self._wildcard_handlers]:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("handler failed for %s", event.event_type.value)

    async def resolved(self, scope_id: str, name: str, value: Any) -> None:
        await self.emit(Event(EventType.VARIABLE_RESOLVED, scope_id, name, value))

    async def modified(self, scope_id: str, name: str, value: Any) -> None:
        await self.emit(Event(EventType.VARIABLE_MODIFIED, scope_id, name, value))

    async def command_failed(self, scope_id: str, error: Exception) -> None:
        await self.emit(Event(EventType.COMMAND_FAILED, scope_id, error=str(error)))

    def history(self, limit: int = 20, event_type: EventType | None = None) -> list[Event]:
        events = self._history
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def handler_count(self) -> int:
        return sum(len(h) for h in self._handlers.values()) + len(self._wildcard_handlers)
