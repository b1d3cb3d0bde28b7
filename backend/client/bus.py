"""Client Event Bus: re-delivers pushed events to registered listeners.

One bus belongs to one realtime connection. Listeners are keyed by event
kind and called synchronously, in registration order, with the event's
payload (``event.data``). A listener that raises is logged and skipped; the
remaining listeners and later events are unaffected. Events nobody listens
for are dropped.

Usage:
    >>> bus = ClientEventBus()
    >>> bus.on(EventType.TASK_CREATED, lambda task: print(task.title))
    >>> bus.dispatch_raw({"type": "task-created", "project_id": "prj_1", "data": {...}})
"""

import json
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from events.types import EventType, RealtimeEvent, parse_event

logger = structlog.get_logger(__name__)

Listener = Callable[[Any], None]


class ClientEventBus:
    """Listener registry keyed by event kind with error-tolerant dispatch."""

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = {}

    def on(self, kind: EventType | str, callback: Listener) -> None:
        """Register a listener for an event kind.

        Raises:
            ValueError: If ``kind`` is not a known event kind.
        """
        self._listeners.setdefault(EventType(kind), []).append(callback)

    def off(self, kind: EventType | str, callback: Listener) -> None:
        """Remove the first registration of ``callback`` for ``kind``, if any."""
        listeners = self._listeners.get(EventType(kind))
        if not listeners:
            return
        try:
            listeners.remove(callback)
        except ValueError:
            return
        if not listeners:
            del self._listeners[EventType(kind)]

    def clear(self) -> None:
        self._listeners.clear()

    def listener_count(self, kind: EventType | str | None = None) -> int:
        """Number of listeners for one kind, or for all kinds when omitted."""
        if kind is None:
            return sum(len(listeners) for listeners in self._listeners.values())
        return len(self._listeners.get(EventType(kind), ()))

    def dispatch(self, event: RealtimeEvent) -> int:
        """Invoke every listener registered for the event's kind.

        Returns:
            Number of listeners that completed without raising.
        """
        kind = EventType(event.type)
        # Copy so listeners may register or unregister while being called.
        listeners = list(self._listeners.get(kind, ()))
        succeeded = 0
        for callback in listeners:
            try:
                callback(event.data)
                succeeded += 1
            except Exception:
                logger.exception(
                    "listener_failed",
                    event_type=event.type,
                    project_id=event.project_id,
                    listener=getattr(callback, "__qualname__", repr(callback)),
                )
        return succeeded

    def dispatch_raw(self, message: str | bytes | dict[str, Any]) -> int:
        """Decode a wire message into a typed event and dispatch it.

        Malformed messages and unknown kinds are logged and dropped.

        Returns:
            Number of listeners that completed without raising.
        """
        try:
            if isinstance(message, (str, bytes)):
                message = json.loads(message)
            event = parse_event(message)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("event_message_invalid", error=str(e))
            return 0
        return self.dispatch(event)
