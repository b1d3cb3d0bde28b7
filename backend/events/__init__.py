"""Event system for project realtime synchronization.

This package defines the typed events pushed from the server to every client
viewing a project. The server publishes them through the Event Broadcaster
(``realtime.broadcaster``); clients parse them back with ``parse_event`` and
dispatch them through their Client Event Bus (``client.bus``).

Usage:
    >>> from events import TaskCreatedEvent, parse_event, serialize_event
    >>>
    >>> event = TaskCreatedEvent(project_id=task.project.id, data=task)
    >>> wire = serialize_event(event)
    >>> assert parse_event(wire) == event

Event Flow:
    1. A REST mutation commits and populates the resulting entity
    2. The Event Broadcaster publishes one event to the project's room
    3. The websocket writer forwards it to each room member
    4. The client bus dispatches it to the View Reconciler
"""

from events.types import (
    EventType,
    MemberAdded,
    MemberAddedEvent,
    MemberRemoved,
    MemberRemovedEvent,
    ProjectCreatedEvent,
    ProjectDeletedEvent,
    ProjectRemoval,
    ProjectUpdatedEvent,
    RealtimeEvent,
    TaskCreatedEvent,
    TaskDeletedEvent,
    TaskUpdatedEvent,
    parse_event,
    serialize_event,
)

__all__ = [
    # Event kinds
    "EventType",
    "RealtimeEvent",
    # Variants
    "TaskCreatedEvent",
    "TaskUpdatedEvent",
    "TaskDeletedEvent",
    "ProjectCreatedEvent",
    "ProjectUpdatedEvent",
    "ProjectDeletedEvent",
    "MemberAddedEvent",
    "MemberRemovedEvent",
    # Payloads
    "ProjectRemoval",
    "MemberAdded",
    "MemberRemoved",
    # Wire helpers
    "parse_event",
    "serialize_event",
]
