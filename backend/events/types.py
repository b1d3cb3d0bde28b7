"""Event type definitions for the realtime synchronization layer.

Every committed mutation of a project or task produces exactly one event.
Events are a tagged union discriminated by ``type``; each variant carries the
fully populated resulting entity (or, for deletions, the identifiers), never a
diff. Events are frozen once built and carry no ordering field: the only
ordering guarantee is per-connection delivery order.

Wire format::

    {"type": "task-updated", "project_id": "prj_...", "data": {...}}
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from models.schemas import Project, Task, TaskRemoval, UserSummary


class EventType(StrEnum):
    """All event kinds pushed to project rooms."""

    # Task events
    TASK_CREATED = "task-created"
    TASK_UPDATED = "task-updated"
    TASK_DELETED = "task-deleted"

    # Project events
    PROJECT_CREATED = "project-created"
    PROJECT_UPDATED = "project-updated"
    PROJECT_DELETED = "project-deleted"

    # Membership events
    PROJECT_MEMBER_ADDED = "project-member-added"
    PROJECT_MEMBER_REMOVED = "project-member-removed"


class ProjectRemoval(BaseModel):
    """Identifier of a deleted project."""

    model_config = ConfigDict(frozen=True)

    project_id: str


class MemberAdded(BaseModel):
    """Updated project plus the member that joined it."""

    model_config = ConfigDict(frozen=True)

    project: Project
    new_member: UserSummary


class MemberRemoved(BaseModel):
    """Updated project plus the identifier of the member that left it."""

    model_config = ConfigDict(frozen=True)

    project: Project
    removed_member_id: str


class _BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str = Field(description="Room the event was published to")


class TaskCreatedEvent(_BaseEvent):
    type: Literal["task-created"] = "task-created"
    data: Task


class TaskUpdatedEvent(_BaseEvent):
    type: Literal["task-updated"] = "task-updated"
    data: Task


class TaskDeletedEvent(_BaseEvent):
    type: Literal["task-deleted"] = "task-deleted"
    data: TaskRemoval


class ProjectCreatedEvent(_BaseEvent):
    type: Literal["project-created"] = "project-created"
    data: Project


class ProjectUpdatedEvent(_BaseEvent):
    type: Literal["project-updated"] = "project-updated"
    data: Project


class ProjectDeletedEvent(_BaseEvent):
    type: Literal["project-deleted"] = "project-deleted"
    data: ProjectRemoval


class MemberAddedEvent(_BaseEvent):
    type: Literal["project-member-added"] = "project-member-added"
    data: MemberAdded


class MemberRemovedEvent(_BaseEvent):
    type: Literal["project-member-removed"] = "project-member-removed"
    data: MemberRemoved


RealtimeEvent = Annotated[
    TaskCreatedEvent
    | TaskUpdatedEvent
    | TaskDeletedEvent
    | ProjectCreatedEvent
    | ProjectUpdatedEvent
    | ProjectDeletedEvent
    | MemberAddedEvent
    | MemberRemovedEvent,
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[RealtimeEvent] = TypeAdapter(RealtimeEvent)


def parse_event(message: dict[str, Any]) -> RealtimeEvent:
    """Validate a wire message into its typed event variant.

    Raises:
        pydantic.ValidationError: If the message is not a known event or its
            payload does not match the variant's schema.
    """
    return _event_adapter.validate_python(message)


def serialize_event(event: RealtimeEvent) -> dict[str, Any]:
    """Return the JSON-ready wire representation of an event."""
    return event.model_dump(mode="json")
