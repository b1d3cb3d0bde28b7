"""Event Broadcaster: publish one typed event to one project room.

The Mutation Pipeline calls the broadcaster synchronously, after the write
is committed and the resulting entity is fully populated, and before the
HTTP response is returned. Publishing never blocks and never raises because
of a recipient: each connection has its own bounded outbound queue, and a
full or closed queue only costs that connection this one event.
"""

import structlog

from events.types import (
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
    serialize_event,
)
from metrics import DeliveryMetrics
from models.schemas import Project, Task, TaskRemoval, UserSummary
from realtime.errors import DeliveryError
from realtime.rooms import RoomRouter
from realtime.sessions import SessionRegistry

logger = structlog.get_logger(__name__)


class EventBroadcaster:
    """Fans a realtime event out to the members of a project room.

    The broadcaster holds references to the router and registry it was
    given; it never mutates room membership itself.

    Usage:
        >>> broadcaster = EventBroadcaster(router, registry)
        >>> broadcaster.task_updated(task)
        2
    """

    def __init__(
        self,
        router: RoomRouter,
        registry: SessionRegistry,
        metrics: DeliveryMetrics | None = None,
    ) -> None:
        self._router = router
        self._registry = registry
        self.metrics = metrics or DeliveryMetrics()

    def publish(self, project_id: str, event: RealtimeEvent) -> int:
        """Deliver an event to every connection currently in the project's room.

        Args:
            project_id: The room to publish to; must match ``event.project_id``.
            event: The fully populated event.

        Returns:
            Number of connections the event was handed to.

        Raises:
            ValueError: If the event belongs to another project.
        """
        if event.project_id != project_id:
            raise ValueError(
                f"Event for project {event.project_id} published to room {project_id}"
            )

        message = serialize_event(event)
        members = self._router.members_of(project_id)
        delivered = 0
        failed = 0

        for connection_id in members:
            connection = self._registry.get(connection_id)
            if connection is None:
                failed += 1
                logger.warning(
                    "event_delivery_failed",
                    project_id=project_id,
                    connection_id=connection_id,
                    event_type=event.type,
                    reason="connection_not_registered",
                )
                continue
            try:
                connection.deliver(message)
                delivered += 1
            except DeliveryError as e:
                failed += 1
                logger.warning(
                    "event_delivery_failed",
                    project_id=project_id,
                    connection_id=connection_id,
                    event_type=event.type,
                    reason=str(e),
                )

        self.metrics.record_publish(event.type, delivered=delivered, failed=failed)
        logger.debug(
            "event_published",
            project_id=project_id,
            event_type=event.type,
            subscriber_count=len(members),
            delivered=delivered,
        )
        return delivered

    # -----------------------------------------------------------------
    # Typed helpers, one per event kind
    # -----------------------------------------------------------------

    def task_created(self, task: Task) -> int:
        return self.publish(task.project.id, TaskCreatedEvent(project_id=task.project.id, data=task))

    def task_updated(self, task: Task) -> int:
        return self.publish(task.project.id, TaskUpdatedEvent(project_id=task.project.id, data=task))

    def task_deleted(self, task_id: str, project_id: str) -> int:
        """Publish a deletion; the task is gone, so only its ids travel."""
        return self.publish(
            project_id,
            TaskDeletedEvent(
                project_id=project_id,
                data=TaskRemoval(task_id=task_id, project_id=project_id),
            ),
        )

    def project_created(self, project: Project) -> int:
        return self.publish(project.id, ProjectCreatedEvent(project_id=project.id, data=project))

    def project_updated(self, project: Project) -> int:
        return self.publish(project.id, ProjectUpdatedEvent(project_id=project.id, data=project))

    def project_deleted(self, project_id: str) -> int:
        return self.publish(
            project_id,
            ProjectDeletedEvent(project_id=project_id, data=ProjectRemoval(project_id=project_id)),
        )

    def member_added(self, project: Project, new_member: UserSummary) -> int:
        """Publish the full updated project so clients can rebuild assignee lists."""
        return self.publish(
            project.id,
            MemberAddedEvent(
                project_id=project.id,
                data=MemberAdded(project=project, new_member=new_member),
            ),
        )

    def member_removed(self, project: Project, removed_member_id: str) -> int:
        return self.publish(
            project.id,
            MemberRemovedEvent(
                project_id=project.id,
                data=MemberRemoved(project=project, removed_member_id=removed_member_id),
            ),
        )
