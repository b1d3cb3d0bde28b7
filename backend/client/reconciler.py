"""View Reconciler: one project's task list kept in sync from two sources.

A ``ProjectView`` folds REST results and pushed events into a single
ordered, duplicate-free task list for the project currently on screen. Both
sources go through the same ``TaskIndex`` rules, which are idempotent, so a
client that receives both its own REST response and the broadcast echo of
the same mutation ends up in the same state as if it had seen only one:

    created  -> insert at the front if absent, else ignore
    updated  -> replace if present, else ignore
    deleted  -> remove if present, else no-op

Every asynchronous result is tagged with the view generation that requested
it; a result arriving after the view closed or moved to another project is
discarded.
"""

from collections import OrderedDict
from collections.abc import Callable, Iterable, Iterator
from enum import StrEnum
from typing import Any, Protocol

import structlog

from client.bus import ClientEventBus
from events.types import EventType, MemberAdded, MemberRemoved, ProjectRemoval
from models.schemas import Project, Task, TaskRemoval, TaskStatus, UserSummary

logger = structlog.get_logger(__name__)


class TaskIndex:
    """Tasks keyed by id; iteration order is display order (newest first)."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: OrderedDict[str, Task] = OrderedDict()
        self.replace_all(tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def ids(self) -> list[str]:
        return list(self._tasks)

    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def insert(self, task: Task) -> bool:
        """Prepend a task unless one with the same id is already present."""
        if task.id in self._tasks:
            return False
        self._tasks[task.id] = task
        self._tasks.move_to_end(task.id, last=False)
        return True

    def replace(self, task: Task) -> bool:
        """Replace a present task in place; absent tasks are ignored."""
        if task.id not in self._tasks:
            return False
        self._tasks[task.id] = task
        return True

    def remove(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Swap in a fetched list wholesale, keeping its order."""
        fresh: OrderedDict[str, Task] = OrderedDict()
        for task in tasks:
            fresh.setdefault(task.id, task)
        self._tasks = fresh

    def filtered(
        self,
        status: TaskStatus | str | None = None,
        assignee_id: str | None = None,
    ) -> list[Task]:
        """Project the list by status and/or assignee without changing it."""
        return [
            task
            for task in self._tasks.values()
            if (status is None or task.status == status)
            and (assignee_id is None or (task.assignee is not None and task.assignee.id == assignee_id))
        ]


class ViewState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


class RoomChannel(Protocol):
    """The part of RealtimeConnection a view needs."""

    def join(self, project_id: str) -> None: ...

    def leave(self, project_id: str) -> None: ...


class ProjectApi(Protocol):
    """The part of TaskApiClient a view needs."""

    async def get_project(self, project_id: str) -> Project: ...

    async def list_tasks(self, project_id: str) -> list[Task]: ...

    async def create_task(self, project_id: str, title: str, **fields: Any) -> Task: ...

    async def update_task(self, task_id: str, **changes: Any) -> Task: ...

    async def delete_task(self, task_id: str) -> TaskRemoval: ...


class ProjectView:
    """Reconciled view of one project at a time.

    State machine: unloaded -> loading -> ready -> (close) unloaded.

    Events that arrive while loading are held back and replayed, in order,
    on top of the fetched list, so nothing published between the join and
    the fetch is lost.

    Attributes:
        state: Current ViewState.
        project_id: Project being viewed, or None when unloaded.
        project: Latest known project (members drive assignee options).
        tasks: The reconciled task list.
        deleted: True if the viewed project was deleted while open.
    """

    def __init__(self, api: ProjectApi, connection: RoomChannel, bus: ClientEventBus) -> None:
        self._api = api
        self._connection = connection
        self._bus = bus

        self.state = ViewState.UNLOADED
        self.project_id: str | None = None
        self.project: Project | None = None
        self.tasks = TaskIndex()
        self.deleted = False

        self._generation = 0
        self._pending: list[Callable[[], None]] = []
        self._subscriptions: list[tuple[EventType, Callable[[Any], None]]] = []

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def open(self, project_id: str) -> None:
        """Enter the view: subscribe, join the room, fetch project and tasks.

        Opening while another project is shown closes that one first.

        Raises:
            ApiError: If the fetch fails; the view is closed again.
        """
        if self.state is not ViewState.UNLOADED:
            self.close()

        self._generation += 1
        generation = self._generation
        self.project_id = project_id
        self.project = None
        self.tasks = TaskIndex()
        self.deleted = False
        self.state = ViewState.LOADING

        self._subscribe()
        self._connection.join(project_id)
        logger.debug("project_view_loading", project_id=project_id, generation=generation)

        try:
            project = await self._api.get_project(project_id)
            tasks = await self._api.list_tasks(project_id)
        except Exception:
            if self._is_current(generation):
                self.close()
            raise

        if not self._is_current(generation):
            logger.debug("stale_fetch_discarded", project_id=project_id, generation=generation)
            return

        self.project = project
        self.tasks.replace_all(tasks)
        self.state = ViewState.READY

        pending, self._pending = self._pending, []
        for apply in pending:
            apply()
        logger.info(
            "project_view_ready",
            project_id=project_id,
            task_count=len(self.tasks),
            replayed=len(pending),
        )

    def close(self) -> None:
        """Leave the view: leave the room, drop listeners and local state."""
        if self.state is ViewState.UNLOADED:
            return
        project_id = self.project_id
        if project_id is not None:
            self._connection.leave(project_id)
        self._unsubscribe()
        self._generation += 1
        self._pending = []
        self.project_id = None
        self.project = None
        self.tasks = TaskIndex()
        self.state = ViewState.UNLOADED
        logger.debug("project_view_closed", project_id=project_id)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.state is not ViewState.UNLOADED

    def _subscribe(self) -> None:
        handlers: dict[EventType, Callable[[Any], None]] = {
            EventType.TASK_CREATED: self._on_task_created,
            EventType.TASK_UPDATED: self._on_task_updated,
            EventType.TASK_DELETED: self._on_task_deleted,
            EventType.PROJECT_UPDATED: self._on_project_updated,
            EventType.PROJECT_MEMBER_ADDED: self._on_member_changed,
            EventType.PROJECT_MEMBER_REMOVED: self._on_member_changed,
            EventType.PROJECT_DELETED: self._on_project_deleted,
        }
        for kind, handler in handlers.items():
            self._bus.on(kind, handler)
            self._subscriptions.append((kind, handler))

    def _unsubscribe(self) -> None:
        for kind, handler in self._subscriptions:
            self._bus.off(kind, handler)
        self._subscriptions = []

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def filtered(
        self,
        status: TaskStatus | str | None = None,
        assignee_id: str | None = None,
    ) -> list[Task]:
        return self.tasks.filtered(status=status, assignee_id=assignee_id)

    def assignee_options(self) -> list[UserSummary]:
        """Users a task in this project may be assigned to."""
        return list(self.project.members) if self.project else []

    # -----------------------------------------------------------------
    # Local mutations (REST)
    # -----------------------------------------------------------------

    async def create_task(self, title: str, **fields: Any) -> Task:
        """Create a task in the viewed project and insert it from the response.

        Raises:
            RuntimeError: If no project is open.
            ApiError: If the server rejects the request; nothing changes locally.
        """
        project_id = self._require_open()
        generation = self._generation
        task = await self._api.create_task(project_id, title, **fields)
        self._apply_result(generation, lambda: self.tasks.insert(task), "create", task.id)
        return task

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        self._require_open()
        generation = self._generation
        task = await self._api.update_task(task_id, **changes)
        self._apply_result(generation, lambda: self.tasks.replace(task), "update", task_id)
        return task

    async def delete_task(self, task_id: str) -> TaskRemoval:
        self._require_open()
        generation = self._generation
        removal = await self._api.delete_task(task_id)
        self._apply_result(generation, lambda: self.tasks.remove(task_id), "delete", task_id)
        return removal

    def _require_open(self) -> str:
        if self.state is ViewState.UNLOADED or self.project_id is None:
            raise RuntimeError("No project view is open")
        return self.project_id

    def _apply_result(self, generation: int, apply: Callable[[], bool], action: str, task_id: str) -> None:
        if not self._is_current(generation):
            logger.debug("stale_result_discarded", action=action, task_id=task_id)
            return
        if self.state is ViewState.LOADING:
            self._pending.append(apply)
            return
        apply()

    # -----------------------------------------------------------------
    # Event handlers
    # -----------------------------------------------------------------

    def _apply_event(self, project_id: str, apply: Callable[[], Any]) -> None:
        if project_id != self.project_id:
            logger.debug("event_for_other_project_ignored", project_id=project_id)
            return
        if self.state is ViewState.LOADING:
            self._pending.append(apply)
            return
        apply()

    def _on_task_created(self, task: Task) -> None:
        self._apply_event(task.project.id, lambda: self.tasks.insert(task))

    def _on_task_updated(self, task: Task) -> None:
        self._apply_event(task.project.id, lambda: self.tasks.replace(task))

    def _on_task_deleted(self, removal: TaskRemoval) -> None:
        self._apply_event(removal.project_id, lambda: self.tasks.remove(removal.task_id))

    def _set_project(self, project: Project) -> None:
        self.project = project

    def _on_project_updated(self, project: Project) -> None:
        self._apply_event(project.id, lambda: self._set_project(project))

    def _on_member_changed(self, change: MemberAdded | MemberRemoved) -> None:
        self._apply_event(change.project.id, lambda: self._set_project(change.project))

    def _on_project_deleted(self, removal: ProjectRemoval) -> None:
        if removal.project_id != self.project_id:
            return
        logger.info("viewed_project_deleted", project_id=removal.project_id)
        self.close()
        self.deleted = True
