"""HTTP API routes for the task tracker backend.

This module is the mutation pipeline: every write validates the caller's
access, commits through the TaskStore, and then publishes exactly one
realtime event with the fully populated entity before responding. Failed
writes raise before the broadcast, so nothing is published for them.
Realtime delivery itself lives in websocket.py and the realtime package.
"""

import time
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status

from auth import CurrentUser
from events.types import ProjectRemoval
from models.database import TaskStore
from models.schemas import (
    AddMemberRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    HealthResponse,
    Project,
    ProjectDetail,
    Task,
    TaskRemoval,
    TaskStatus,
    UpdateProjectRequest,
    UpdateTaskRequest,
    UserSummary,
)
from rate_limiter import enforce_rate_limit
from realtime import AuthorizationError, EventBroadcaster

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(enforce_rate_limit)])

# Task fields that may legitimately be cleared with an explicit null.
_NULLABLE_TASK_FIELDS = {"assignee_id", "due_date"}

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def get_store(request: Request) -> TaskStore:
    return request.app.state.store


def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster


Store = Annotated[TaskStore, Depends(get_store)]
Broadcaster = Annotated[EventBroadcaster, Depends(get_broadcaster)]


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _ensure_member(project: Project, user: UserSummary) -> None:
    if not project.has_member(user.id):
        raise AuthorizationError(f"User {user.id} is not a member of project {project.id}")


def _ensure_owner(project: Project, user: UserSummary) -> None:
    if project.owner.id != user.id:
        raise AuthorizationError(f"User {user.id} does not own project {project.id}")


async def _load_member_project(store: TaskStore, project_id: str, user: UserSummary) -> Project:
    """Return the project if the user belongs to it.

    A project the caller cannot see is reported exactly like a missing one.

    Raises:
        HTTPException: 404 if the project does not exist or the user is not a member.
    """
    project = await store.get_project(project_id)
    if project is None:
        logger.info("project_not_found", project_id=project_id, user_id=user.id)
        raise _not_found("Project not found")
    try:
        _ensure_member(project, user)
    except AuthorizationError as e:
        logger.info("project_access_denied", project_id=project_id, user_id=user.id, reason=str(e))
        raise _not_found("Project not found") from e
    return project


async def _load_owned_project(store: TaskStore, project_id: str, user: UserSummary) -> Project:
    """Return the project if the user owns it.

    Raises:
        HTTPException: 404 if the project does not exist or is owned by someone else.
    """
    project = await store.get_project(project_id)
    if project is None:
        raise _not_found("Project not found or you are not the owner")
    try:
        _ensure_owner(project, user)
    except AuthorizationError as e:
        logger.info("project_owner_check_failed", project_id=project_id, user_id=user.id)
        raise _not_found("Project not found or you are not the owner") from e
    return project


async def _load_member_task(store: TaskStore, task_id: str, user: UserSummary) -> tuple[Task, Project]:
    """Return a task and its project if the user belongs to that project.

    Raises:
        HTTPException: 404 if the task does not exist or the user may not see it.
    """
    task = await store.get_task(task_id)
    project = await store.get_project(task.project.id) if task else None
    if task is None or project is None or not project.has_member(user.id):
        logger.info("task_not_found", task_id=task_id, user_id=user.id)
        raise _not_found("Task not found")
    return task, project


def _ensure_assignable(project: Project, assignee_id: str | None) -> None:
    if assignee_id is not None and not project.has_member(assignee_id):
        logger.info("task_assignee_rejected", project_id=project.id, assignee_id=assignee_id)
        raise _bad_request("Assignee must be a member of the project")


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with realtime connection and delivery status.",
)
async def health_check(request: Request) -> HealthResponse:
    """Report liveness together with realtime layer counters.

    Returns:
        HealthResponse with connection, room and delivery statistics.
    """
    state = request.app.state
    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        active_connections=state.registry.count(),
        active_rooms=state.router.room_count(),
        tracked_clients=state.rate_limiter.tracked_keys(),
        delivery=state.broadcaster.metrics.snapshot(),
    )


# -----------------------------------------------------------------------------
# Projects
# -----------------------------------------------------------------------------


@router.get(
    "/api/projects",
    response_model=list[Project],
    summary="List projects",
    description="List every project the caller owns or is a member of.",
)
async def list_projects(user: CurrentUser, store: Store) -> list[Project]:
    return await store.list_projects_for_user(user.id)


@router.post(
    "/api/projects",
    response_model=Project,
    status_code=status.HTTP_201_CREATED,
    summary="Create a project",
)
async def create_project(
    body: CreateProjectRequest,
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> Project:
    """Create a project owned by the caller, who becomes its first member."""
    project = await store.create_project(
        owner_id=user.id,
        name=body.name,
        description=body.description,
        color=body.color,
    )
    broadcaster.project_created(project)
    return project


@router.get(
    "/api/projects/{project_id}",
    response_model=ProjectDetail,
    summary="Get a project",
    description="Get a project with its members and per-status task counts.",
)
async def get_project(
    project_id: Annotated[str, Path(description="The project ID")],
    user: CurrentUser,
    store: Store,
) -> ProjectDetail:
    project = await _load_member_project(store, project_id, user)
    counts = await store.task_counts(project_id)
    return ProjectDetail(**project.model_dump(), task_counts=counts)


@router.put(
    "/api/projects/{project_id}",
    response_model=Project,
    summary="Update a project",
    description="Update a project's name, description or color. Owner only.",
)
async def update_project(
    project_id: Annotated[str, Path(description="The project ID")],
    body: UpdateProjectRequest,
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> Project:
    await _load_owned_project(store, project_id, user)
    project = await store.update_project(
        project_id,
        name=body.name,
        description=body.description,
        color=body.color,
    )
    if project is None:
        raise _not_found("Project not found")
    broadcaster.project_updated(project)
    return project


@router.delete(
    "/api/projects/{project_id}",
    response_model=ProjectRemoval,
    summary="Delete a project",
    description="Delete a project together with all of its tasks. Owner only.",
)
async def delete_project(
    project_id: Annotated[str, Path(description="The project ID")],
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> ProjectRemoval:
    await _load_owned_project(store, project_id, user)
    if not await store.delete_project(project_id):
        raise _not_found("Project not found")
    broadcaster.project_deleted(project_id)
    return ProjectRemoval(project_id=project_id)


@router.post(
    "/api/projects/{project_id}/members",
    response_model=Project,
    summary="Add a project member",
    description="Add an existing user to the project by email. Owner only.",
)
async def add_member(
    project_id: Annotated[str, Path(description="The project ID")],
    body: AddMemberRequest,
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> Project:
    project = await _load_owned_project(store, project_id, user)

    new_member = await store.get_user_by_email(body.email)
    if new_member is None:
        raise _not_found("User not found")
    if project.has_member(new_member.id):
        raise _bad_request("User is already a member of this project")

    updated = await store.add_member(project_id, new_member.id)
    if updated is None:
        raise _not_found("Project not found")
    broadcaster.member_added(updated, new_member)
    return updated


@router.delete(
    "/api/projects/{project_id}/members/{member_id}",
    response_model=Project,
    summary="Remove a project member",
    description="Remove a member from the project. Owner only; the owner cannot be removed.",
)
async def remove_member(
    project_id: Annotated[str, Path(description="The project ID")],
    member_id: Annotated[str, Path(description="The user ID to remove")],
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> Project:
    project = await _load_owned_project(store, project_id, user)

    if member_id == project.owner.id:
        raise _bad_request("Cannot remove project owner")
    if not project.has_member(member_id):
        raise _not_found("Member not found")

    updated = await store.remove_member(project_id, member_id)
    if updated is None:
        raise _not_found("Project not found")
    broadcaster.member_removed(updated, member_id)
    return updated


@router.get(
    "/api/projects/{project_id}/tasks",
    response_model=list[Task],
    summary="List project tasks",
    description="List a project's tasks, newest first, optionally filtered by status or assignee.",
)
async def list_project_tasks(
    project_id: Annotated[str, Path(description="The project ID")],
    user: CurrentUser,
    store: Store,
    status_filter: Annotated[TaskStatus | None, Query(alias="status")] = None,
    assignee: Annotated[str | None, Query(description="Assignee user ID")] = None,
) -> list[Task]:
    await _load_member_project(store, project_id, user)
    return await store.list_tasks(project_id, status=status_filter, assignee_id=assignee)


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------


@router.post(
    "/api/tasks",
    response_model=Task,
    status_code=status.HTTP_201_CREATED,
    summary="Create a task",
)
async def create_task(
    body: CreateTaskRequest,
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> Task:
    """Create a task in a project the caller belongs to.

    Raises:
        HTTPException: 404 if the project is not visible to the caller,
            400 if the assignee is not a project member.
    """
    project = await _load_member_project(store, body.project_id, user)
    _ensure_assignable(project, body.assignee_id)

    task = await store.create_task(
        project_id=project.id,
        title=body.title,
        created_by=user.id,
        description=body.description,
        status=body.status,
        priority=body.priority,
        assignee_id=body.assignee_id,
        due_date=body.due_date,
        tags=body.tags,
    )
    broadcaster.task_created(task)
    return task


@router.get(
    "/api/tasks/{task_id}",
    response_model=Task,
    summary="Get a task",
)
async def get_task(
    task_id: Annotated[str, Path(description="The task ID")],
    user: CurrentUser,
    store: Store,
) -> Task:
    task, _ = await _load_member_task(store, task_id, user)
    return task


@router.put(
    "/api/tasks/{task_id}",
    response_model=Task,
    summary="Update a task",
    description="Partially update a task. Send assignee_id: null to unassign.",
)
async def update_task(
    task_id: Annotated[str, Path(description="The task ID")],
    body: UpdateTaskRequest,
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> Task:
    _, project = await _load_member_task(store, task_id, user)

    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in _NULLABLE_TASK_FIELDS
    }
    if "assignee_id" in changes:
        _ensure_assignable(project, changes["assignee_id"])

    task = await store.update_task(task_id, changes)
    if task is None:
        raise _not_found("Task not found")
    broadcaster.task_updated(task)
    return task


@router.delete(
    "/api/tasks/{task_id}",
    response_model=TaskRemoval,
    summary="Delete a task",
)
async def delete_task(
    task_id: Annotated[str, Path(description="The task ID")],
    user: CurrentUser,
    store: Store,
    broadcaster: Broadcaster,
) -> TaskRemoval:
    await _load_member_task(store, task_id, user)
    removal = await store.delete_task(task_id)
    if removal is None:
        raise _not_found("Task not found")
    broadcaster.task_deleted(removal.task_id, removal.project_id)
    return removal
