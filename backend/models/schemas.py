"""Pydantic schemas for entities and API request/response models.

The entity models (UserSummary, Project, Task) are the single shape shared by
REST responses, pushed realtime events and the client library, so the two
delivery paths stay structurally identical. All models use Pydantic v2.
"""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PROJECT_COLOR = "#3B82F6"

_HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class TaskStatus(StrEnum):
    """Workflow column a task sits in."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"


class TaskPriority(StrEnum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public profile of a user as embedded in projects and tasks."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="User identifier", examples=["usr_1a2b3c4d5e6f"])
    name: str = Field(description="Display name")
    email: str = Field(description="Email address")
    avatar: str = Field(default="", description="Avatar URL")


class ProjectRef(BaseModel):
    """Minimal project reference embedded in every task."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    color: str = DEFAULT_PROJECT_COLOR


class Project(BaseModel):
    """A shared project with its resolved owner and member list.

    The owner is always part of ``members``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Project identifier", examples=["prj_1a2b3c4d5e6f"])
    name: str
    description: str = ""
    owner: UserSummary
    members: list[UserSummary] = Field(default_factory=list)
    color: str = DEFAULT_PROJECT_COLOR
    created_at: float = Field(description="Unix timestamp of creation")
    updated_at: float = Field(description="Unix timestamp of the last update")

    def member_ids(self) -> set[str]:
        """Return the identifiers of every member, owner included."""
        return {member.id for member in self.members}

    def has_member(self, user_id: str) -> bool:
        return user_id in self.member_ids()

    def ref(self) -> ProjectRef:
        """Return the reference embedded in tasks of this project."""
        return ProjectRef(id=self.id, name=self.name, color=self.color)


class TaskCounts(BaseModel):
    """Number of tasks per status for a project."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    todo: int = 0
    in_progress: int = Field(default=0, alias="in-progress")
    done: int = 0


class ProjectDetail(Project):
    """Project returned by the single-project endpoint, with task counts."""

    task_counts: TaskCounts = Field(default_factory=TaskCounts)


class Task(BaseModel):
    """A task with every reference resolved (project, assignee, creator)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Task identifier", examples=["tsk_1a2b3c4d5e6f"])
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee: UserSummary | None = None
    project: ProjectRef
    due_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: UserSummary
    created_at: float
    updated_at: float


class TaskRemoval(BaseModel):
    """Identifiers of a deleted task; the entity itself no longer exists."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    project_id: str


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class CreateProjectRequest(BaseModel):
    """Request body for creating a project."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100, examples=["Website relaunch"])
    description: str = Field(default="", max_length=500)
    color: str = Field(default=DEFAULT_PROJECT_COLOR, pattern=_HEX_COLOR_PATTERN)


class UpdateProjectRequest(BaseModel):
    """Request body for updating a project. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=_HEX_COLOR_PATTERN)


class RegisterRequest(BaseModel):
    """Request body for creating an account."""

    name: str = Field(min_length=1, max_length=100, examples=["Ada Lovelace"])
    email: str = Field(pattern=_EMAIL_PATTERN, examples=["ada@example.com"])
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: str = Field(pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=128)


class AddMemberRequest(BaseModel):
    """Request body for adding a member to a project by email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=_EMAIL_PATTERN, examples=["ada@example.com"])


class CreateTaskRequest(BaseModel):
    """Request body for creating a task."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200, examples=["Draft landing page copy"])
    description: str = Field(default="", max_length=1000)
    project_id: str = Field(min_length=1)
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_id: str | None = None
    due_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)


class UpdateTaskRequest(BaseModel):
    """Request body for updating a task.

    Only fields present in the request are applied, so an explicit
    ``"assignee_id": null`` unassigns the task while an omitted one keeps it.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None
    due_date: datetime | None = None
    tags: list[str] | None = None


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class AuthResponse(BaseModel):
    """A freshly issued bearer token and the account it identifies."""

    message: str
    token: str
    user: UserSummary


class CurrentUserResponse(BaseModel):
    user: UserSummary


class DeliveryStats(BaseModel):
    """Realtime delivery counters since process start."""

    published: int = Field(default=0, ge=0, description="Events published")
    delivered: int = Field(default=0, ge=0, description="Per-connection deliveries")
    failed: int = Field(default=0, ge=0, description="Per-connection delivery failures")
    by_type: dict[str, int] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response with realtime layer status."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    active_connections: int = Field(
        default=0,
        description="Number of authenticated websocket connections",
    )
    active_rooms: int = Field(
        default=0,
        description="Number of project rooms with at least one member",
    )
    tracked_clients: int = Field(
        default=0,
        description="Client addresses held by the rate limiter",
    )
    delivery: DeliveryStats = Field(default_factory=DeliveryStats)
