"""Models module for entity schemas and persistence.

This module exposes the entity and request/response models used by the HTTP
API, the realtime events and the client library.
"""

from models.schemas import (
    DEFAULT_PROJECT_COLOR,
    AddMemberRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    DeliveryStats,
    HealthResponse,
    Project,
    ProjectDetail,
    ProjectRef,
    Task,
    TaskCounts,
    TaskPriority,
    TaskRemoval,
    TaskStatus,
    UpdateProjectRequest,
    UpdateTaskRequest,
    UserSummary,
)

__all__ = [
    "DEFAULT_PROJECT_COLOR",
    "AddMemberRequest",
    "CreateProjectRequest",
    "CreateTaskRequest",
    "DeliveryStats",
    "HealthResponse",
    "Project",
    "ProjectDetail",
    "ProjectRef",
    "Task",
    "TaskCounts",
    "TaskPriority",
    "TaskRemoval",
    "TaskStatus",
    "UpdateProjectRequest",
    "UpdateTaskRequest",
    "UserSummary",
]
