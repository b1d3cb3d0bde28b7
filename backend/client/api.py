"""Async REST client for the task tracker API, built on httpx.

Every mutation returns the same fully populated entity the server broadcasts,
parsed into the shared pydantic models, so the View Reconciler can fold REST
results and pushed events with the same rules.

Usage:
    >>> async with TaskApiClient("http://localhost:8000", token) as api:
    ...     tasks = await api.list_tasks("prj_1a2b3c4d5e6f")
"""

from datetime import datetime
from typing import Any

import httpx
import structlog

from events.types import ProjectRemoval
from models.schemas import (
    AuthResponse,
    Project,
    ProjectDetail,
    Task,
    TaskPriority,
    TaskRemoval,
    TaskStatus,
    UserSummary,
)

logger = structlog.get_logger(__name__)


class ApiError(Exception):
    """A REST call failed; nothing was changed locally.

    Attributes:
        status_code: HTTP status, or 0 when the request never got a response.
        message: Server-provided detail or transport error text.
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str):
        return detail
    if detail is not None:
        return str(detail)
    return response.reason_phrase


class TaskApiClient:
    """Typed wrapper over the project and task endpoints.

    Attributes:
        base_url: API root, e.g. ``http://localhost:8000``.
        token: Bearer credential sent with every request, replaced by
            ``register`` and ``login``.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        if token is not None:
            self._set_token(token)

    def _set_token(self, token: str) -> None:
        self.token = token
        self._client.headers["Authorization"] = f"Bearer {token}"

    async def __aenter__(self) -> "TaskApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("api_request_failed", method=method, path=path, error=str(e))
            raise ApiError(0, str(e)) from e

        if response.is_error:
            message = _error_message(response)
            logger.info(
                "api_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                detail=message,
            )
            raise ApiError(response.status_code, message)
        return response.json()

    # -----------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------

    async def register(self, name: str, email: str, password: str) -> AuthResponse:
        """Create an account; later calls use the returned token."""
        result = AuthResponse.model_validate(
            await self._request(
                "POST",
                "/api/auth/register",
                json={"name": name, "email": email, "password": password},
            )
        )
        self._set_token(result.token)
        return result

    async def login(self, email: str, password: str) -> AuthResponse:
        result = AuthResponse.model_validate(
            await self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        )
        self._set_token(result.token)
        return result

    async def me(self) -> UserSummary:
        data = await self._request("GET", "/api/auth/me")
        return UserSummary.model_validate(data["user"])

    # -----------------------------------------------------------------
    # Projects
    # -----------------------------------------------------------------

    async def list_projects(self) -> list[Project]:
        data = await self._request("GET", "/api/projects")
        return [Project.model_validate(item) for item in data]

    async def get_project(self, project_id: str) -> ProjectDetail:
        return ProjectDetail.model_validate(
            await self._request("GET", f"/api/projects/{project_id}")
        )

    async def create_project(self, name: str, description: str = "", color: str | None = None) -> Project:
        body: dict[str, Any] = {"name": name, "description": description}
        if color is not None:
            body["color"] = color
        return Project.model_validate(await self._request("POST", "/api/projects", json=body))

    async def update_project(self, project_id: str, **changes: Any) -> Project:
        return Project.model_validate(
            await self._request("PUT", f"/api/projects/{project_id}", json=changes)
        )

    async def delete_project(self, project_id: str) -> ProjectRemoval:
        return ProjectRemoval.model_validate(
            await self._request("DELETE", f"/api/projects/{project_id}")
        )

    async def add_member(self, project_id: str, email: str) -> Project:
        return Project.model_validate(
            await self._request("POST", f"/api/projects/{project_id}/members", json={"email": email})
        )

    async def remove_member(self, project_id: str, member_id: str) -> Project:
        return Project.model_validate(
            await self._request("DELETE", f"/api/projects/{project_id}/members/{member_id}")
        )

    # -----------------------------------------------------------------
    # Tasks
    # -----------------------------------------------------------------

    async def list_tasks(
        self,
        project_id: str,
        *,
        status: TaskStatus | None = None,
        assignee_id: str | None = None,
    ) -> list[Task]:
        params: dict[str, str] = {}
        if status is not None:
            params["status"] = str(status)
        if assignee_id is not None:
            params["assignee"] = assignee_id
        data = await self._request("GET", f"/api/projects/{project_id}/tasks", params=params)
        return [Task.model_validate(item) for item in data]

    async def get_task(self, task_id: str) -> Task:
        return Task.model_validate(await self._request("GET", f"/api/tasks/{task_id}"))

    async def create_task(
        self,
        project_id: str,
        title: str,
        *,
        description: str = "",
        status: TaskStatus = TaskStatus.TODO,
        priority: TaskPriority = TaskPriority.MEDIUM,
        assignee_id: str | None = None,
        due_date: datetime | None = None,
        tags: list[str] | None = None,
    ) -> Task:
        body: dict[str, Any] = {
            "project_id": project_id,
            "title": title,
            "description": description,
            "status": str(status),
            "priority": str(priority),
            "assignee_id": assignee_id,
            "due_date": due_date.isoformat() if due_date else None,
            "tags": tags or [],
        }
        return Task.model_validate(await self._request("POST", "/api/tasks", json=body))

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        """Send a partial update; pass ``assignee_id=None`` to unassign."""
        body = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in changes.items()
        }
        return Task.model_validate(await self._request("PUT", f"/api/tasks/{task_id}", json=body))

    async def delete_task(self, task_id: str) -> TaskRemoval:
        return TaskRemoval.model_validate(await self._request("DELETE", f"/api/tasks/{task_id}"))
