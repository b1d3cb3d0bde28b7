"""Shared test fixtures for backend tests.

Provides realtime components wired the way the application wires them, an
application instance backed by a temporary SQLite database, seeded users with
valid bearer tokens, and entity factories for pure unit tests.
"""

import sys
from collections.abc import AsyncGenerator, Generator

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from realtime.rooms import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth import TokenVerifier  # noqa: E402
from config import Settings  # noqa: E402
from main import create_app  # noqa: E402
from metrics import DeliveryMetrics  # noqa: E402
from models.database import TaskStore  # noqa: E402
from models.schemas import (  # noqa: E402
    Project,
    ProjectRef,
    Task,
    TaskStatus,
    UserSummary,
)
from realtime import EventBroadcaster, RoomRouter, SessionRegistry  # noqa: E402

TEST_SECRET = "test-secret"

# ---------------------------------------------------------------------------
# Realtime components
# ---------------------------------------------------------------------------


@pytest.fixture()
def verifier() -> TokenVerifier:
    return TokenVerifier(secret=TEST_SECRET)


@pytest.fixture()
def registry(verifier: TokenVerifier) -> SessionRegistry:
    return SessionRegistry(verifier, send_queue_size=8)


@pytest.fixture()
def room_router() -> RoomRouter:
    return RoomRouter()


@pytest.fixture()
def broadcaster(room_router: RoomRouter, registry: SessionRegistry) -> EventBroadcaster:
    return EventBroadcaster(room_router, registry, metrics=DeliveryMetrics())


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.fixture()
async def store(tmp_path) -> AsyncGenerator[TaskStore, None]:
    """Return an initialized TaskStore on a fresh database file."""
    task_store = TaskStore(str(tmp_path / "tasks.db"))
    await task_store.init()
    yield task_store


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture()
def app_settings(tmp_path) -> Settings:
    return Settings(
        jwt_secret=TEST_SECRET,
        database_path=str(tmp_path / "app.db"),
        rate_limit_requests=1000,
        ws_send_queue_size=32,
        log_level="WARNING",
        log_format="text",
    )


@pytest.fixture()
def app(app_settings: Settings) -> FastAPI:
    return create_app(app_settings)


@pytest.fixture()
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """TestClient with the application lifespan running."""
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def users(app: FastAPI, client: TestClient) -> dict[str, UserSummary]:
    """Seed three users: alice, bob and carol."""
    store: TaskStore = app.state.store
    return {
        name: client.portal.call(store.create_user, name.title(), f"{name}@example.com")
        for name in ("alice", "bob", "carol")
    }


@pytest.fixture()
def tokens(app: FastAPI, users: dict[str, UserSummary]) -> dict[str, str]:
    verifier: TokenVerifier = app.state.token_verifier
    return {name: verifier.issue(user.id) for name, user in users.items()}


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Entity Factories
# ---------------------------------------------------------------------------


def make_user(user_id: str = "usr_alice", name: str = "Alice") -> UserSummary:
    return UserSummary(id=user_id, name=name, email=f"{name.lower()}@example.com")


def make_project(
    project_id: str = "prj_x",
    owner: UserSummary | None = None,
    members: list[UserSummary] | None = None,
) -> Project:
    """Create a Project; the owner is always included in the members."""
    owner = owner or make_user()
    members = members if members is not None else [owner]
    if owner.id not in {m.id for m in members}:
        members = [owner, *members]
    return Project(
        id=project_id,
        name=f"Project {project_id}",
        owner=owner,
        members=members,
        created_at=1700000000.0,
        updated_at=1700000000.0,
    )


def make_task(
    task_id: str = "tsk_1",
    project_id: str = "prj_x",
    title: str = "Write docs",
    status: TaskStatus = TaskStatus.TODO,
    assignee: UserSummary | None = None,
    updated_at: float = 1700000000.0,
) -> Task:
    return Task(
        id=task_id,
        title=title,
        status=status,
        assignee=assignee,
        project=ProjectRef(id=project_id, name=f"Project {project_id}"),
        created_by=make_user(),
        created_at=1700000000.0,
        updated_at=updated_at,
    )
