"""Tests for models/database.py -- aiosqlite TaskStore persistence."""

import sqlite3
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from models.database import StoreError, TaskStore
from models.schemas import TaskStatus, UserSummary

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
async def alice(store: TaskStore) -> UserSummary:
    return await store.create_user("Alice", "Alice@Example.com")


@pytest.fixture()
async def bob(store: TaskStore) -> UserSummary:
    return await store.create_user("Bob", "bob@example.com")


# =========================================================================
# Users
# =========================================================================


class TestUsers:
    async def test_create_and_get(self, store: TaskStore, alice: UserSummary) -> None:
        assert alice.id.startswith("usr_")
        assert alice.email == "alice@example.com"
        assert await store.get_user(alice.id) == alice

    async def test_lookup_by_email_is_case_insensitive(
        self, store: TaskStore, alice: UserSummary
    ) -> None:
        assert await store.get_user_by_email("ALICE@example.com") == alice
        assert await store.get_user_by_email("nobody@example.com") is None

    async def test_duplicate_email_raises(self, store: TaskStore, alice: UserSummary) -> None:
        with pytest.raises(sqlite3.IntegrityError):
            await store.create_user("Other Alice", "alice@example.com")


# =========================================================================
# Projects and membership
# =========================================================================


class TestProjects:
    async def test_owner_is_first_member(self, store: TaskStore, alice: UserSummary) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        assert project.id.startswith("prj_")
        assert project.owner == alice
        assert project.members == [alice]
        assert project.color == "#3B82F6"

    async def test_add_and_remove_member(
        self, store: TaskStore, alice: UserSummary, bob: UserSummary
    ) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")

        added = await store.add_member(project.id, bob.id)
        assert [m.id for m in added.members] == [alice.id, bob.id]

        removed = await store.remove_member(project.id, bob.id)
        assert [m.id for m in removed.members] == [alice.id]

    async def test_list_projects_for_member(
        self, store: TaskStore, alice: UserSummary, bob: UserSummary
    ) -> None:
        shared = await store.create_project(owner_id=alice.id, name="Shared")
        await store.create_project(owner_id=alice.id, name="Private")
        await store.add_member(shared.id, bob.id)

        projects = await store.list_projects_for_user(bob.id)

        assert [p.id for p in projects] == [shared.id]

    async def test_update_project(self, store: TaskStore, alice: UserSummary) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        updated = await store.update_project(project.id, name="Relaunch", color="#FF0000")
        assert updated.name == "Relaunch"
        assert updated.color == "#FF0000"
        assert updated.description == ""

    async def test_delete_project_removes_tasks(
        self, store: TaskStore, alice: UserSummary
    ) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        task = await store.create_task(project_id=project.id, title="Doomed", created_by=alice.id)

        assert await store.delete_project(project.id)

        assert await store.get_project(project.id) is None
        assert await store.get_task(task.id) is None
        assert not await store.delete_project(project.id)


# =========================================================================
# Tasks
# =========================================================================


class TestTasks:
    async def test_create_task_is_fully_populated(
        self, store: TaskStore, alice: UserSummary, bob: UserSummary
    ) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch", color="#10B981")
        await store.add_member(project.id, bob.id)
        due = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)

        task = await store.create_task(
            project_id=project.id,
            title="Write copy",
            created_by=alice.id,
            assignee_id=bob.id,
            due_date=due,
            tags=["marketing", "web"],
        )

        assert task.id.startswith("tsk_")
        assert task.assignee == bob
        assert task.created_by == alice
        assert task.project.id == project.id
        assert task.project.color == "#10B981"
        assert task.due_date == due
        assert task.tags == ["marketing", "web"]
        assert task.status == TaskStatus.TODO
        assert await store.get_task(task.id) == task

    async def test_list_tasks_newest_first_with_filters(
        self, store: TaskStore, alice: UserSummary, bob: UserSummary
    ) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        await store.add_member(project.id, bob.id)
        first = await store.create_task(project_id=project.id, title="First", created_by=alice.id)
        second = await store.create_task(
            project_id=project.id,
            title="Second",
            created_by=alice.id,
            assignee_id=bob.id,
            status=TaskStatus.DONE,
        )

        assert [t.id for t in await store.list_tasks(project.id)] == [second.id, first.id]
        assert [t.id for t in await store.list_tasks(project.id, status=TaskStatus.TODO)] == [first.id]
        assert [t.id for t in await store.list_tasks(project.id, assignee_id=bob.id)] == [second.id]

    async def test_update_task_partial_and_unassign(
        self, store: TaskStore, alice: UserSummary, bob: UserSummary
    ) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        await store.add_member(project.id, bob.id)
        task = await store.create_task(
            project_id=project.id, title="Draft", created_by=alice.id, assignee_id=bob.id
        )

        updated = await store.update_task(task.id, {"status": TaskStatus.IN_PROGRESS})
        assert updated.status == TaskStatus.IN_PROGRESS
        assert updated.assignee == bob
        assert updated.title == "Draft"

        unassigned = await store.update_task(task.id, {"assignee_id": None})
        assert unassigned.assignee is None

    async def test_update_missing_task(self, store: TaskStore) -> None:
        assert await store.update_task("tsk_missing", {"title": "x"}) is None

    async def test_delete_task(self, store: TaskStore, alice: UserSummary) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        task = await store.create_task(project_id=project.id, title="Gone", created_by=alice.id)

        removal = await store.delete_task(task.id)

        assert removal.task_id == task.id
        assert removal.project_id == project.id
        assert await store.delete_task(task.id) is None

    async def test_task_counts(self, store: TaskStore, alice: UserSummary) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        for status in (TaskStatus.TODO, TaskStatus.TODO, TaskStatus.DONE):
            await store.create_task(
                project_id=project.id, title="t", created_by=alice.id, status=status
            )

        counts = await store.task_counts(project.id)

        assert (counts.todo, counts.in_progress, counts.done) == (2, 0, 1)

    async def test_create_task_raises_when_row_cannot_be_reloaded(
        self, store: TaskStore, alice: UserSummary, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        project = await store.create_project(owner_id=alice.id, name="Launch")
        monkeypatch.setattr(store, "_load_task", AsyncMock(return_value=None))

        with pytest.raises(StoreError):
            await store.create_task(project_id=project.id, title="Lost", created_by=alice.id)

    async def test_create_project_raises_when_row_cannot_be_reloaded(
        self, store: TaskStore, alice: UserSummary, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(store, "_load_project", AsyncMock(return_value=None))

        with pytest.raises(StoreError):
            await store.create_project(owner_id=alice.id, name="Lost")
