"""SQLite-based project and task persistence using aiosqlite.

This module provides the TaskStore class backing the REST mutation pipeline.
Every read returns fully populated entities (owner, members, assignee and
creator resolved to ``UserSummary``), which is exactly the shape the
realtime layer broadcasts. Write failures are logged and re-raised: a
mutation that did not commit must never be broadcast.

Tables:
    users: Public user profiles.
    projects: Project metadata and owner.
    project_members: Membership (the owner is always a member).
    tasks: Tasks belonging to a project.

Usage:
    >>> from models.database import TaskStore
    >>> store = TaskStore("./data/tasks.db")
    >>> await store.init()
    >>> ada = await store.create_user(name="Ada", email="ada@example.com")
    >>> project = await store.create_project(owner_id=ada.id, name="Launch")
"""

import json
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from models.schemas import (
    DEFAULT_PROJECT_COLOR,
    Project,
    ProjectRef,
    Task,
    TaskCounts,
    TaskPriority,
    TaskRemoval,
    TaskStatus,
    UserSummary,
)

logger = structlog.get_logger(__name__)

# Columns a task update may touch, in the order they are written.
_TASK_UPDATE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "assignee_id",
    "due_date",
    "tags",
)


class StoreError(Exception):
    """A write committed but the row could not be read back."""


def new_id(prefix: str) -> str:
    """Generate a prefixed identifier such as ``tsk_1a2b3c4d5e6f``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _encode_due_date(value: datetime | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class TaskStore:
    """Async SQLite store for users, projects, memberships and tasks.

    A short-lived connection is opened per operation, mirroring how the
    request handlers use the store. Foreign keys are enforced so deleting a
    project removes its memberships and tasks.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        try:
            async with self._connect() as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        avatar TEXT NOT NULL DEFAULT '',
                        password_hash TEXT NOT NULL DEFAULT '',
                        created_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS projects (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        color TEXT NOT NULL,
                        owner_id TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL,
                        FOREIGN KEY (owner_id) REFERENCES users(id)
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS project_members (
                        project_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        added_at REAL NOT NULL,
                        PRIMARY KEY (project_id, user_id),
                        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                        FOREIGN KEY (user_id) REFERENCES users(id)
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS tasks (
                        id TEXT PRIMARY KEY,
                        project_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        status TEXT NOT NULL DEFAULT 'todo',
                        priority TEXT NOT NULL DEFAULT 'medium',
                        assignee_id TEXT,
                        due_date TEXT,
                        tags TEXT NOT NULL DEFAULT '[]',
                        created_by TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL,
                        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                        FOREIGN KEY (assignee_id) REFERENCES users(id),
                        FOREIGN KEY (created_by) REFERENCES users(id)
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_tasks_project_created
                    ON tasks(project_id, created_at DESC)
                """)
                await db.commit()
            logger.info("task_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "task_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Population helpers
    # -----------------------------------------------------------------

    async def _users_by_id(
        self, db: aiosqlite.Connection, user_ids: set[str]
    ) -> dict[str, UserSummary]:
        if not user_ids:
            return {}
        placeholders = ",".join("?" for _ in user_ids)
        cursor = await db.execute(
            f"SELECT id, name, email, avatar FROM users WHERE id IN ({placeholders})",
            tuple(user_ids),
        )
        rows = await cursor.fetchall()
        return {row["id"]: UserSummary(**dict(row)) for row in rows}

    async def _load_project(self, db: aiosqlite.Connection, project_id: str) -> Project | None:
        cursor = await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
        row = await cursor.fetchone()
        if row is None:
            return None

        cursor = await db.execute(
            """
            SELECT u.id, u.name, u.email, u.avatar
            FROM project_members m JOIN users u ON u.id = m.user_id
            WHERE m.project_id = ?
            ORDER BY m.added_at, m.rowid
            """,
            (project_id,),
        )
        members = [UserSummary(**dict(member)) for member in await cursor.fetchall()]
        owner = next((m for m in members if m.id == row["owner_id"]), None)
        if owner is None:
            owner = (await self._users_by_id(db, {row["owner_id"]}))[row["owner_id"]]

        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            owner=owner,
            members=members,
            color=row["color"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _build_tasks(
        self, db: aiosqlite.Connection, rows: list[aiosqlite.Row]
    ) -> list[Task]:
        user_ids = {row["created_by"] for row in rows}
        user_ids.update(row["assignee_id"] for row in rows if row["assignee_id"])
        users = await self._users_by_id(db, user_ids)

        project_refs: dict[str, ProjectRef] = {}
        for project_id in {row["project_id"] for row in rows}:
            cursor = await db.execute(
                "SELECT id, name, color FROM projects WHERE id = ?", (project_id,)
            )
            project_row = await cursor.fetchone()
            if project_row is not None:
                project_refs[project_id] = ProjectRef(**dict(project_row))

        return [
            Task(
                id=row["id"],
                title=row["title"],
                description=row["description"],
                status=TaskStatus(row["status"]),
                priority=TaskPriority(row["priority"]),
                assignee=users.get(row["assignee_id"]) if row["assignee_id"] else None,
                project=project_refs[row["project_id"]],
                due_date=row["due_date"],
                tags=json.loads(row["tags"]),
                created_by=users[row["created_by"]],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def _load_task(self, db: aiosqlite.Connection, task_id: str) -> Task | None:
        cursor = await db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return (await self._build_tasks(db, [row]))[0]

    # -----------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------

    async def create_user(
        self, name: str, email: str, avatar: str = "", password_hash: str = ""
    ) -> UserSummary:
        """Insert a user profile. Emails are stored lower-cased and must be unique.

        An empty ``password_hash`` creates an account that cannot log in.
        """
        user = UserSummary(id=new_id("usr"), name=name, email=email.lower(), avatar=avatar)
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO users (id, name, email, avatar, password_hash, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (user.id, user.name, user.email, user.avatar, password_hash, time.time()),
                )
                await db.commit()
        except Exception as e:
            logger.error("user_create_failed", email=user.email, error=str(e))
            raise
        logger.info("user_created", user_id=user.id)
        return user

    async def get_user(self, user_id: str) -> UserSummary | None:
        async with self._connect() as db:
            return (await self._users_by_id(db, {user_id})).get(user_id)

    async def get_user_by_email(self, email: str) -> UserSummary | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, name, email, avatar FROM users WHERE email = ?",
                (email.lower(),),
            )
            row = await cursor.fetchone()
            return UserSummary(**dict(row)) if row else None

    async def get_credentials(self, email: str) -> tuple[UserSummary, str] | None:
        """Return the user with this email and their stored password hash."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, name, email, avatar, password_hash FROM users WHERE email = ?",
                (email.lower(),),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        fields = dict(row)
        password_hash = fields.pop("password_hash")
        return UserSummary(**fields), password_hash

    # -----------------------------------------------------------------
    # Projects
    # -----------------------------------------------------------------

    async def create_project(
        self,
        owner_id: str,
        name: str,
        description: str = "",
        color: str = DEFAULT_PROJECT_COLOR,
    ) -> Project:
        """Insert a project and make its owner the first member.

        Returns:
            The populated project.
        """
        project_id = new_id("prj")
        now = time.time()
        try:
            async with self._connect() as db:
                await db.execute(
                    """
                    INSERT INTO projects
                        (id, name, description, color, owner_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (project_id, name, description, color, owner_id, now, now),
                )
                await db.execute(
                    "INSERT INTO project_members (project_id, user_id, added_at) VALUES (?, ?, ?)",
                    (project_id, owner_id, now),
                )
                await db.commit()
                project = await self._load_project(db, project_id)
        except Exception as e:
            logger.error("project_create_failed", owner_id=owner_id, error=str(e))
            raise

        if project is None:
            logger.error("project_reload_failed", project_id=project_id)
            raise StoreError(f"Project {project_id} missing after insert")
        logger.info("project_created", project_id=project_id, owner_id=owner_id)
        return project

    async def get_project(self, project_id: str) -> Project | None:
        async with self._connect() as db:
            return await self._load_project(db, project_id)

    async def list_projects_for_user(self, user_id: str) -> list[Project]:
        """Return every project the user owns or belongs to, most recently updated first."""
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT p.id FROM projects p
                JOIN project_members m ON m.project_id = p.id
                WHERE m.user_id = ?
                ORDER BY p.updated_at DESC
                """,
                (user_id,),
            )
            project_ids = [row["id"] for row in await cursor.fetchall()]
            projects = [await self._load_project(db, pid) for pid in project_ids]
        return [p for p in projects if p is not None]

    async def update_project(
        self,
        project_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> Project | None:
        """Apply the given (non-None) fields to a project.

        Returns:
            The populated project, or None if it does not exist.
        """
        changes: dict[str, Any] = {
            key: value
            for key, value in (("name", name), ("description", description), ("color", color))
            if value is not None
        }
        changes["updated_at"] = time.time()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        try:
            async with self._connect() as db:
                await db.execute(
                    f"UPDATE projects SET {assignments} WHERE id = ?",
                    (*changes.values(), project_id),
                )
                await db.commit()
                project = await self._load_project(db, project_id)
        except Exception as e:
            logger.error("project_update_failed", project_id=project_id, error=str(e))
            raise
        logger.debug("project_updated", project_id=project_id, fields=sorted(changes))
        return project

    async def delete_project(self, project_id: str) -> bool:
        """Delete a project together with its memberships and tasks."""
        try:
            async with self._connect() as db:
                cursor = await db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
                await db.commit()
                deleted = cursor.rowcount > 0
        except Exception as e:
            logger.error("project_delete_failed", project_id=project_id, error=str(e))
            raise
        logger.info("project_deleted", project_id=project_id, deleted=deleted)
        return deleted

    async def add_member(self, project_id: str, user_id: str) -> Project | None:
        """Add a member; adding an existing member leaves the project unchanged."""
        now = time.time()
        try:
            async with self._connect() as db:
                await db.execute(
                    """
                    INSERT OR IGNORE INTO project_members (project_id, user_id, added_at)
                    VALUES (?, ?, ?)
                    """,
                    (project_id, user_id, now),
                )
                await db.execute(
                    "UPDATE projects SET updated_at = ? WHERE id = ?", (now, project_id)
                )
                await db.commit()
                project = await self._load_project(db, project_id)
        except Exception as e:
            logger.error(
                "project_member_add_failed",
                project_id=project_id,
                user_id=user_id,
                error=str(e),
            )
            raise
        logger.info("project_member_added", project_id=project_id, user_id=user_id)
        return project

    async def remove_member(self, project_id: str, user_id: str) -> Project | None:
        """Remove a member; removing a non-member leaves the project unchanged."""
        now = time.time()
        try:
            async with self._connect() as db:
                await db.execute(
                    "DELETE FROM project_members WHERE project_id = ? AND user_id = ?",
                    (project_id, user_id),
                )
                await db.execute(
                    "UPDATE projects SET updated_at = ? WHERE id = ?", (now, project_id)
                )
                await db.commit()
                project = await self._load_project(db, project_id)
        except Exception as e:
            logger.error(
                "project_member_remove_failed",
                project_id=project_id,
                user_id=user_id,
                error=str(e),
            )
            raise
        logger.info("project_member_removed", project_id=project_id, user_id=user_id)
        return project

    async def task_counts(self, project_id: str) -> TaskCounts:
        """Count a project's tasks per status."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT status, COUNT(*) AS n FROM tasks WHERE project_id = ? GROUP BY status",
                (project_id,),
            )
            counts = {row["status"]: row["n"] for row in await cursor.fetchall()}
        return TaskCounts(
            todo=counts.get(TaskStatus.TODO, 0),
            in_progress=counts.get(TaskStatus.IN_PROGRESS, 0),
            done=counts.get(TaskStatus.DONE, 0),
        )

    # -----------------------------------------------------------------
    # Tasks
    # -----------------------------------------------------------------

    async def create_task(
        self,
        *,
        project_id: str,
        title: str,
        created_by: str,
        description: str = "",
        status: TaskStatus = TaskStatus.TODO,
        priority: TaskPriority = TaskPriority.MEDIUM,
        assignee_id: str | None = None,
        due_date: datetime | None = None,
        tags: list[str] | None = None,
    ) -> Task:
        """Insert a task and return it populated."""
        task_id = new_id("tsk")
        now = time.time()
        try:
            async with self._connect() as db:
                await db.execute(
                    """
                    INSERT INTO tasks
                        (id, project_id, title, description, status, priority,
                         assignee_id, due_date, tags, created_by, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task_id,
                        project_id,
                        title,
                        description,
                        str(status),
                        str(priority),
                        assignee_id,
                        _encode_due_date(due_date),
                        json.dumps(tags or []),
                        created_by,
                        now,
                        now,
                    ),
                )
                await db.commit()
                task = await self._load_task(db, task_id)
        except Exception as e:
            logger.error("task_create_failed", project_id=project_id, error=str(e))
            raise

        if task is None:
            logger.error("task_reload_failed", task_id=task_id)
            raise StoreError(f"Task {task_id} missing after insert")
        logger.info("task_created", task_id=task_id, project_id=project_id)
        return task

    async def get_task(self, task_id: str) -> Task | None:
        async with self._connect() as db:
            return await self._load_task(db, task_id)

    async def list_tasks(
        self,
        project_id: str,
        *,
        status: TaskStatus | None = None,
        assignee_id: str | None = None,
    ) -> list[Task]:
        """Return a project's tasks, newest first, optionally filtered."""
        query = "SELECT * FROM tasks WHERE project_id = ?"
        params: list[Any] = [project_id]
        if status is not None:
            query += " AND status = ?"
            params.append(str(status))
        if assignee_id is not None:
            query += " AND assignee_id = ?"
            params.append(assignee_id)
        query += " ORDER BY created_at DESC, rowid DESC"

        async with self._connect() as db:
            cursor = await db.execute(query, tuple(params))
            rows = list(await cursor.fetchall())
            return await self._build_tasks(db, rows)

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Task | None:
        """Apply a partial update to a task.

        Args:
            task_id: The task to update.
            changes: Column -> new value; only keys in ``_TASK_UPDATE_FIELDS``
                are written. ``None`` is a valid value (e.g. unassigning).

        Returns:
            The populated task, or None if it does not exist.
        """
        columns = [column for column in _TASK_UPDATE_FIELDS if column in changes]
        values: list[Any] = []
        for column in columns:
            value = changes[column]
            if column == "tags":
                value = json.dumps(value or [])
            elif column == "due_date":
                value = _encode_due_date(value)
            elif column in ("status", "priority") and value is not None:
                value = str(value)
            values.append(value)
        columns.append("updated_at")
        values.append(time.time())
        assignments = ", ".join(f"{column} = ?" for column in columns)

        try:
            async with self._connect() as db:
                await db.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    (*values, task_id),
                )
                await db.commit()
                task = await self._load_task(db, task_id)
        except Exception as e:
            logger.error("task_update_failed", task_id=task_id, error=str(e))
            raise
        logger.debug("task_updated", task_id=task_id, fields=columns)
        return task

    async def delete_task(self, task_id: str) -> TaskRemoval | None:
        """Delete a task.

        Returns:
            The deleted task's identifiers, or None if it did not exist.
        """
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT project_id FROM tasks WHERE id = ?", (task_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                await db.commit()
        except Exception as e:
            logger.error("task_delete_failed", task_id=task_id, error=str(e))
            raise
        logger.info("task_deleted", task_id=task_id, project_id=row["project_id"])
        return TaskRemoval(task_id=task_id, project_id=row["project_id"])
