"""Tests for models/schemas.py -- Pydantic entity and request models.

Validates enum values, request validation rules, the ``in-progress`` alias
on task counts, and the partial-update semantics of UpdateTaskRequest.
"""

import pytest
from pydantic import ValidationError

from models.schemas import (
    AddMemberRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    HealthResponse,
    ProjectDetail,
    TaskCounts,
    TaskPriority,
    TaskStatus,
    UpdateTaskRequest,
)
from tests.conftest import make_project, make_task, make_user

# =========================================================================
# Enums
# =========================================================================


class TestEnums:
    def test_task_statuses(self) -> None:
        assert {s.value for s in TaskStatus} == {"todo", "in-progress", "done"}

    def test_string_coercion(self) -> None:
        assert TaskStatus("in-progress") == TaskStatus.IN_PROGRESS
        assert TaskPriority("high") == TaskPriority.HIGH


# =========================================================================
# Entities
# =========================================================================


class TestProject:
    def test_membership_helpers(self) -> None:
        bob = make_user("usr_bob", "Bob")
        project = make_project(members=[bob])

        assert project.member_ids() == {"usr_alice", "usr_bob"}
        assert project.has_member("usr_bob")
        assert not project.has_member("usr_carol")

    def test_ref(self) -> None:
        ref = make_project().ref()
        assert (ref.id, ref.name, ref.color) == ("prj_x", "Project prj_x", "#3B82F6")

    def test_entities_are_frozen(self) -> None:
        task = make_task()
        with pytest.raises(ValidationError):
            task.title = "changed"


class TestTaskCounts:
    def test_serializes_with_alias(self) -> None:
        counts = TaskCounts(todo=2, in_progress=1)
        assert counts.model_dump(by_alias=True) == {"todo": 2, "in-progress": 1, "done": 0}

    def test_accepts_alias(self) -> None:
        assert TaskCounts.model_validate({"in-progress": 4}).in_progress == 4

    def test_project_detail_defaults_to_zero_counts(self) -> None:
        detail = ProjectDetail(**make_project().model_dump())
        assert detail.task_counts == TaskCounts()


# =========================================================================
# Requests
# =========================================================================


class TestCreateProjectRequest:
    def test_defaults(self) -> None:
        req = CreateProjectRequest(name="  Launch  ")
        assert req.name == "Launch"
        assert req.color == "#3B82F6"
        assert req.description == ""

    def test_blank_name_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            CreateProjectRequest(name="   ")
        assert any("name" in str(e.get("loc")) for e in exc_info.value.errors())

    def test_color_must_be_hex(self) -> None:
        with pytest.raises(ValidationError):
            CreateProjectRequest(name="Launch", color="blue")


class TestAddMemberRequest:
    def test_valid_email(self) -> None:
        assert AddMemberRequest(email=" ada@example.com ").email == "ada@example.com"

    def test_invalid_email(self) -> None:
        with pytest.raises(ValidationError):
            AddMemberRequest(email="not-an-email")


class TestCreateTaskRequest:
    def test_defaults(self) -> None:
        req = CreateTaskRequest(title="Draft", project_id="prj_x")
        assert req.status == TaskStatus.TODO
        assert req.priority == TaskPriority.MEDIUM
        assert req.assignee_id is None
        assert req.tags == []

    def test_title_max_length(self) -> None:
        with pytest.raises(ValidationError):
            CreateTaskRequest(title="x" * 201, project_id="prj_x")

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CreateTaskRequest(title="Draft", project_id="prj_x", status="archived")


class TestUpdateTaskRequest:
    def test_only_sent_fields_are_set(self) -> None:
        req = UpdateTaskRequest.model_validate({"status": "done"})
        assert req.model_dump(exclude_unset=True) == {"status": TaskStatus.DONE}

    def test_explicit_null_is_preserved(self) -> None:
        req = UpdateTaskRequest.model_validate({"assignee_id": None})
        assert req.model_dump(exclude_unset=True) == {"assignee_id": None}


# =========================================================================
# Responses
# =========================================================================


class TestHealthResponse:
    def test_defaults(self) -> None:
        resp = HealthResponse(status="healthy", timestamp=1700000000.0)
        assert resp.version == "0.1.0"
        assert resp.active_connections == 0
        assert resp.delivery.published == 0

    def test_status_literal(self) -> None:
        with pytest.raises(ValidationError):
            HealthResponse(status="sleepy", timestamp=1.0)
