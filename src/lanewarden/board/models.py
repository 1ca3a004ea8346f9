"""Task board records persisted in the per-project task store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TaskStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LaneId(str, Enum):
    DESIGN = "design"
    DEVELOP = "develop"
    TEST = "test"
    PENDING_MERGE = "pending-merge"
    ARCHIVED = "archived"
    DEPRECATED = "deprecated"


class BoardRecord(BaseModel):
    """Base model: camelCase on disk and on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Worktree(BoardRecord):
    path: str
    branch: str
    created_at: str = Field(default_factory=utc_now)
    removed_at: str | None = None

    @property
    def active(self) -> bool:
        return self.removed_at is None


class AgentSessionRef(BoardRecord):
    """Reference to the external runtime's resumable session."""

    id: str
    created_at: str = Field(default_factory=utc_now)


class StructuredOutput(BoardRecord):
    type: str
    schema_version: str = "1.0"
    data: Any
    timestamp: str = Field(default_factory=utc_now)


class Lane(BoardRecord):
    id: LaneId
    name: str
    order: int
    color: str = "#6B7280"
    system_prompt: str | None = None


class Task(BoardRecord):
    id: str
    title: str
    description: str = ""
    prompt: str | None = None
    lane_id: LaneId
    order: int = 0
    status: TaskStatus = TaskStatus.IDLE
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    created_by: Literal["user", "agent"] = "user"
    worktree: Worktree | None = None
    agent_session: AgentSessionRef | None = None
    design_path: str | None = None
    plan_path: str | None = None
    structured_output: StructuredOutput | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def active_worktree(self) -> Worktree | None:
        if self.worktree is not None and self.worktree.active:
            return self.worktree
        return None

    def touch(self) -> None:
        self.updated_at = utc_now()


class ProjectData(BoardRecord):
    project_id: str
    version: int = 0
    lanes: list[Lane] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def lane_tasks(self, lane_id: str) -> list[Task]:
        return sorted(
            (task for task in self.tasks if task.lane_id == lane_id),
            key=lambda task: task.order,
        )


class ProjectRef(BoardRecord):
    id: str
    name: str
    path: str
    created_at: str = Field(default_factory=utc_now)
    last_opened_at: str = Field(default_factory=utc_now)


class RegistryData(BoardRecord):
    version: str = "1.0.0"
    projects: list[ProjectRef] = Field(default_factory=list)


__all__ = [
    "AgentSessionRef",
    "BoardRecord",
    "Lane",
    "LaneId",
    "ProjectData",
    "ProjectRef",
    "RegistryData",
    "StructuredOutput",
    "Task",
    "TaskStatus",
    "Worktree",
    "utc_now",
]
