from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from lanewarden.agent.runtime import FakeAgentRuntime
from lanewarden.config import LanewardenSettings
from lanewarden.orchestrator import Orchestrator
from lanewarden.tools import register_tools
from lanewarden.worktrees import WorktreeManager
from lanewarden.worktrees.git import FakeGitRunner


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = RecordingLogger()


def make_orchestrator(tmp_path: Path) -> Orchestrator:
    settings = LanewardenSettings(LANEWARDEN_HOME=str(tmp_path / "home"))
    return Orchestrator(settings, FakeAgentRuntime(), worktrees=WorktreeManager(FakeGitRunner()))


async def open_project(orchestrator: Orchestrator, tmp_path: Path) -> str:
    project_dir = tmp_path / "project"
    project_dir.mkdir(exist_ok=True)
    project = await orchestrator.open_project(project_dir)
    return project.id


def test_tools_registered_by_name(tmp_path: Path) -> None:
    server = StubServer()
    register_tools(server, orchestrator=make_orchestrator(tmp_path))

    assert set(server._tools) == {"list_tasks", "create_task", "task_status", "update_task"}


def test_create_and_list_tasks(tmp_path: Path) -> None:
    async def scenario():
        orchestrator = make_orchestrator(tmp_path)
        project_id = await open_project(orchestrator, tmp_path)
        server = StubServer()
        handles = register_tools(server, orchestrator=orchestrator, default_project_id=project_id)
        context = StubContext()

        created = await handles.create_task.fn(  # type: ignore[attr-defined]
            "Add login", "Email and password", prompt="Build it", lane_id="develop", context=context
        )
        await handles.create_task.fn("Write docs")  # type: ignore[attr-defined]
        everything = await handles.list_tasks.fn()  # type: ignore[attr-defined]
        develop = await handles.list_tasks.fn(lane_id="develop")  # type: ignore[attr-defined]
        stored = await orchestrator.board.get_task((await orchestrator.project(project_id)).path, created["task_id"])
        return created, everything, develop, stored, context

    created, everything, develop, stored, context = asyncio.run(scenario())

    assert created["lane_id"] == "develop"
    assert created["status"] == "idle"
    assert created["worktree"] is None
    assert [task["title"] for task in everything] == ["Write docs", "Add login"]
    assert [task["task_id"] for task in develop] == [created["task_id"]]
    assert stored.created_by == "agent"
    assert context.logger.records[0][:2] == ("info", "Created task")


def test_update_task_applies_completion_and_moves(tmp_path: Path) -> None:
    async def scenario():
        orchestrator = make_orchestrator(tmp_path)
        project_id = await open_project(orchestrator, tmp_path)
        handles = register_tools(StubServer(), orchestrator=orchestrator)

        created = await handles.create_task.fn(  # type: ignore[attr-defined]
            "Add login", project_id=project_id, lane_id="develop"
        )
        task_id = created["task_id"]
        completed = await handles.update_task.fn(task_id, "COMPLETED")  # type: ignore[attr-defined]
        moved = await handles.update_task.fn(  # type: ignore[attr-defined]
            task_id, "completed", move_to="archived", project_id=project_id
        )
        status = await handles.task_status.fn(task_id)  # type: ignore[attr-defined]
        return completed, moved, status

    completed, moved, status = asyncio.run(scenario())

    assert (completed["lane_id"], completed["status"]) == ("test", "idle")
    assert (moved["lane_id"], moved["status"]) == ("archived", "completed")
    assert status == moved


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"status": "finished"}, "Invalid status"),
        ({"status": "completed", "move_to": "review"}, "Unknown lane"),
    ],
)
def test_update_task_rejects_bad_values(tmp_path: Path, kwargs, message) -> None:
    async def scenario():
        handles = register_tools(StubServer(), orchestrator=make_orchestrator(tmp_path))
        with pytest.raises(ValueError, match=message):
            await handles.update_task.fn("t1", **kwargs)  # type: ignore[attr-defined]

    asyncio.run(scenario())


def test_project_required_without_default(tmp_path: Path) -> None:
    async def scenario():
        handles = register_tools(StubServer(), orchestrator=make_orchestrator(tmp_path))
        with pytest.raises(ValueError, match="project_id is required"):
            await handles.list_tasks.fn()  # type: ignore[attr-defined]
        with pytest.raises(ValueError, match="Unknown lane"):
            await handles.create_task.fn("x", project_id="p", lane_id="review")  # type: ignore[attr-defined]

    asyncio.run(scenario())
