from __future__ import annotations

import asyncio
import json
from pathlib import Path

from fastmcp import Client

from lanewarden.agent.runtime import FakeAgentRuntime
from lanewarden.config import LanewardenSettings
from lanewarden.orchestrator import Orchestrator
from lanewarden.server import create_mcp_server
from lanewarden.worktrees import WorktreeManager
from lanewarden.worktrees.git import FakeGitRunner


def make_settings(tmp_path: Path, **overrides) -> LanewardenSettings:
    return LanewardenSettings(LANEWARDEN_HOME=str(tmp_path / "home"), **overrides)


def test_status_resource_summarizes_projects(tmp_path: Path) -> None:
    lanes = tmp_path / "lanes"
    lanes.mkdir()
    (lanes / "develop.yaml").write_text("id: develop\nsystem_prompt: Keep commits small.\n", encoding="utf-8")
    settings = make_settings(tmp_path, LANEWARDEN_LANE_PATHS=str(lanes))
    orchestrator = Orchestrator(settings, FakeAgentRuntime(), worktrees=WorktreeManager(FakeGitRunner()))
    project_dir = tmp_path / "project"
    project_dir.mkdir()

    async def scenario():
        project = await orchestrator.open_project(project_dir, "Demo")
        await orchestrator.board.create_task(project.path, title="One")
        await orchestrator.board.create_task(project.path, title="Two", lane_id="develop")
        server = create_mcp_server(settings, orchestrator)
        async with Client(server) as client:
            contents = await client.read_resource("resource://lanewarden/status")
            tools = await client.list_tools()
        return project, json.loads(contents[0].text), sorted(tool.name for tool in tools)

    project, payload, tool_names = asyncio.run(scenario())

    assert payload["lane_profiles"] == {"count": 1, "ids": ["develop"], "error": None}
    assert payload["projects"] == [{"id": project.id, "name": "Demo", "status_counts": {"idle": 2}}]
    assert tool_names == ["create_task", "list_tasks", "task_status", "update_task"]


def test_status_resource_reports_profile_errors(tmp_path: Path) -> None:
    broken = tmp_path / "lanes"
    broken.mkdir()
    (broken / "broken.yaml").write_text("id: [unclosed\n", encoding="utf-8")
    settings = make_settings(tmp_path, LANEWARDEN_LANE_PATHS=str(broken))
    orchestrator = Orchestrator(settings, FakeAgentRuntime(), worktrees=WorktreeManager(FakeGitRunner()))

    async def scenario():
        server = create_mcp_server(settings, orchestrator)
        async with Client(server) as client:
            contents = await client.read_resource("resource://lanewarden/status")
        return json.loads(contents[0].text)

    payload = asyncio.run(scenario())

    assert payload["lane_profiles"]["count"] == 0
    assert payload["lane_profiles"]["error"]
    assert payload["projects"] == []


def test_server_exposes_orchestrator_and_handles(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, LANEWARDEN_PROJECT_ID="proj-1")
    orchestrator = Orchestrator(settings, FakeAgentRuntime(), worktrees=WorktreeManager(FakeGitRunner()))

    server = create_mcp_server(settings, orchestrator)

    assert server.orchestrator is orchestrator
    assert server.tool_handles.update_task is not None
