from __future__ import annotations

import asyncio
import importlib.util
import json
import os
import subprocess
import sys
from pathlib import Path

from lanewarden.agent.runtime import FakeAgentRuntime
from lanewarden.config import LanewardenSettings
from lanewarden.conversation.models import AssistantMessage, UserMessage
from lanewarden.orchestrator import Orchestrator
from lanewarden.worktrees import WorktreeManager
from lanewarden.worktrees.git import FakeGitRunner

REPO_ROOT = Path(__file__).resolve().parents[1]
SCRIPT = REPO_ROOT / "scripts" / "lanewarden_diag.py"


def load_cli():
    spec = importlib.util.spec_from_file_location("lanewarden_diag", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


def seed_board(home: Path, project_dir: Path) -> tuple[str, list[str]]:
    """Register a project with two tasks and one conversation log."""

    async def seed():
        settings = LanewardenSettings(LANEWARDEN_HOME=str(home))
        orchestrator = Orchestrator(settings, FakeAgentRuntime(), worktrees=WorktreeManager(FakeGitRunner()))
        project = await orchestrator.open_project(project_dir, "Demo")
        first = await orchestrator.board.create_task(project.path, title="Design login")
        second = await orchestrator.board.create_task(
            project.path, title="Ship login", lane_id="develop", created_by="agent"
        )
        await orchestrator.board.set_status(project.path, second.id, "failed")
        await orchestrator.conversations.append(project.path, first.id, UserMessage(content="hi"))
        await orchestrator.conversations.append(project.path, first.id, AssistantMessage(content="hello"))
        return project.id, [first.id, second.id]

    project_dir.mkdir(exist_ok=True)
    return asyncio.run(seed())


def test_diagnostics_cli_handles_missing_task_store(tmp_path: Path) -> None:
    project_dir = tmp_path / "not-a-board"
    project_dir.mkdir()
    env = os.environ.copy()
    env["PYTHONPATH"] = f"{REPO_ROOT / 'src'}" + os.pathsep + env.get("PYTHONPATH", "")
    env["LANEWARDEN_HOME"] = str(tmp_path / "home")
    process = subprocess.run(
        [sys.executable, str(SCRIPT), "tasks", str(project_dir)],
        cwd=str(REPO_ROOT),
        capture_output=True,
        text=True,
        env=env,
    )
    assert process.returncode == 1
    assert "Task store unavailable" in process.stdout


def test_projects_lists_registry(monkeypatch, tmp_path: Path, capsys) -> None:
    home = tmp_path / "home"
    project_id, _ = seed_board(home, tmp_path / "project")
    monkeypatch.setenv("LANEWARDEN_HOME", str(home))

    load_cli().main(["projects"])

    output = capsys.readouterr().out.strip()
    assert output.startswith(f"{project_id} Demo -> ")
    assert output.endswith(str((tmp_path / "project").resolve()))


def test_tasks_by_project_id_and_lane(monkeypatch, tmp_path: Path, capsys) -> None:
    home = tmp_path / "home"
    project_id, (first, second) = seed_board(home, tmp_path / "project")
    monkeypatch.setenv("LANEWARDEN_HOME", str(home))
    cli = load_cli()

    cli.main(["tasks", project_id])
    lines = capsys.readouterr().out.strip().splitlines()
    cli.main(["tasks", str(tmp_path / "project"), "--lane", "develop", "--json"])
    develop = json.loads(capsys.readouterr().out)

    assert lines == [
        f"{first} [design/idle] Design login -> None",
        f"{second} [develop/failed] Ship login -> None",
    ]
    assert [task["id"] for task in develop] == [second]
    assert develop[0]["createdBy"] == "agent"


def test_sessions_and_metrics(monkeypatch, tmp_path: Path, capsys) -> None:
    home = tmp_path / "home"
    project_id, (first, _) = seed_board(home, tmp_path / "project")
    monkeypatch.setenv("LANEWARDEN_HOME", str(home))
    cli = load_cli()

    cli.main(["sessions", project_id])
    sessions = json.loads(capsys.readouterr().out)
    cli.main(["sessions", project_id, "--task-id", "missing"])
    missing = json.loads(capsys.readouterr().out)
    cli.main(["metrics", project_id])
    metrics = json.loads(capsys.readouterr().out)

    assert len(sessions) == 1
    assert sessions[0]["task_id"] == first
    assert sessions[0]["messages"] == 2
    assert sessions[0]["roles"] == {"user": 1, "assistant": 1}
    assert missing == []
    assert metrics["tasks_total"] == 2
    assert metrics["status_counts"] == {"idle": 1, "failed": 1}
    assert metrics["lane_counts"] == {"design": 1, "develop": 1}
    assert metrics["active_worktrees"] == 0
    assert metrics["agent_created"] == 1


def test_main_without_command_prints_help(capsys) -> None:
    load_cli().main([])

    assert "Lanewarden diagnostics" in capsys.readouterr().out
