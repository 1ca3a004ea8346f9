"""Filesystem layout of project-local Lanewarden state."""

from __future__ import annotations

from pathlib import Path

STATE_DIR_NAME = ".lanewarden"
WORKTREES_DIR_NAME = ".worktrees"


def project_state_dir(project_path: str | Path) -> Path:
    return Path(project_path) / STATE_DIR_NAME


def tasks_file(project_path: str | Path) -> Path:
    return project_state_dir(project_path) / "tasks.json"


def sessions_dir(project_path: str | Path) -> Path:
    return project_state_dir(project_path) / "sessions"


def session_file(project_path: str | Path, task_id: str) -> Path:
    return sessions_dir(project_path) / f"{task_id}.json"


def design_relpath(task_id: str) -> str:
    return f"{STATE_DIR_NAME}/designs/{task_id}-design.md"


def plan_relpath(task_id: str) -> str:
    return f"{STATE_DIR_NAME}/plans/{task_id}-plan.md"


def registry_file(home_dir: str | Path) -> Path:
    return Path(home_dir) / "config.json"


__all__ = [
    "STATE_DIR_NAME",
    "WORKTREES_DIR_NAME",
    "design_relpath",
    "plan_relpath",
    "project_state_dir",
    "registry_file",
    "session_file",
    "sessions_dir",
    "tasks_file",
]
