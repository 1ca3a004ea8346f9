"""Lanewarden diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from lanewarden.board.models import ProjectData
from lanewarden.config import LanewardenSettings
from lanewarden.conversation.storage import ConversationStorage
from lanewarden.errors import LanewardenError
from lanewarden.storage import ProjectRegistry, TaskStore
from lanewarden.worktrees import WorktreeManager


def resolve_project_path(settings: LanewardenSettings, project: str) -> Path:
    """Accept a registered project id or a directory path."""

    registry = ProjectRegistry(settings.home_dir.expanduser())
    try:
        return Path(asyncio.run(registry.get(project)).path)
    except LanewardenError:
        return Path(project).expanduser().resolve()


def load_board(project_path: Path) -> ProjectData:
    try:
        return asyncio.run(TaskStore().load(project_path))
    except LanewardenError as exc:
        print(f"Task store unavailable: {exc}")
        raise SystemExit(1)


def cmd_projects(args: argparse.Namespace) -> None:
    settings = LanewardenSettings()
    registry = ProjectRegistry(settings.home_dir.expanduser())
    try:
        projects = asyncio.run(registry.list_projects())
    except LanewardenError as exc:
        print(f"Project registry unavailable: {exc}")
        raise SystemExit(1)
    for project in projects:
        print(f"{project.id} {project.name} -> {project.path}")


def cmd_tasks(args: argparse.Namespace) -> None:
    data = load_board(resolve_project_path(LanewardenSettings(), args.project))
    tasks = sorted(data.tasks, key=lambda task: (task.lane_id, task.order))
    if args.lane:
        tasks = [task for task in tasks if task.lane_id == args.lane]
    if args.json:
        print(json.dumps([task.dump() for task in tasks], indent=2))
    else:
        for task in tasks:
            session = task.agent_session.id if task.agent_session else None
            print(f"{task.id} [{task.lane_id}/{task.status}] {task.title} -> {session}")


def cmd_worktrees(args: argparse.Namespace) -> None:
    project_path = resolve_project_path(LanewardenSettings(), args.project)
    data = load_board(project_path)
    registered = asyncio.run(WorktreeManager().list_worktrees(project_path))
    on_disk = {entry.path: entry for entry in registered}
    payload = []
    for task in data.tasks:
        if task.worktree is None:
            continue
        entry = on_disk.get(task.worktree.path)
        payload.append(
            {
                "task_id": task.id,
                "path": task.worktree.path,
                "branch": task.worktree.branch,
                "removed_at": task.worktree.removed_at,
                "registered": entry is not None,
                "head": entry.head if entry else None,
            }
        )
    print(json.dumps(payload, indent=2))


def cmd_sessions(args: argparse.Namespace) -> None:
    project_path = resolve_project_path(LanewardenSettings(), args.project)
    storage = ConversationStorage()
    task_ids = [args.task_id] if args.task_id else asyncio.run(storage.list_sessions(project_path))
    payload = []
    for task_id in task_ids:
        try:
            log = asyncio.run(storage.load(project_path, task_id))
        except LanewardenError as exc:
            payload.append({"task_id": task_id, "error": str(exc)})
            continue
        if log is None:
            continue
        roles: dict[str, int] = {}
        for message in log.messages:
            roles[message.role] = roles.get(message.role, 0) + 1
        payload.append(
            {
                "task_id": task_id,
                "messages": len(log.messages),
                "roles": roles,
                "updated_at": log.updated_at,
            }
        )
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    data = load_board(resolve_project_path(LanewardenSettings(), args.project))

    status_counts: dict[str, int] = {}
    lane_counts: dict[str, int] = {}
    for task in data.tasks:
        status_counts[task.status] = status_counts.get(task.status, 0) + 1
        lane_counts[task.lane_id] = lane_counts.get(task.lane_id, 0) + 1

    metrics = {
        "tasks_total": len(data.tasks),
        "store_version": data.version,
        "status_counts": status_counts,
        "lane_counts": lane_counts,
        "active_worktrees": sum(1 for task in data.tasks if task.active_worktree is not None),
        "tombstoned_worktrees": sum(
            1 for task in data.tasks if task.worktree is not None and not task.worktree.active
        ),
        "agent_created": sum(1 for task in data.tasks if task.created_by == "agent"),
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lanewarden diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_projects = sub.add_parser("projects", help="List registered projects")
    p_projects.set_defaults(func=cmd_projects)

    p_tasks = sub.add_parser("tasks", help="List tasks on a project board")
    p_tasks.add_argument("project", help="Project id or directory")
    p_tasks.add_argument("--lane")
    p_tasks.add_argument("--json", action="store_true", help="Output JSON")
    p_tasks.set_defaults(func=cmd_tasks)

    p_worktrees = sub.add_parser("worktrees", help="Compare task worktrees with git registrations")
    p_worktrees.add_argument("project", help="Project id or directory")
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_sessions = sub.add_parser("sessions", help="Summarize conversation logs")
    p_sessions.add_argument("project", help="Project id or directory")
    p_sessions.add_argument("--task-id")
    p_sessions.set_defaults(func=cmd_sessions)

    p_metrics = sub.add_parser("metrics", help="Show task/lane/worktree counts")
    p_metrics.add_argument("project", help="Project id or directory")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
