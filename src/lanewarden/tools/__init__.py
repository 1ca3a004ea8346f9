"""MCP tools that let an agent read and update the task board."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..board.machine import STATUSES
from ..board.lanes import LANE_IDS
from ..board.models import Task
from ..orchestrator import Orchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    list_tasks: Any
    create_task: Any
    task_status: Any
    update_task: Any


def _task_summary(task: Task) -> dict[str, Any]:
    worktree = task.active_worktree
    return {
        "task_id": task.id,
        "title": task.title,
        "lane_id": task.lane_id,
        "status": task.status,
        "order": task.order,
        "worktree": worktree.path if worktree else None,
        "session_id": task.agent_session.id if task.agent_session else None,
        "updated_at": task.updated_at,
    }


def register_tools(
    server: FastMCP,
    *,
    orchestrator: Orchestrator,
    default_project_id: str | None = None,
) -> ToolHandles:
    """Register the board tools on the server."""

    def _project_id(project_id: str | None) -> str:
        resolved = project_id or default_project_id
        if not resolved:
            raise ValueError("project_id is required")
        return resolved

    async def _list_tasks(
        project_id: str | None = None,
        lane_id: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        if lane_id is not None and lane_id not in LANE_IDS:
            raise ValueError(f"Unknown lane '{lane_id}'. Must be one of {sorted(LANE_IDS)}")
        project = await orchestrator.project(_project_id(project_id))
        tasks = await orchestrator.board.list_tasks(project.path, lane_id)
        _emit_log(context, "debug", "Listed tasks", extra={"project_id": project.id, "count": len(tasks)})
        return [_task_summary(task) for task in tasks]

    async def _create_task(
        title: str,
        description: str = "",
        *,
        project_id: str | None = None,
        prompt: str | None = None,
        lane_id: str = "design",
        context: Context | None = None,
    ) -> dict[str, Any]:
        if lane_id not in LANE_IDS:
            raise ValueError(f"Unknown lane '{lane_id}'. Must be one of {sorted(LANE_IDS)}")
        project = await orchestrator.project(_project_id(project_id))
        task = await orchestrator.board.create_task(
            project.path,
            title=title,
            description=description,
            prompt=prompt,
            lane_id=lane_id,
            created_by="agent",
        )
        _emit_log(context, "info", "Created task", extra={"task_id": task.id, "lane_id": lane_id})
        return _task_summary(task)

    async def _task_status(
        task_id: str,
        project_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        _, task = await orchestrator.locate_task(task_id, project_id or default_project_id)
        _emit_log(context, "debug", "Task status", extra={"task_id": task_id, "status": task.status})
        return _task_summary(task)

    async def _update_task(
        task_id: str,
        status: str,
        *,
        move_to: str | None = None,
        project_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        status_lower = status.lower()
        if status_lower not in STATUSES:
            raise ValueError(f"Invalid status '{status}'. Must be one of {sorted(STATUSES)}")
        if move_to is not None and move_to not in LANE_IDS:
            raise ValueError(f"Unknown lane '{move_to}'. Must be one of {sorted(LANE_IDS)}")
        task = await orchestrator.report_status(
            task_id,
            status_lower,
            move_to=move_to,
            project_id=project_id or default_project_id,
        )
        _emit_log(
            context,
            "info",
            "Task updated",
            extra={"task_id": task_id, "status": task.status, "lane_id": task.lane_id},
        )
        return _task_summary(task)

    tool_list_tasks = server.tool(
        name="list_tasks",
        description="List the tasks on a project board, optionally filtered to one lane.",
    )(_list_tasks)

    tool_create_task = server.tool(
        name="create_task",
        description="Create a task on the board. Tasks created here are tagged as agent-created.",
    )(_create_task)

    tool_task_status = server.tool(
        name="task_status",
        description="Fetch the lane, status and worktree of a task.",
    )(_task_status)

    tool_update_task = server.tool(
        name="update_task",
        description=(
            "Report a task status (idle, running, completed, failed) and optionally move it "
            "to another lane. Completing without move_to applies the lane's auto-advance."
        ),
    )(_update_task)

    return ToolHandles(
        list_tasks=tool_list_tasks,
        create_task=tool_create_task,
        task_status=tool_task_status,
        update_task=tool_update_task,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is attached, else the module logger."""

    payload = extra or {}
    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        log_method = getattr(ctx_logger, level, None) if ctx_logger is not None else None
        if callable(log_method):
            log_method(message, extra=payload)
            return
    getattr(logger, level, logger.info)(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
