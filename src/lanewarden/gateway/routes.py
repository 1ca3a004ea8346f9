"""Thin HTTP routes over the orchestrator."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .. import __version__
from ..board.machine import TaskPatch, TaskPlacement
from ..board.models import BoardRecord, LaneId, TaskStatus
from ..errors import (
    InvalidStateError,
    LanewardenError,
    NotFoundError,
    VersionControlError,
)
from ..orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def status_for(exc: LanewardenError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidStateError):
        return 409
    if isinstance(exc, VersionControlError):
        return 422
    return 500


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LanewardenError)
    async def lanewarden_error(request: Request, exc: LanewardenError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error("Request failed", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=status, content={"error": str(exc)})


class OpenProjectBody(BoardRecord):
    path: str
    name: str | None = None


class CreateTaskBody(BoardRecord):
    title: str
    description: str = ""
    prompt: str | None = None
    lane_id: LaneId = LaneId.DESIGN


class MoveTaskBody(BoardRecord):
    lane_id: LaneId
    order: int | None = None


class ReorderBody(BoardRecord):
    updates: list[TaskPlacement]


class WorktreeBody(BoardRecord):
    base_branch: str | None = None


class MergeBody(BoardRecord):
    target_branch: str | None = None


class DocumentBody(BoardRecord):
    content: str


class HookBody(BoardRecord):
    task_id: str
    project_id: str | None = None
    move_to: LaneId | None = None
    error: str | None = None


class MoveHookBody(BoardRecord):
    task_id: str
    lane_id: LaneId
    project_id: str | None = None


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "version": __version__}


@router.get("/api/projects")
async def list_projects(orchestrator: Orchestrator = Depends(get_orchestrator)) -> list[dict[str, Any]]:
    return [project.dump() for project in await orchestrator.list_projects()]


@router.post("/api/projects", status_code=201)
async def open_project(
    body: OpenProjectBody, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    project = await orchestrator.open_project(body.path, body.name)
    return project.dump()


@router.delete("/api/projects/{project_id}", status_code=204)
async def remove_project(project_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> None:
    await orchestrator.remove_project(project_id)


@router.get("/api/projects/{project_id}/board")
async def board(project_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return (await orchestrator.board_data(project_id)).dump()


@router.get("/api/projects/{project_id}/tasks")
async def list_tasks(
    project_id: str,
    lane: LaneId | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[dict[str, Any]]:
    project = await orchestrator.project(project_id)
    tasks = await orchestrator.board.list_tasks(project.path, lane.value if lane else None)
    return [task.dump() for task in tasks]


@router.post("/api/projects/{project_id}/tasks", status_code=201)
async def create_task(
    project_id: str,
    body: CreateTaskBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    project = await orchestrator.project(project_id)
    task = await orchestrator.board.create_task(
        project.path,
        title=body.title,
        description=body.description,
        prompt=body.prompt,
        lane_id=body.lane_id,
    )
    return task.dump()


@router.get("/api/projects/{project_id}/tasks/{task_id}")
async def get_task(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    _, task = await orchestrator.resolve(project_id, task_id)
    return task.dump()


@router.patch("/api/projects/{project_id}/tasks/{task_id}")
async def update_task(
    project_id: str,
    task_id: str,
    body: TaskPatch,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    project = await orchestrator.project(project_id)
    return (await orchestrator.board.update_task(project.path, task_id, body)).dump()


@router.delete("/api/projects/{project_id}/tasks/{task_id}", status_code=204)
async def delete_task(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> None:
    await orchestrator.delete_task(project_id, task_id)


@router.post("/api/projects/{project_id}/tasks/{task_id}/move")
async def move_task(
    project_id: str,
    task_id: str,
    body: MoveTaskBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    project = await orchestrator.project(project_id)
    task = await orchestrator.board.move_task(project.path, task_id, body.lane_id, body.order)
    return task.dump()


@router.post("/api/projects/{project_id}/reorder")
async def reorder_tasks(
    project_id: str,
    body: ReorderBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[dict[str, Any]]:
    project = await orchestrator.project(project_id)
    tasks = await orchestrator.board.reorder_tasks(project.path, body.updates)
    return [task.dump() for task in tasks]


@router.post("/api/projects/{project_id}/tasks/{task_id}/worktree")
async def create_worktree(
    project_id: str,
    task_id: str,
    body: WorktreeBody | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    project = await orchestrator.project(project_id)
    task, created = await orchestrator.board.create_worktree(
        project.path, task_id, body.base_branch if body else None
    )
    return JSONResponse(status_code=201 if created else 200, content=task.dump())


@router.delete("/api/projects/{project_id}/tasks/{task_id}/worktree")
async def remove_worktree(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    project = await orchestrator.project(project_id)
    return (await orchestrator.board.remove_worktree(project.path, task_id)).dump()


@router.post("/api/projects/{project_id}/tasks/{task_id}/merge")
async def merge_task(
    project_id: str,
    task_id: str,
    body: MergeBody | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    project = await orchestrator.project(project_id)
    result, task = await orchestrator.board.merge_task(
        project.path, task_id, body.target_branch if body else None
    )
    payload = {
        "success": result.success,
        "message": result.message,
        "conflict": result.conflict,
        "task": task.dump(),
    }
    return JSONResponse(status_code=200 if result.success else 422, content=payload)


@router.get("/api/projects/{project_id}/worktrees")
async def list_worktrees(
    project_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> list[dict[str, Any]]:
    project = await orchestrator.project(project_id)
    entries = await orchestrator.worktrees.list_worktrees(project.path)
    return [{"path": entry.path, "branch": entry.branch, "head": entry.head} for entry in entries]


@router.post("/api/projects/{project_id}/worktrees/cleanup", status_code=204)
async def cleanup_worktrees(project_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> None:
    project = await orchestrator.project(project_id)
    await orchestrator.board.cleanup_worktrees(project.path)


@router.get("/api/projects/{project_id}/tasks/{task_id}/design")
async def read_design(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    path, content = await orchestrator.read_design(project_id, task_id)
    return {"path": path, "content": content}


@router.put("/api/projects/{project_id}/tasks/{task_id}/design")
async def write_design(
    project_id: str,
    task_id: str,
    body: DocumentBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    path = await orchestrator.write_design(project_id, task_id, body.content)
    return {"path": path}


@router.get("/api/projects/{project_id}/tasks/{task_id}/plan")
async def read_plan(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    path, content = await orchestrator.read_plan(project_id, task_id)
    return {"path": path, "content": content}


@router.put("/api/projects/{project_id}/tasks/{task_id}/plan")
async def write_plan(
    project_id: str,
    task_id: str,
    body: DocumentBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    path = await orchestrator.write_plan(project_id, task_id, body.content)
    return {"path": path}


@router.get("/api/projects/{project_id}/tasks/{task_id}/conversation")
async def conversation(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    return (await orchestrator.conversation(project_id, task_id)).dump()


@router.delete("/api/projects/{project_id}/tasks/{task_id}/conversation", status_code=204)
async def clear_conversation(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> None:
    await orchestrator.clear_conversation(project_id, task_id)


@router.get("/api/projects/{project_id}/tasks/{task_id}/conversation/export")
async def export_conversation(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> PlainTextResponse:
    markdown = await orchestrator.export_conversation(project_id, task_id)
    return PlainTextResponse(markdown, media_type="text/markdown")


@router.get("/api/projects/{project_id}/tasks/{task_id}/session")
async def session(
    project_id: str, task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    await orchestrator.resolve(project_id, task_id)
    info = orchestrator.sessions.get_session_info(task_id)
    return {
        "taskId": task_id,
        "sessionId": info.external_id if info else None,
        "completed": info.completed if info else None,
        "output": orchestrator.sessions.get_session_output(task_id),
    }


@router.post("/api/hooks/task-complete")
async def hook_task_complete(body: HookBody, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    task = await orchestrator.report_status(
        body.task_id,
        TaskStatus.COMPLETED.value,
        move_to=body.move_to,
        project_id=body.project_id,
    )
    return task.dump()


@router.post("/api/hooks/task-stopped")
async def hook_task_stopped(body: HookBody, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    task = await orchestrator.report_status(
        body.task_id, TaskStatus.IDLE.value, project_id=body.project_id
    )
    return task.dump()


@router.post("/api/hooks/task-failed")
async def hook_task_failed(body: HookBody, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    if body.error:
        logger.warning("Agent reported failure", extra={"task_id": body.task_id, "error": body.error})
    task = await orchestrator.report_status(
        body.task_id, TaskStatus.FAILED.value, project_id=body.project_id
    )
    return task.dump()


@router.post("/api/hooks/task-move")
async def hook_task_move(body: MoveHookBody, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    task = await orchestrator.report_move(body.task_id, body.lane_id, body.project_id)
    return task.dump()


__all__ = ["get_orchestrator", "install_error_handlers", "router", "status_for"]
