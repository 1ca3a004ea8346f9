"""Outbound websocket frames for bus events and command replies."""

from __future__ import annotations

from typing import Any

from ..agent.bus import (
    BusEvent,
    ConversationFrame,
    Error,
    Exit,
    Log,
    Output,
    SessionStart,
    StructuredOutputEvent,
    TaskChanged,
)
from ..conversation import frames as conversation_frames


def started(task_id: str, session_id: str | None) -> dict[str, Any]:
    return {"type": "started", "taskId": task_id, "sessionId": session_id}


def attached(task_id: str, session_id: str | None, buffered_output: str) -> dict[str, Any]:
    return {
        "type": "attached",
        "taskId": task_id,
        "sessionId": session_id,
        "bufferedOutput": buffered_output,
    }


def stopped(task_id: str) -> dict[str, Any]:
    return {"type": "stopped", "taskId": task_id}


def subscribed(project_id: str) -> dict[str, Any]:
    return {"type": "subscribed", "projectId": project_id}


def error(message: str, task_id: str | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": "error", "message": message}
    if task_id is not None:
        frame["taskId"] = task_id
    return frame


def task_status(event: TaskChanged) -> dict[str, Any]:
    return {
        "type": "task_status",
        "taskId": event.task_id,
        "status": event.status,
        "laneId": event.lane_id,
    }


def project_update(event: TaskChanged) -> dict[str, Any]:
    return {
        "type": "project-update",
        "projectId": event.project_id,
        "taskId": event.task_id,
        "status": event.status,
        "laneId": event.lane_id,
        "deleted": event.deleted,
    }


def event_frame(event: BusEvent) -> dict[str, Any] | None:
    """Frame for an event on an attached task; ``None`` for events not forwarded."""

    if isinstance(event, Output):
        return {"type": "output", "taskId": event.task_id, "data": event.data}
    if isinstance(event, Log):
        return {"type": "log", "taskId": event.task_id, "message": event.message}
    if isinstance(event, Error):
        return error(event.message, event.task_id)
    if isinstance(event, SessionStart):
        return started(event.task_id, event.session_id)
    if isinstance(event, StructuredOutputEvent):
        return conversation_frames.structured_output(event.task_id, event.output)
    if isinstance(event, Exit):
        return {"type": "exit", "taskId": event.task_id, "exitCode": event.code}
    if isinstance(event, TaskChanged):
        return task_status(event)
    if isinstance(event, ConversationFrame):
        return event.frame
    return None


__all__ = [
    "attached",
    "error",
    "event_frame",
    "project_update",
    "started",
    "stopped",
    "subscribed",
    "task_status",
]
