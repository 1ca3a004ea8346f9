"""Outbound ``conversation.*`` frames."""

from __future__ import annotations

from typing import Any

from .models import ToolCall


def _frame(kind: str, task_id: str, **fields: Any) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": kind, "taskId": task_id}
    frame.update({key: value for key, value in fields.items() if value is not None})
    return frame


def chunk_start(task_id: str, message_id: str, group_id: str | None = None) -> dict[str, Any]:
    return _frame("conversation.chunk_start", task_id, messageId=message_id, groupId=group_id)


def chunk(task_id: str, message_id: str, content: str) -> dict[str, Any]:
    return _frame("conversation.chunk", task_id, messageId=message_id, content=content)


def chunk_end(task_id: str, message_id: str) -> dict[str, Any]:
    return _frame("conversation.chunk_end", task_id, messageId=message_id)


def thinking_start(task_id: str, message_id: str, group_id: str) -> dict[str, Any]:
    return _frame("conversation.thinking_start", task_id, messageId=message_id, groupId=group_id)


def thinking(task_id: str, message_id: str, content: str, group_id: str) -> dict[str, Any]:
    return _frame(
        "conversation.thinking", task_id, messageId=message_id, content=content, groupId=group_id
    )


def thinking_end(task_id: str, message_id: str, group_id: str) -> dict[str, Any]:
    return _frame("conversation.thinking_end", task_id, messageId=message_id, groupId=group_id)


def tool_call(kind: str, task_id: str, message_id: str, call: ToolCall, group_id: str) -> dict[str, Any]:
    """``kind`` is one of ``start``, ``output`` or ``end``."""

    return _frame(
        f"conversation.tool_call_{kind}",
        task_id,
        messageId=message_id,
        toolCall=call.dump(),
        groupId=group_id,
    )


def error(task_id: str, message: str) -> dict[str, Any]:
    return _frame("conversation.error", task_id, error=message)


def design_complete(task_id: str, design_path: str, content: str) -> dict[str, Any]:
    return _frame("conversation.design_complete", task_id, designPath=design_path, content=content)


def execute_complete(task_id: str, structured_output: Any, content: str) -> dict[str, Any]:
    return {
        "type": "conversation.execute_complete",
        "taskId": task_id,
        "structuredOutput": structured_output,
        "content": content,
    }


def structured_output(task_id: str, output: Any) -> dict[str, Any]:
    return {"type": "structured-output", "taskId": task_id, "output": output}


__all__ = [
    "chunk",
    "chunk_end",
    "chunk_start",
    "design_complete",
    "error",
    "execute_complete",
    "structured_output",
    "thinking",
    "thinking_end",
    "thinking_start",
    "tool_call",
]
