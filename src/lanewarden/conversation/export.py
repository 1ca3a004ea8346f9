"""Render a conversation log as Markdown."""

from __future__ import annotations

import json
from datetime import datetime

from .models import AssistantMessage, ConversationLog, SystemMessage, UserMessage


def _stamp(value: str, fmt: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime(fmt)
    except ValueError:
        return value


def _tool_input(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


def conversation_to_markdown(log: ConversationLog) -> str:
    lines = [
        f"# Conversation - {log.task_id}",
        "",
        f"Created: {_stamp(log.created_at, '%Y-%m-%d %H:%M:%S')}",
        f"Updated: {_stamp(log.updated_at, '%Y-%m-%d %H:%M:%S')}",
        "",
        "---",
        "",
    ]
    for message in log.messages:
        when = _stamp(message.timestamp, "%H:%M:%S")
        if isinstance(message, UserMessage):
            lines += [f"## User ({when})", "", message.content, ""]
        elif isinstance(message, AssistantMessage):
            lines += [f"## Assistant ({when})", ""]
            if message.content:
                lines += [message.content, ""]
            if message.thinking:
                lines += [
                    "<details>",
                    "<summary>Thinking Process</summary>",
                    "",
                    message.thinking,
                    "",
                    "</details>",
                    "",
                ]
            if message.tool_call is not None:
                tool = message.tool_call
                lines += ["<details>", f"<summary>Tool Call: {tool.name}</summary>", ""]
                if tool.input is not None:
                    lines += ["**Input:**", "```", _tool_input(tool.input), "```", ""]
                if tool.output:
                    lines += ["**Output:**", "```", tool.output, "```", ""]
                lines += [f"**Status:** {tool.status}", "", "</details>", ""]
        elif isinstance(message, SystemMessage):
            lines += [f"> {message.content}", ""]
    return "\n".join(lines)


__all__ = ["conversation_to_markdown"]
