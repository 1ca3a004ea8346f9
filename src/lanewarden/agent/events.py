"""Events produced by an agent runtime stream.

These are the only shapes the rest of Lanewarden sees; runtime-specific
message classes are converted into them where the stream is consumed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class SessionStarted:
    session_id: str


@dataclass(frozen=True, slots=True)
class TextStarted:
    """A streamed text block opened."""


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class TextStopped:
    """The streamed text block closed."""


@dataclass(frozen=True, slots=True)
class AssistantText:
    """A complete text block that was not streamed as deltas."""

    text: str


@dataclass(frozen=True, slots=True)
class Thinking:
    text: str


@dataclass(frozen=True, slots=True)
class ToolUse:
    tool_use_id: str
    name: str
    input: Any = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_use_id: str
    content: Any = None
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class RunResult:
    subtype: str
    session_id: str | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)
    structured_output: Any = None
    result: str | None = None

    @property
    def success(self) -> bool:
        return self.subtype == "success"

    def error_message(self) -> str:
        if self.errors:
            return "\n".join(self.errors)
        return self.result or "Execution failed"


RuntimeEvent = Union[
    SessionStarted,
    TextStarted,
    TextDelta,
    TextStopped,
    AssistantText,
    Thinking,
    ToolUse,
    ToolResult,
    RunResult,
]


def tool_result_text(content: Any) -> str:
    """Render tool result content as plain text."""

    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        if parts:
            return "\n".join(parts)
    return str(content)


__all__ = [
    "AssistantText",
    "RunResult",
    "RuntimeEvent",
    "SessionStarted",
    "TextDelta",
    "TextStarted",
    "TextStopped",
    "Thinking",
    "ToolResult",
    "ToolUse",
    "tool_result_text",
]
