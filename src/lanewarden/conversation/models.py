"""Conversation log records."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import Field

from ..board.models import BoardRecord, utc_now

ToolCallStatus = Literal["pending", "success", "error"]
MessageStatus = Literal["streaming", "complete", "error"]
Severity = Literal["info", "warning", "error"]


def message_id() -> str:
    return f"msg-{uuid4().hex[:12]}"


class ToolCall(BoardRecord):
    name: str
    input: Any = None
    output: str | None = None
    status: ToolCallStatus = "pending"
    duration: float | None = None


class MessageMetadata(BoardRecord):
    command: str | None = None


class UserMessage(BoardRecord):
    role: Literal["user"] = "user"
    id: str = Field(default_factory=message_id)
    content: str
    timestamp: str = Field(default_factory=utc_now)
    metadata: MessageMetadata | None = None


class AssistantMessage(BoardRecord):
    role: Literal["assistant"] = "assistant"
    id: str = Field(default_factory=message_id)
    content: str = ""
    timestamp: str = Field(default_factory=utc_now)
    thinking: str | None = None
    tool_call: ToolCall | None = None
    group_id: str | None = None
    status: MessageStatus = "streaming"


class SystemMessage(BoardRecord):
    role: Literal["system"] = "system"
    id: str = Field(default_factory=message_id)
    content: str
    timestamp: str = Field(default_factory=utc_now)
    severity: Severity = Field(default="info", alias="type")


ConversationMessage = Annotated[
    Union[UserMessage, AssistantMessage, SystemMessage],
    Field(discriminator="role"),
]


class ConversationLog(BoardRecord):
    task_id: str
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    messages: list[ConversationMessage] = Field(default_factory=list)

    def find(self, message_id: str) -> UserMessage | AssistantMessage | SystemMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


__all__ = [
    "AssistantMessage",
    "ConversationLog",
    "ConversationMessage",
    "MessageMetadata",
    "SystemMessage",
    "ToolCall",
    "UserMessage",
    "message_id",
]
