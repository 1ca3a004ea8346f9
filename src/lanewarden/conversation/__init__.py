"""Conversation logs and the streaming protocol built on them."""

from .export import conversation_to_markdown
from .models import (
    AssistantMessage,
    ConversationLog,
    ConversationMessage,
    SystemMessage,
    ToolCall,
    UserMessage,
)
from .protocol import ConversationStreamer
from .storage import ConversationStorage

__all__ = [
    "AssistantMessage",
    "ConversationLog",
    "ConversationMessage",
    "ConversationStorage",
    "ConversationStreamer",
    "SystemMessage",
    "ToolCall",
    "UserMessage",
    "conversation_to_markdown",
]
