"""Conversation streaming protocol.

Every fragment of an agent turn is written to the task's conversation log
before the matching frame is published, so a crash loses at most the frame
in flight and never the record.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..agent.bus import ConversationFrame, EventBus
from ..agent.sessions import ToolCallUpdate, TurnCallbacks, TurnOutcome
from ..errors import LanewardenError
from . import frames
from .models import (
    AssistantMessage,
    ConversationLog,
    MessageMetadata,
    SystemMessage,
    ToolCall,
    UserMessage,
)
from .storage import ConversationStorage

logger = logging.getLogger(__name__)


def tool_message_id(tool_use_id: str) -> str:
    return f"tool-{tool_use_id}"


class ConversationStreamer(TurnCallbacks):
    """Persist-then-publish bridge for one task's conversation."""

    def __init__(
        self,
        storage: ConversationStorage,
        bus: EventBus,
        project_path: str | Path,
        task_id: str,
    ) -> None:
        self._storage = storage
        self._bus = bus
        self._project_path = Path(project_path)
        self._task_id = task_id
        self._open: set[str] = set()
        self._session_id: str | None = None

    @property
    def task_id(self) -> str:
        return self._task_id

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _publish(self, frame: dict[str, Any]) -> None:
        self._bus.publish(ConversationFrame(self._task_id, frame))

    async def _append(self, message) -> ConversationLog:
        return await self._storage.append(self._project_path, self._task_id, message)

    async def _update(self, message_id_: str, fn) -> None:
        await self._storage.update_message(self._project_path, self._task_id, message_id_, fn)

    async def record_user_input(self, content: str, command: str | None = None) -> UserMessage:
        message = UserMessage(
            content=content,
            metadata=MessageMetadata(command=command) if command else None,
        )
        await self._append(message)
        return message

    async def system_note(self, content: str, severity: str = "info") -> SystemMessage:
        message = SystemMessage(content=content, severity=severity)
        await self._append(message)
        return message

    async def session_started(self, session_id: str) -> None:
        self._session_id = session_id

    async def text_started(self, message_id_: str, turn_id: str) -> None:
        await self._append(AssistantMessage(id=message_id_, group_id=turn_id, status="streaming"))
        self._open.add(message_id_)
        self._publish(frames.chunk_start(self._task_id, message_id_, turn_id))

    async def text_delta(self, message_id_: str, text: str) -> None:
        def extend(message: AssistantMessage) -> None:
            message.content = message.content + text

        await self._update(message_id_, extend)
        self._publish(frames.chunk(self._task_id, message_id_, text))

    async def text_ended(self, message_id_: str) -> None:
        def finish(message: AssistantMessage) -> None:
            message.status = "complete"

        await self._update(message_id_, finish)
        self._open.discard(message_id_)
        self._publish(frames.chunk_end(self._task_id, message_id_))

    async def thinking(self, turn_id: str, text: str) -> None:
        thought = AssistantMessage(thinking=text, group_id=turn_id, status="complete")
        await self._append(thought)
        self._publish(frames.thinking_start(self._task_id, thought.id, turn_id))
        self._publish(frames.thinking(self._task_id, thought.id, text, turn_id))
        self._publish(frames.thinking_end(self._task_id, thought.id, turn_id))

    async def tool_started(self, update: ToolCallUpdate) -> None:
        call = ToolCall(name=update.name, input=update.input, status="pending")
        entry_id = tool_message_id(update.tool_use_id)
        await self._append(
            AssistantMessage(id=entry_id, tool_call=call, group_id=update.turn_id, status="streaming")
        )
        self._open.add(entry_id)
        self._publish(frames.tool_call("start", self._task_id, entry_id, call, update.turn_id))

    async def tool_finished(self, update: ToolCallUpdate) -> None:
        entry_id = tool_message_id(update.tool_use_id)
        call = ToolCall(
            name=update.name,
            input=update.input,
            output=update.output,
            status="error" if update.status == "error" else "success",
        )

        def settle(message: AssistantMessage) -> None:
            message.tool_call = call
            message.status = "error" if call.status == "error" else "complete"

        await self._update(entry_id, settle)
        self._open.discard(entry_id)
        self._publish(frames.tool_call("output", self._task_id, entry_id, call, update.turn_id))
        self._publish(frames.tool_call("end", self._task_id, entry_id, call, update.turn_id))

    async def structured_output(self, output: Any) -> None:
        self._publish(frames.structured_output(self._task_id, output))

    async def completed(self, outcome: TurnOutcome) -> None:
        logger.debug("Conversation turn completed", extra={"task_id": self._task_id})

    async def failed(self, message: str) -> None:
        """Mark open fragments as errored, record the failure, then publish it.

        Content already persisted stays in the log. Recording is best-effort:
        the error frame is published even when the log cannot be written.
        """

        def mark(entry: AssistantMessage) -> None:
            entry.status = "error"

        try:
            for entry_id in sorted(self._open):
                await self._update(entry_id, mark)
            await self._append(SystemMessage(content=message, severity="error"))
        except LanewardenError as exc:
            logger.warning(
                "Failed to record conversation failure",
                extra={"task_id": self._task_id, "error": str(exc)},
            )
        self._open.clear()
        self._publish(frames.error(self._task_id, message))

    async def design_complete(self, design_path: str, content: str) -> None:
        await self._append(SystemMessage(content=f"Design document saved to {design_path}"))
        self._publish(frames.design_complete(self._task_id, design_path, content))

    async def execute_complete(self, structured_output: Any, content: str) -> None:
        note = SystemMessage(content="Execution complete")
        if isinstance(structured_output, dict):
            summary = structured_output.get("summary")
            if summary:
                note = SystemMessage(content=f"Execution complete: {summary}")
        await self._append(note)
        self._publish(frames.execute_complete(self._task_id, structured_output, content))


__all__ = ["ConversationStreamer", "tool_message_id"]
