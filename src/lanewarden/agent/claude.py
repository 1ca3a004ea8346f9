"""Agent runtime backed by the Claude Agent SDK."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    create_sdk_mcp_server,
    tool,
)
from claude_agent_sdk.types import StreamEvent

from ..errors import AgentRuntimeError
from .events import (
    AssistantText,
    RunResult,
    RuntimeEvent,
    SessionStarted,
    TextDelta,
    TextStarted,
    TextStopped,
    Thinking,
    ToolResult,
    ToolUse,
)
from .runtime import AgentRequest, InputChannel, StatusHandler

logger = logging.getLogger(__name__)

STATUS_SERVER_NAME = "lanewarden"
STATUS_TOOL_NAME = "lanewarden_update"


class MessageConverter:
    """Translate SDK messages into runtime events.

    One converter lives per stream: it remembers which content blocks are
    open, whether text already arrived as deltas, and whether the session id
    was announced.
    """

    def __init__(self, known_session_id: str | None = None) -> None:
        self._session_id = known_session_id
        self._announced = False
        self._blocks: dict[int, str] = {}
        self._streamed_text = False

    def _announce(self, session_id: str | None) -> list[RuntimeEvent]:
        if not session_id or self._announced:
            return []
        self._announced = True
        self._session_id = session_id
        return [SessionStarted(session_id)]

    def convert(self, message: Any) -> list[RuntimeEvent]:
        events: list[RuntimeEvent] = []
        if isinstance(message, SystemMessage):
            data = message.data if isinstance(message.data, dict) else {}
            events.extend(self._announce(data.get("session_id")))
        elif isinstance(message, StreamEvent):
            events.extend(self._announce(message.session_id))
            events.extend(self._convert_stream_event(message.event))
        elif isinstance(message, AssistantMessage):
            for block in message.content:
                if isinstance(block, TextBlock):
                    if not self._streamed_text and block.text:
                        events.append(AssistantText(block.text))
                elif isinstance(block, ThinkingBlock):
                    events.append(Thinking(block.thinking))
                elif isinstance(block, ToolUseBlock):
                    events.append(ToolUse(block.id, block.name, block.input))
            self._streamed_text = False
        elif isinstance(message, UserMessage):
            content = message.content if isinstance(message.content, list) else []
            for block in content:
                if isinstance(block, ToolResultBlock):
                    events.append(
                        ToolResult(block.tool_use_id, block.content, bool(block.is_error))
                    )
        elif isinstance(message, ResultMessage):
            events.extend(self._announce(message.session_id))
            errors = getattr(message, "errors", None) or ()
            events.append(
                RunResult(
                    subtype=message.subtype,
                    session_id=message.session_id or self._session_id,
                    errors=tuple(str(item) for item in errors),
                    structured_output=getattr(message, "structured_output", None),
                    result=message.result,
                )
            )
        else:
            logger.debug("Ignoring SDK message", extra={"message_type": type(message).__name__})
        return events

    def _convert_stream_event(self, event: dict[str, Any]) -> list[RuntimeEvent]:
        kind = event.get("type")
        index = event.get("index", 0)
        if kind == "content_block_start":
            block_type = (event.get("content_block") or {}).get("type", "")
            self._blocks[index] = block_type
            if block_type == "text":
                return [TextStarted()]
        elif kind == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                self._streamed_text = True
                return [TextDelta(delta["text"])]
        elif kind == "content_block_stop":
            if self._blocks.pop(index, None) == "text":
                return [TextStopped()]
        return []


def build_status_server(handler: StatusHandler):
    """In-process MCP server exposing the task status tool to the agent."""

    @tool(
        STATUS_TOOL_NAME,
        "Update the status of the current task. Use it when you start working, finish, "
        "or hit a failure. Optionally move the task to another lane.",
        {"status": str, "moveTo": str},
    )
    async def update_status(args: dict[str, Any]) -> dict[str, Any]:
        status = str(args.get("status", "")).strip()
        move_to = args.get("moveTo") or None
        await handler(status, move_to)
        return {
            "content": [
                {
                    "type": "text",
                    "text": f"Task updated. Status: {status}, Lane: {move_to or 'unchanged'}",
                }
            ]
        }

    return create_sdk_mcp_server(name=STATUS_SERVER_NAME, version="1.0.0", tools=[update_status])


class ClaudeAgentStream:
    """One ``ClaudeSDKClient`` connection driven as an ``AgentStream``."""

    def __init__(self, client: ClaudeSDKClient, request: AgentRequest, linger_seconds: float) -> None:
        self._client = client
        self._request = request
        self._linger = linger_seconds
        self._inputs = InputChannel()
        self._outstanding = 1
        self._turn_ready = asyncio.Event()
        self._pump: asyncio.Task[None] | None = None
        self._closed = False

    async def _forward_inputs(self) -> None:
        while True:
            text = await self._inputs.get()
            if text is None:
                return
            await self._client.query(text)
            self._outstanding += 1
            self._turn_ready.set()

    async def events(self) -> AsyncIterator[RuntimeEvent]:
        converter = MessageConverter(self._request.resume)
        if self._request.interactive:
            self._pump = asyncio.create_task(self._forward_inputs())
        async for message in self._client.receive_messages():
            for event in converter.convert(message):
                yield event
            if not isinstance(message, ResultMessage):
                continue
            self._outstanding -= 1
            if not self._request.interactive or self._closed:
                return
            if self._outstanding > 0:
                continue
            self._turn_ready.clear()
            try:
                await asyncio.wait_for(self._turn_ready.wait(), self._linger)
            except asyncio.TimeoutError:
                logger.debug("No follow-up input, closing stream", extra={"cwd": str(self._request.cwd)})
                return

    async def send(self, text: str) -> bool:
        if self._closed or not self._request.interactive:
            return False
        return self._inputs.put(text)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inputs.close()
        if self._pump is not None:
            self._pump.cancel()
        await self._client.disconnect()


class ClaudeAgentRuntime:
    """Open ``ClaudeAgentStream`` objects for agent requests."""

    def __init__(
        self,
        *,
        cli_path: str | None = None,
        permission_mode: str = "default",
        linger_seconds: float = 300.0,
    ) -> None:
        self._cli_path = cli_path
        self._permission_mode = permission_mode
        self._linger = linger_seconds

    def build_options(self, request: AgentRequest) -> ClaudeAgentOptions:
        allowed = list(request.allowed_tools)
        mcp_servers: dict[str, Any] = {}
        if request.status_handler is not None:
            mcp_servers[STATUS_SERVER_NAME] = build_status_server(request.status_handler)
            allowed.append(f"mcp__{STATUS_SERVER_NAME}__{STATUS_TOOL_NAME}")
        kwargs: dict[str, Any] = {
            "allowed_tools": allowed,
            "setting_sources": ["project"],
            "cwd": str(request.cwd),
            "permission_mode": self._permission_mode,
            "include_partial_messages": True,
        }
        if mcp_servers:
            kwargs["mcp_servers"] = mcp_servers
        if request.resume:
            kwargs["resume"] = request.resume
        if self._cli_path:
            kwargs["cli_path"] = self._cli_path
        if request.output_schema is not None:
            kwargs["output_format"] = {"type": "json_schema", "schema": request.output_schema}
        return ClaudeAgentOptions(**kwargs)

    async def open(self, request: AgentRequest) -> ClaudeAgentStream:
        client = ClaudeSDKClient(options=self.build_options(request))
        try:
            await client.connect()
            await client.query(request.prompt)
        except Exception as exc:
            await client.disconnect()
            raise AgentRuntimeError(f"Failed to start agent session: {exc}") from exc
        logger.info(
            "Opened agent stream",
            extra={"cwd": str(request.cwd), "resume": request.resume or "none"},
        )
        return ClaudeAgentStream(client, request, self._linger)


__all__ = [
    "ClaudeAgentRuntime",
    "ClaudeAgentStream",
    "MessageConverter",
    "build_status_server",
]
