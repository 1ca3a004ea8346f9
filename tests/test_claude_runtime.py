from __future__ import annotations

import asyncio
from pathlib import Path

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from claude_agent_sdk.types import StreamEvent

from lanewarden.agent.claude import (
    STATUS_SERVER_NAME,
    ClaudeAgentRuntime,
    ClaudeAgentStream,
    MessageConverter,
)
from lanewarden.agent.events import (
    AssistantText,
    RunResult,
    SessionStarted,
    TextDelta,
    TextStarted,
    TextStopped,
    Thinking,
    ToolResult,
    ToolUse,
)
from lanewarden.agent.runtime import READ_ONLY_TOOLS, AgentRequest


def stream_event(event: dict, session_id: str = "sess-1") -> StreamEvent:
    return StreamEvent(uuid="evt", session_id=session_id, event=event)


def result_message(subtype: str = "success", **extra) -> ResultMessage:
    message = ResultMessage(
        subtype=subtype,
        duration_ms=10,
        duration_api_ms=5,
        is_error=subtype != "success",
        num_turns=1,
        session_id="sess-1",
        result=extra.pop("result", None),
    )
    for key, value in extra.items():
        setattr(message, key, value)
    return message


def test_system_message_announces_session_once() -> None:
    converter = MessageConverter()

    first = converter.convert(SystemMessage(subtype="init", data={"session_id": "sess-1"}))
    second = converter.convert(SystemMessage(subtype="init", data={"session_id": "sess-1"}))

    assert first == [SessionStarted("sess-1")]
    assert second == []


def test_stream_events_become_text_fragments() -> None:
    converter = MessageConverter(known_session_id="sess-1")

    events = []
    events += converter.convert(stream_event({"type": "content_block_start", "index": 0, "content_block": {"type": "text"}}))
    events += converter.convert(
        stream_event({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}})
    )
    events += converter.convert(stream_event({"type": "content_block_stop", "index": 0}))
    events += converter.convert(
        AssistantMessage(content=[TextBlock(text="Hi")], model="claude")
    )

    assert events == [SessionStarted("sess-1"), TextStarted(), TextDelta("Hi"), TextStopped()]


def test_assistant_blocks_without_streaming() -> None:
    converter = MessageConverter()

    events = converter.convert(
        AssistantMessage(
            content=[
                ThinkingBlock(thinking="plan", signature="sig"),
                TextBlock(text="Done"),
                ToolUseBlock(id="tu-1", name="Bash", input={"command": "ls"}),
            ],
            model="claude",
        )
    )

    assert events == [
        Thinking("plan"),
        AssistantText("Done"),
        ToolUse("tu-1", "Bash", {"command": "ls"}),
    ]


def test_tool_results_and_run_result() -> None:
    converter = MessageConverter(known_session_id="sess-0")

    tool_events = converter.convert(
        UserMessage(content=[ToolResultBlock(tool_use_id="tu-1", content="ok", is_error=None)])
    )
    final = converter.convert(
        result_message(result="all good", structured_output={"summary": "s"})
    )

    assert tool_events == [ToolResult("tu-1", "ok", False)]
    assert final[0] == SessionStarted("sess-1")
    run = final[1]
    assert isinstance(run, RunResult)
    assert run.success
    assert run.structured_output == {"summary": "s"}
    assert run.result == "all good"


def test_error_result_carries_message() -> None:
    run = MessageConverter().convert(result_message("error_max_turns", errors=["too many turns"]))[-1]

    assert not run.success
    assert run.error_message() == "too many turns"
    assert RunResult("error_during_execution").error_message() == "Execution failed"


def test_build_options_wires_status_tool_and_schema(tmp_path: Path) -> None:
    runtime = ClaudeAgentRuntime(cli_path="/opt/claude", permission_mode="acceptEdits")

    async def handler(status, move_to):
        return None

    request = AgentRequest(
        prompt="go",
        cwd=tmp_path,
        resume="sess-1",
        output_schema={"type": "object"},
        allowed_tools=READ_ONLY_TOOLS,
        status_handler=handler,
    )
    options = runtime.build_options(request)

    assert options.cwd == str(tmp_path)
    assert options.resume == "sess-1"
    assert options.permission_mode == "acceptEdits"
    assert options.include_partial_messages
    assert STATUS_SERVER_NAME in options.mcp_servers
    assert options.allowed_tools[: len(READ_ONLY_TOOLS)] == list(READ_ONLY_TOOLS)
    assert options.allowed_tools[-1] == "mcp__lanewarden__lanewarden_update"
    assert options.output_format == {"type": "json_schema", "schema": {"type": "object"}}


def test_build_options_without_extras(tmp_path: Path) -> None:
    options = ClaudeAgentRuntime().build_options(AgentRequest(prompt="go", cwd=tmp_path))

    assert options.resume is None
    assert options.mcp_servers == {}
    assert "Bash" in options.allowed_tools


def test_one_shot_stream_refuses_input(tmp_path: Path) -> None:
    class DummyClient:
        def __init__(self) -> None:
            self.disconnected = False

        async def disconnect(self) -> None:
            self.disconnected = True

    client = DummyClient()
    one_shot = ClaudeAgentStream(client, AgentRequest(prompt="go", cwd=tmp_path, interactive=False), 1.0)

    async def scenario():
        refused = await one_shot.send("more")
        await one_shot.close()
        return refused

    assert asyncio.run(scenario()) is False
    assert client.disconnected
