"""Agent Session Manager: at most one live or recently finished run per task."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from uuid import uuid4

from ..errors import InvalidStateError
from .bus import Error, EventBus, Exit, Log, Output, SessionStart, StatusUpdate, StructuredOutputEvent
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
    tool_result_text,
)
from .runtime import CONVERSATION_TOOLS, TASK_TOOLS, AgentRequest, AgentRuntime, AgentStream

logger = logging.getLogger(__name__)

CYAN = "\x1b[36m"
GRAY = "\x1b[90m"
RED = "\x1b[31m"
RESET = "\x1b[0m"

# Raised by the runtime when its process is torn down after a finished run.
BENIGN_EXIT_MARKERS = ("Process exited", "Command failed with exit code")

STOP_WAIT_SECONDS = 5.0


def new_message_id() -> str:
    return f"msg-{uuid4().hex[:12]}"


def format_tool_use(event: ToolUse) -> str:
    return f"{CYAN}[Tool Use] {event.name}: {json.dumps(event.input, default=str)}\r\n{RESET}"


def format_tool_result(event: ToolResult) -> str | None:
    if event.is_error:
        return f"{RED}[Tool Error] {tool_result_text(event.content) or 'Unknown error'}\r\n{RESET}"
    if isinstance(event.content, str):
        return f"{GRAY}[Tool Result] {event.content}\r\n{RESET}"
    if isinstance(event.content, list):
        return f"{GRAY}[Tool Result] (Multimedia content)\r\n{RESET}"
    return None


def is_benign_exit(exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in BENIGN_EXIT_MARKERS)


@dataclass(slots=True)
class AgentSession:
    task_id: str
    stream: AgentStream
    external_id: str | None = None
    buffer: list[str] = field(default_factory=list)
    completed: bool = False
    succeeded: bool = False
    announced: bool = False
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    consumer: asyncio.Task[None] | None = None

    @property
    def output(self) -> str:
        return "".join(self.buffer)


@dataclass(slots=True)
class SessionInfo:
    task_id: str
    external_id: str | None
    completed: bool


@dataclass(slots=True)
class ToolCallUpdate:
    """A tool invocation observed during a conversation turn."""

    turn_id: str
    tool_use_id: str
    name: str
    input: Any = None
    output: str | None = None
    status: str = "pending"


@dataclass(slots=True)
class TurnOutcome:
    session_id: str | None
    text: str = ""
    success: bool = False
    structured_output: Any = None
    error: str | None = None


class TurnCallbacks:
    """Receiver for conversation turn events. Every hook is awaited in event order."""

    async def session_started(self, session_id: str) -> None:
        return None

    async def text_started(self, message_id: str, turn_id: str) -> None:
        return None

    async def text_delta(self, message_id: str, text: str) -> None:
        return None

    async def text_ended(self, message_id: str) -> None:
        return None

    async def thinking(self, turn_id: str, text: str) -> None:
        return None

    async def tool_started(self, update: ToolCallUpdate) -> None:
        return None

    async def tool_finished(self, update: ToolCallUpdate) -> None:
        return None

    async def structured_output(self, output: Any) -> None:
        return None

    async def completed(self, outcome: TurnOutcome) -> None:
        return None

    async def failed(self, message: str) -> None:
        return None


class AgentSessionManager:
    """Own the session table and translate runtime events into bus events.

    The table is keyed by task id. Entries are kept after their stream ends so
    late viewers can replay the buffered output; a later start for the same
    task replaces a completed entry and resumes its external session.
    """

    def __init__(self, runtime: AgentRuntime, bus: EventBus) -> None:
        self._runtime = runtime
        self._bus = bus
        self._sessions: dict[str, AgentSession] = {}
        self._initializing: set[str] = set()
        self._turns: set[str] = set()
        self._known_ids: dict[str, str] = {}

    @property
    def bus(self) -> EventBus:
        return self._bus

    def _live(self, task_id: str) -> AgentSession | None:
        session = self._sessions.get(task_id)
        if session is not None and not session.completed:
            return session
        return None

    def is_busy(self, task_id: str) -> bool:
        return (
            task_id in self._initializing
            or task_id in self._turns
            or self._live(task_id) is not None
        )

    def _remember(self, task_id: str, session_id: str) -> None:
        self._known_ids[task_id] = session_id

    def _status_handler(self, task_id: str):
        async def handle(status: str, move_to: str | None) -> None:
            self._bus.publish(
                Log(task_id, f"Agent reported status={status} moveTo={move_to or 'unchanged'}")
            )
            self._bus.publish(StatusUpdate(task_id, status, move_to))

        return handle

    async def start_session(
        self,
        task_id: str,
        working_dir: str | Path,
        prompt: str,
        resume: str | None = None,
        output_schema: dict[str, Any] | None = None,
        *,
        allowed_tools: tuple[str, ...] = TASK_TOOLS,
    ) -> str | None:
        """Start (or return) the task-execution session for ``task_id``.

        Returns the external session id known at this point; a fresh session's
        id arrives later through a ``SessionStart`` bus event.
        A completed entry is replaced by a new stream that resumes its external
        session and keeps its buffered output.
        """

        live = self._live(task_id)
        if live is not None:
            self._bus.publish(Log(task_id, "Resuming existing in-memory session"))
            return live.external_id
        if task_id in self._initializing:
            return resume
        if task_id in self._turns:
            raise InvalidStateError(f"Task {task_id} has a conversation turn in progress")

        previous = self._sessions.get(task_id)
        if resume is None and previous is not None:
            resume = previous.external_id
        resume = resume or self._known_ids.get(task_id)

        self._initializing.add(task_id)
        request = AgentRequest(
            prompt=prompt,
            cwd=Path(working_dir),
            resume=resume,
            output_schema=output_schema,
            allowed_tools=allowed_tools,
            interactive=True,
            status_handler=self._status_handler(task_id),
        )
        try:
            stream = await self._runtime.open(request)
        except Exception:
            self._initializing.discard(task_id)
            logger.exception("Failed to open agent stream", extra={"task_id": task_id})
            raise

        # A re-run appends to the previous run's output buffer.
        history = list(previous.buffer) if previous is not None else []
        session = AgentSession(task_id=task_id, stream=stream, external_id=resume, buffer=history)
        self._sessions[task_id] = session
        self._initializing.discard(task_id)
        self._bus.publish(Log(task_id, f"Starting execution for task {task_id}"))
        session.consumer = asyncio.create_task(self._consume(session), name=f"agent-session-{task_id}")
        logger.info(
            "Started agent session",
            extra={"task_id": task_id, "resume": resume or "none", "cwd": str(working_dir)},
        )
        return resume

    def _append(self, session: AgentSession, text: str) -> None:
        session.buffer.append(text)
        self._bus.publish(Output(session.task_id, text))

    def _handle(self, session: AgentSession, event: RuntimeEvent) -> None:
        task_id = session.task_id
        if isinstance(event, SessionStarted):
            if not session.announced:
                session.announced = True
                session.external_id = event.session_id
                self._remember(task_id, event.session_id)
                self._bus.publish(SessionStart(task_id, event.session_id))
        elif isinstance(event, (TextDelta, AssistantText)):
            self._append(session, event.text)
        elif isinstance(event, ToolUse):
            self._append(session, format_tool_use(event))
        elif isinstance(event, ToolResult):
            rendered = format_tool_result(event)
            if rendered:
                self._append(session, rendered)
        elif isinstance(event, RunResult):
            if event.session_id and not session.announced:
                self._handle(session, SessionStarted(event.session_id))
            if event.structured_output is not None:
                self._bus.publish(StructuredOutputEvent(task_id, event.structured_output))
            if event.success:
                session.succeeded = True
                self._bus.publish(Log(task_id, "Task completed"))
                self._bus.publish(StatusUpdate(task_id, "completed"))
            else:
                self._bus.publish(Error(task_id, event.error_message()))
        elif isinstance(event, (TextStarted, TextStopped, Thinking)):
            logger.debug("Session event", extra={"task_id": task_id, "event": type(event).__name__})

    async def _consume(self, session: AgentSession) -> None:
        task_id = session.task_id
        try:
            async for event in session.stream.events():
                if session.cancel.is_set():
                    break
                self._handle(session, event)
        except Exception as exc:
            if session.cancel.is_set():
                logger.info("Session stream ended after stop", extra={"task_id": task_id})
            elif session.succeeded and is_benign_exit(exc):
                logger.info("Ignoring runtime exit after successful run", extra={"task_id": task_id})
            else:
                logger.warning("Session stream failed", extra={"task_id": task_id, "error": str(exc)})
                self._bus.publish(Error(task_id, str(exc) or type(exc).__name__))
        finally:
            session.completed = True
            logger.info("Session completed, keeping output buffer", extra={"task_id": task_id})
            self._bus.publish(Exit(task_id, 0))

    async def send_input(self, task_id: str, text: str) -> bool:
        session = self._live(task_id)
        if session is None:
            return False
        return await session.stream.send(text)

    async def stop_task(self, task_id: str) -> bool:
        session = self._sessions.get(task_id)
        if session is None:
            return False
        session.cancel.set()
        try:
            await session.stream.close()
        except Exception as exc:
            logger.warning("Failed to close agent stream", extra={"task_id": task_id, "error": str(exc)})
        session.completed = True
        if session.consumer is not None and not session.consumer.done():
            await asyncio.wait({session.consumer}, timeout=STOP_WAIT_SECONDS)
        self._bus.publish(StatusUpdate(task_id, "idle"))
        logger.info("Stopped agent session", extra={"task_id": task_id})
        return True

    def get_session_output(self, task_id: str) -> str | None:
        if task_id in self._initializing:
            return ""
        session = self._sessions.get(task_id)
        if session is None:
            return None
        return session.output

    def get_session_info(self, task_id: str) -> SessionInfo | None:
        session = self._sessions.get(task_id)
        if session is not None:
            return SessionInfo(task_id, session.external_id, session.completed)
        known = self._known_ids.get(task_id)
        if known is not None:
            return SessionInfo(task_id, known, True)
        return None

    def forget(self, task_id: str) -> None:
        """Drop every trace of a task's sessions (used when the task is deleted)."""

        self._sessions.pop(task_id, None)
        self._known_ids.pop(task_id, None)

    async def send_user_message(
        self,
        task_id: str,
        working_dir: str | Path,
        text: str,
        callbacks: TurnCallbacks,
        resume: str | None = None,
        *,
        output_schema: dict[str, Any] | None = None,
        allowed_tools: tuple[str, ...] = CONVERSATION_TOOLS,
    ) -> TurnOutcome:
        """Run one conversation turn and report it through ``callbacks``."""

        if self.is_busy(task_id):
            raise InvalidStateError(f"Task {task_id} already has an agent run in progress")
        resume = resume or self._known_ids.get(task_id)
        self._turns.add(task_id)
        try:
            request = AgentRequest(
                prompt=text,
                cwd=Path(working_dir),
                resume=resume,
                output_schema=output_schema,
                allowed_tools=allowed_tools,
                interactive=False,
            )
            stream = await self._runtime.open(request)
            try:
                return await self._run_turn(task_id, stream, callbacks, resume)
            finally:
                await stream.close()
        finally:
            self._turns.discard(task_id)

    async def _run_turn(
        self,
        task_id: str,
        stream: AgentStream,
        callbacks: TurnCallbacks,
        resume: str | None,
    ) -> TurnOutcome:
        outcome = TurnOutcome(session_id=resume)
        turn_id = new_message_id()
        message_id: str | None = None
        pending: dict[str, ToolCallUpdate] = {}
        announced = False
        finished = False
        pieces: list[str] = []

        async def open_text() -> str:
            nonlocal message_id
            if message_id is None:
                message_id = new_message_id()
                await callbacks.text_started(message_id, turn_id)
            return message_id

        async def close_text() -> None:
            nonlocal message_id
            if message_id is not None:
                closing, message_id = message_id, None
                await callbacks.text_ended(closing)

        try:
            async for event in stream.events():
                if isinstance(event, SessionStarted):
                    if not announced:
                        announced = True
                        outcome.session_id = event.session_id
                        self._remember(task_id, event.session_id)
                        await callbacks.session_started(event.session_id)
                elif isinstance(event, TextStarted):
                    await open_text()
                elif isinstance(event, (TextDelta, AssistantText)):
                    current = await open_text()
                    pieces.append(event.text)
                    await callbacks.text_delta(current, event.text)
                elif isinstance(event, TextStopped):
                    await close_text()
                elif isinstance(event, Thinking):
                    await callbacks.thinking(turn_id, event.text)
                elif isinstance(event, ToolUse):
                    await close_text()
                    update = ToolCallUpdate(turn_id, event.tool_use_id, event.name, event.input)
                    pending[event.tool_use_id] = update
                    await callbacks.tool_started(update)
                elif isinstance(event, ToolResult):
                    update = pending.pop(event.tool_use_id, None)
                    if update is None:
                        continue
                    update.status = "error" if event.is_error else "success"
                    update.output = tool_result_text(event.content)
                    await callbacks.tool_finished(update)
                elif isinstance(event, RunResult):
                    finished = True
                    await close_text()
                    if event.session_id and not announced:
                        announced = True
                        outcome.session_id = event.session_id
                        self._remember(task_id, event.session_id)
                        await callbacks.session_started(event.session_id)
                    outcome.text = "".join(pieces)
                    if event.structured_output is not None:
                        outcome.structured_output = event.structured_output
                        await callbacks.structured_output(event.structured_output)
                    if event.success:
                        outcome.success = True
                        await callbacks.completed(outcome)
                    else:
                        outcome.error = event.error_message()
                        await callbacks.failed(outcome.error)
        except Exception as exc:
            if outcome.success and is_benign_exit(exc):
                logger.info("Ignoring runtime exit after successful turn", extra={"task_id": task_id})
                return outcome
            logger.warning("Conversation turn failed", extra={"task_id": task_id, "error": str(exc)})
            outcome.text = "".join(pieces)
            outcome.error = str(exc) or type(exc).__name__
            await callbacks.failed(outcome.error)
            return outcome
        if not finished:
            await close_text()
            outcome.text = "".join(pieces)
            outcome.error = "Agent run ended without a result"
            await callbacks.failed(outcome.error)
        return outcome

    async def shutdown(self) -> None:
        live = [session for session in self._sessions.values() if not session.completed]
        for session in live:
            session.cancel.set()
            try:
                await session.stream.close()
            except Exception as exc:
                logger.warning(
                    "Failed to close agent stream on shutdown",
                    extra={"task_id": session.task_id, "error": str(exc)},
                )
        consumers = [s.consumer for s in self._sessions.values() if s.consumer and not s.consumer.done()]
        for consumer in consumers:
            consumer.cancel()
        if consumers:
            await asyncio.gather(*consumers, return_exceptions=True)


__all__ = [
    "AgentSession",
    "AgentSessionManager",
    "SessionInfo",
    "ToolCallUpdate",
    "TurnCallbacks",
    "TurnOutcome",
    "format_tool_result",
    "format_tool_use",
    "is_benign_exit",
    "new_message_id",
]
