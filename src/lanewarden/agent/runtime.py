"""Boundary between Lanewarden and an external coding-agent runtime."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Protocol, Sequence

from .events import RuntimeEvent

StatusHandler = Callable[[str, "str | None"], Awaitable[None]]

TASK_TOOLS: tuple[str, ...] = ("Bash", "Read", "Edit", "Glob", "Grep", "Write")
READ_ONLY_TOOLS: tuple[str, ...] = ("Read", "Glob", "Grep")
CONVERSATION_TOOLS: tuple[str, ...] = ("Read", "Glob", "Grep", "Bash")


@dataclass(slots=True)
class AgentRequest:
    """Parameters for one agent stream.

    ``interactive`` streams stay open after a result so follow-up input can
    continue the same session; one-shot streams end with their first result.
    """

    prompt: str
    cwd: Path
    resume: str | None = None
    output_schema: dict[str, Any] | None = None
    allowed_tools: tuple[str, ...] = TASK_TOOLS
    interactive: bool = True
    status_handler: StatusHandler | None = None


class InputChannel:
    """Queue of user turns waiting to be fed into a live stream."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, text: str) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(text)
        return True

    async def get(self, timeout: float | None = None) -> str | None:
        """Return the next turn, or ``None`` once closed or after ``timeout``."""

        if self._closed and self._queue.empty():
            return None
        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)


class AgentStream(Protocol):
    def events(self) -> AsyncIterator[RuntimeEvent]: ...

    async def send(self, text: str) -> bool: ...

    async def close(self) -> None: ...


class AgentRuntime(Protocol):
    async def open(self, request: AgentRequest) -> AgentStream: ...


ScriptItem = RuntimeEvent | BaseException


class FakeAgentStream:
    """Scripted stream used in tests.

    Yields ``script`` in order (exceptions in the script are raised). With
    ``hold_open`` the stream then waits for input and answers each turn with
    the next batch from ``replies`` until closed.
    """

    def __init__(
        self,
        request: AgentRequest,
        script: Sequence[ScriptItem],
        *,
        hold_open: bool = False,
        replies: Iterable[Sequence[ScriptItem]] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.request = request
        self._script = list(script)
        self._hold_open = hold_open
        self._replies = [list(batch) for batch in replies or []]
        self._gate = gate
        self._inputs = InputChannel()
        self.received: list[str] = []
        self.closed = False

    async def _emit(self, items: Sequence[ScriptItem]) -> AsyncIterator[RuntimeEvent]:
        for item in items:
            if self.closed:
                return
            if isinstance(item, BaseException):
                raise item
            yield item
            await asyncio.sleep(0)

    async def events(self) -> AsyncIterator[RuntimeEvent]:
        if self._gate is not None:
            await self._gate.wait()
        async for event in self._emit(self._script):
            yield event
        while self._hold_open and not self.closed:
            text = await self._inputs.get()
            if text is None:
                return
            self.received.append(text)
            batch = self._replies.pop(0) if self._replies else []
            async for event in self._emit(batch):
                yield event

    async def send(self, text: str) -> bool:
        return self._inputs.put(text)

    async def close(self) -> None:
        self.closed = True
        self._inputs.close()


class FakeAgentRuntime:
    """Test double that hands out ``FakeAgentStream`` objects."""

    def __init__(
        self,
        scripts: Iterable[Sequence[ScriptItem]] | None = None,
        *,
        hold_open: bool = False,
        replies: Iterable[Sequence[ScriptItem]] | None = None,
        open_error: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self._scripts = [list(script) for script in scripts or []]
        self._hold_open = hold_open
        self._replies = [list(batch) for batch in replies or []]
        self._open_error = open_error
        self._gate = gate
        self.requests: list[AgentRequest] = []
        self.streams: list[FakeAgentStream] = []

    def queue(self, *script: ScriptItem) -> None:
        self._scripts.append(list(script))

    async def open(self, request: AgentRequest) -> FakeAgentStream:
        self.requests.append(request)
        await asyncio.sleep(0)
        if self._open_error is not None:
            raise self._open_error
        script = self._scripts.pop(0) if self._scripts else []
        stream = FakeAgentStream(
            request,
            script,
            hold_open=self._hold_open,
            replies=self._replies,
            gate=self._gate,
        )
        self.streams.append(stream)
        return stream


__all__ = [
    "AgentRequest",
    "AgentRuntime",
    "AgentStream",
    "CONVERSATION_TOOLS",
    "FakeAgentRuntime",
    "FakeAgentStream",
    "InputChannel",
    "READ_ONLY_TOOLS",
    "StatusHandler",
    "TASK_TOOLS",
]
