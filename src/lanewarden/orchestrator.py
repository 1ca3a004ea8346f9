"""The service object wiring board, sessions, conversations and the event bus."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .agent.bus import (
    Error,
    EventBus,
    SessionStart,
    StatusUpdate,
    StructuredOutputEvent,
    Subscription,
)
from .agent.runtime import CONVERSATION_TOOLS, READ_ONLY_TOOLS, TASK_TOOLS, AgentRuntime
from .agent.sessions import AgentSessionManager, TurnOutcome
from .board.documents import design_markdown, read_document, write_document
from .board.machine import BoardStateMachine
from .board.models import LaneId, ProjectData, ProjectRef, Task, TaskStatus
from .board.prompts import build_design_prompt, build_execution_prompt, compose_prompt
from .config import LanewardenSettings
from .conversation.export import conversation_to_markdown
from .conversation.models import ConversationLog
from .conversation.protocol import ConversationStreamer
from .conversation.storage import ConversationStorage
from .errors import AgentRuntimeError, InvalidStateError, LanewardenError, NotFoundError
from .lanes.loader import LaneCatalog
from .storage.paths import design_relpath, plan_relpath
from .storage.registry import ProjectRegistry
from .storage.task_store import TaskStore
from .worktrees.manager import WorktreeManager

logger = logging.getLogger(__name__)

# Session events that change the task record.
_RECORDED_EVENTS = (StatusUpdate, Error, SessionStart, StructuredOutputEvent)


@dataclass(slots=True)
class ExecutionStart:
    session_id: str | None
    resumed: bool


@dataclass(slots=True)
class Attachment:
    session_id: str | None
    buffered_output: str


class Orchestrator:
    """Built once per process and handed to the gateway and the MCP tools."""

    def __init__(
        self,
        settings: LanewardenSettings,
        runtime: AgentRuntime,
        *,
        bus: EventBus | None = None,
        registry: ProjectRegistry | None = None,
        store: TaskStore | None = None,
        worktrees: WorktreeManager | None = None,
        conversations: ConversationStorage | None = None,
        lanes: LaneCatalog | None = None,
    ) -> None:
        self.settings = settings
        self.bus = bus or EventBus()
        self.registry = registry or ProjectRegistry(settings.home_dir)
        self.store = store or TaskStore(retry_attempts=settings.store_retry_attempts)
        self.worktrees = worktrees or WorktreeManager(
            author_name=settings.git_author_name,
            author_email=settings.git_author_email,
        )
        self.conversations = conversations or ConversationStorage()
        self.lanes = lanes or LaneCatalog()
        self.board = BoardStateMachine(self.store, self.worktrees, self.conversations, self.bus)
        self.sessions = AgentSessionManager(runtime, self.bus)
        self._task_projects: dict[str, str] = {}
        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task[None] | None = None

    # lifecycle

    async def start(self) -> None:
        if self._consumer is not None:
            return
        self._subscription = self.bus.subscribe(lambda event: isinstance(event, _RECORDED_EVENTS))
        self._consumer = asyncio.create_task(self._record_events(), name="lanewarden-recorder")
        logger.info("Orchestrator started")

    async def close(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        await self.sessions.shutdown()
        logger.info("Orchestrator stopped")

    async def _record_events(self) -> None:
        assert self._subscription is not None
        async for event in self._subscription:
            project_path = self._task_projects.get(event.task_id)
            if project_path is None:
                logger.debug("Dropping event for unknown task", extra={"task_id": event.task_id})
                continue
            try:
                await self._record(project_path, event)
            except LanewardenError as exc:
                logger.warning(
                    "Failed to apply session event",
                    extra={"task_id": event.task_id, "topic": event.topic, "error": str(exc)},
                )

    async def _record(self, project_path: str, event) -> None:
        if isinstance(event, StatusUpdate):
            await self.board.apply_status(project_path, event.task_id, event.status, event.move_to)
        elif isinstance(event, Error):
            await self.board.set_status(project_path, event.task_id, TaskStatus.FAILED.value)
        elif isinstance(event, SessionStart):
            await self.board.record_session(project_path, event.task_id, event.session_id)
        elif isinstance(event, StructuredOutputEvent):
            await self.board.record_structured_output(project_path, event.task_id, event.output)

    # projects

    async def list_projects(self) -> list[ProjectRef]:
        return await self.registry.list_projects()

    async def open_project(self, path: str | Path, name: str | None = None) -> ProjectRef:
        project = await self.registry.register(path, name)
        await self.store.initialize(project.path, project.id)
        return project

    async def remove_project(self, project_id: str) -> None:
        await self.registry.remove(project_id)

    async def project(self, project_id: str) -> ProjectRef:
        return await self.registry.get(project_id)

    async def board_data(self, project_id: str) -> ProjectData:
        project = await self.registry.get(project_id)
        data = await self.store.load(project.path)
        data.lanes = self.lanes.apply_to(data.lanes)
        return data

    async def resolve(self, project_id: str, task_id: str) -> tuple[ProjectRef, Task]:
        project = await self.registry.get(project_id)
        task = await self.board.get_task(project.path, task_id)
        return project, task

    async def locate_task(self, task_id: str, project_id: str | None = None) -> tuple[ProjectRef, Task]:
        """Find a task by id, searching every registered project when none is given."""

        if project_id:
            return await self.resolve(project_id, task_id)
        for project in await self.registry.list_projects():
            if not await self.store.exists(project.path):
                continue
            data = await self.store.load(project.path)
            task = data.find_task(task_id)
            if task is not None:
                return project, task
        raise NotFoundError(f"Task not found: {task_id}")

    def working_dir(self, project_path: str | Path, task: Task) -> Path:
        """The task's worktree when it exists on disk, else the project root."""

        active = task.active_worktree
        if active is not None and Path(active.path).is_dir():
            return Path(active.path)
        return Path(project_path)

    async def _design_text(self, project_path: str | Path, task: Task) -> str | None:
        if not task.design_path:
            return None
        try:
            return await read_document(project_path, task.design_path)
        except NotFoundError:
            logger.warning(
                "Design document missing",
                extra={"task_id": task.id, "design_path": task.design_path},
            )
            return None

    async def _system_prompt(self, project_path: str | Path, lane_id: str) -> str:
        data = await self.store.load(project_path)
        return self.lanes.system_prompt(lane_id, data.lanes)

    # task deletion also drops the in-memory session

    async def delete_task(self, project_id: str, task_id: str) -> None:
        project = await self.registry.get(project_id)
        info = self.sessions.get_session_info(task_id)
        if info is not None and not info.completed:
            await self.sessions.stop_task(task_id)
        await self.board.delete_task(project.path, task_id)
        self.sessions.forget(task_id)
        self._task_projects.pop(task_id, None)

    # terminal-style execution

    async def execute(self, project_id: str, task_id: str) -> ExecutionStart:
        project, task = await self.resolve(project_id, task_id)
        self._task_projects[task_id] = project.path

        info = self.sessions.get_session_info(task_id)
        if info is not None and not info.completed:
            return ExecutionStart(session_id=info.external_id, resumed=True)
        self._ensure_idle(task_id)

        prompt = build_execution_prompt(task, await self._design_text(project.path, task))
        system_prompt = await self._system_prompt(project.path, task.lane_id)
        resume = task.agent_session.id if task.agent_session else None

        await self.board.set_status(project.path, task_id, TaskStatus.RUNNING.value)
        try:
            session_id = await self.sessions.start_session(
                task_id,
                self.working_dir(project.path, task),
                compose_prompt(system_prompt, prompt),
                resume,
                self.lanes.output_schema(task.lane_id),
                allowed_tools=TASK_TOOLS,
            )
        except AgentRuntimeError:
            await self.board.set_status(project.path, task_id, TaskStatus.FAILED.value)
            raise
        return ExecutionStart(session_id=session_id, resumed=False)

    async def attach(self, project_id: str, task_id: str) -> Attachment:
        project, task = await self.resolve(project_id, task_id)
        self._task_projects.setdefault(task_id, project.path)
        info = self.sessions.get_session_info(task_id)
        session_id = info.external_id if info is not None else None
        if session_id is None and task.agent_session is not None:
            session_id = task.agent_session.id
        return Attachment(session_id, self.sessions.get_session_output(task_id) or "")

    async def send_input(self, task_id: str, data: str) -> bool:
        return await self.sessions.send_input(task_id, data)

    async def stop(self, task_id: str) -> bool:
        return await self.sessions.stop_task(task_id)

    # conversation-mode runs

    def streamer(self, project_path: str | Path, task_id: str) -> ConversationStreamer:
        return ConversationStreamer(self.conversations, self.bus, project_path, task_id)

    def _ensure_idle(self, task_id: str) -> None:
        if self.sessions.is_busy(task_id):
            raise InvalidStateError(f"Task {task_id} already has an agent run in progress")

    async def _converse(
        self,
        project: ProjectRef,
        task: Task,
        streamer: ConversationStreamer,
        prompt: str,
        *,
        output_schema: dict[str, Any] | None,
        allowed_tools: tuple[str, ...],
        cwd: Path,
    ) -> TurnOutcome | None:
        resume = task.agent_session.id if task.agent_session else None
        try:
            outcome = await self.sessions.send_user_message(
                task.id,
                cwd,
                prompt,
                streamer,
                resume,
                output_schema=output_schema,
                allowed_tools=allowed_tools,
            )
        except LanewardenError as exc:
            logger.warning("Conversation run failed", extra={"task_id": task.id, "error": str(exc)})
            await streamer.failed(str(exc))
            return None
        if outcome.session_id:
            await self.board.record_session(project.path, task.id, outcome.session_id)
        return outcome

    async def design_start(self, project_id: str, task_id: str) -> TurnOutcome | None:
        """Run a design turn, save the design document and advance the task to develop."""

        project, task = await self.resolve(project_id, task_id)
        self._ensure_idle(task_id)
        streamer = self.streamer(project.path, task_id)
        prompt = build_design_prompt(task)
        await streamer.record_user_input(prompt, command="design")
        await self.board.set_status(project.path, task_id, TaskStatus.RUNNING.value)

        outcome = await self._converse(
            project,
            task,
            streamer,
            compose_prompt(await self._system_prompt(project.path, LaneId.DESIGN.value), prompt),
            output_schema=self.lanes.output_schema(LaneId.DESIGN.value),
            allowed_tools=READ_ONLY_TOOLS,
            cwd=Path(project.path),
        )
        if outcome is None or not outcome.success:
            await self.board.set_status(project.path, task_id, TaskStatus.FAILED.value)
            return outcome

        content = outcome.text.strip()
        if isinstance(outcome.structured_output, dict):
            await self.board.record_structured_output(
                project.path, task_id, outcome.structured_output, LaneId.DESIGN.value
            )
            if not content:
                content = design_markdown(task.title, outcome.structured_output)
        if not content:
            await streamer.failed("Agent produced no design")
            await self.board.set_status(project.path, task_id, TaskStatus.FAILED.value)
            return outcome

        relpath = task.design_path or design_relpath(task_id)
        await write_document(project.path, relpath, content)
        await self.board.set_design_path(project.path, task_id, relpath)
        try:
            await self.board.complete_run(project.path, task_id, LaneId.DEVELOP.value)
        except LanewardenError as exc:
            logger.warning("Design saved but the task did not advance", extra={"task_id": task_id, "error": str(exc)})
            await streamer.system_note(f"Task could not move to develop: {exc}", severity="warning")
        await streamer.design_complete(relpath, content)
        return outcome

    async def execute_start(self, project_id: str, task_id: str) -> TurnOutcome | None:
        """Run the task in conversation mode and apply the lane's completion policy."""

        project, task = await self.resolve(project_id, task_id)
        self._ensure_idle(task_id)
        prompt = build_execution_prompt(task, await self._design_text(project.path, task))
        streamer = self.streamer(project.path, task_id)
        await streamer.record_user_input(prompt, command="execute")
        await self.board.set_status(project.path, task_id, TaskStatus.RUNNING.value)

        outcome = await self._converse(
            project,
            task,
            streamer,
            compose_prompt(await self._system_prompt(project.path, task.lane_id), prompt),
            output_schema=self.lanes.output_schema(task.lane_id),
            allowed_tools=TASK_TOOLS,
            cwd=self.working_dir(project.path, task),
        )
        if outcome is None or not outcome.success:
            await self.board.set_status(project.path, task_id, TaskStatus.FAILED.value)
            return outcome

        if outcome.structured_output is not None:
            await self.board.record_structured_output(
                project.path, task_id, outcome.structured_output, task.lane_id
            )
        try:
            await self.board.complete_run(project.path, task_id)
        except LanewardenError as exc:
            logger.warning("Run completed but the task did not advance", extra={"task_id": task_id, "error": str(exc)})
            await streamer.system_note(f"Task could not advance: {exc}", severity="warning")
        await streamer.execute_complete(outcome.structured_output, outcome.text)
        return outcome

    async def user_input(self, project_id: str, task_id: str, content: str) -> TurnOutcome | None:
        project, task = await self.resolve(project_id, task_id)
        self._ensure_idle(task_id)
        streamer = self.streamer(project.path, task_id)
        await streamer.record_user_input(content)
        return await self._converse(
            project,
            task,
            streamer,
            content,
            output_schema=None,
            allowed_tools=CONVERSATION_TOOLS,
            cwd=self.working_dir(project.path, task),
        )

    async def conversation(self, project_id: str, task_id: str) -> ConversationLog:
        project, _ = await self.resolve(project_id, task_id)
        log = await self.conversations.load(project.path, task_id)
        return log if log is not None else ConversationLog(task_id=task_id)

    async def clear_conversation(self, project_id: str, task_id: str) -> None:
        project, _ = await self.resolve(project_id, task_id)
        await self.conversations.clear(project.path, task_id)

    async def export_conversation(self, project_id: str, task_id: str) -> str:
        return conversation_to_markdown(await self.conversation(project_id, task_id))

    # design and plan documents

    async def read_design(self, project_id: str, task_id: str) -> tuple[str, str]:
        project, task = await self.resolve(project_id, task_id)
        relpath = task.design_path or design_relpath(task_id)
        return relpath, await read_document(project.path, relpath)

    async def write_design(self, project_id: str, task_id: str, content: str) -> str:
        project, task = await self.resolve(project_id, task_id)
        relpath = task.design_path or design_relpath(task_id)
        await write_document(project.path, relpath, content)
        if task.design_path != relpath:
            await self.board.set_design_path(project.path, task_id, relpath)
        return relpath

    async def read_plan(self, project_id: str, task_id: str) -> tuple[str, str]:
        project, task = await self.resolve(project_id, task_id)
        relpath = task.plan_path or plan_relpath(task_id)
        return relpath, await read_document(project.path, relpath)

    async def write_plan(self, project_id: str, task_id: str, content: str) -> str:
        project, task = await self.resolve(project_id, task_id)
        relpath = task.plan_path or plan_relpath(task_id)
        await write_document(project.path, relpath, content)
        if task.plan_path != relpath:
            await self.board.set_plan_path(project.path, task_id, relpath)
        return relpath

    # agent hooks

    async def report_status(
        self,
        task_id: str,
        status: str,
        *,
        move_to: str | None = None,
        project_id: str | None = None,
    ) -> Task:
        project, _ = await self.locate_task(task_id, project_id)
        logger.info(
            "Agent status report",
            extra={"task_id": task_id, "status": status, "move_to": move_to or "none"},
        )
        return await self.board.apply_status(project.path, task_id, status, move_to)

    async def report_move(self, task_id: str, lane_id: str, project_id: str | None = None) -> Task:
        project, _ = await self.locate_task(task_id, project_id)
        return await self.board.move_task(project.path, task_id, lane_id)


__all__ = ["Attachment", "ExecutionStart", "Orchestrator"]
