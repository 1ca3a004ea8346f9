"""Websocket channel: inbound commands, outbound bus frames."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..agent.bus import BusEvent, Subscription, TaskChanged
from ..errors import LanewardenError
from ..orchestrator import Orchestrator
from . import frames
from .commands import (
    AttachCommand,
    DesignStartCommand,
    ExecuteCommand,
    ExecuteStartCommand,
    GatewayCommand,
    InputCommand,
    ResizeCommand,
    StopCommand,
    SubscribeCommand,
    UserInputCommand,
    parse_command,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class GatewayConnection:
    """One websocket client: the tasks it is attached to and the projects it watches."""

    def __init__(self, websocket: WebSocket, orchestrator: Orchestrator) -> None:
        self._websocket = websocket
        self._orchestrator = orchestrator
        self._tasks: set[str] = set()
        self._projects: set[str] = set()
        self._runs: set[asyncio.Task[None]] = set()
        self._closed = False
        self._subscription: Subscription = orchestrator.bus.subscribe(self._wants)

    def _wants(self, event: BusEvent) -> bool:
        if event.task_id in self._tasks:
            return True
        return isinstance(event, TaskChanged) and event.project_id in self._projects

    async def send(self, frame: dict[str, Any]) -> None:
        if self._closed:
            return
        await self._websocket.send_json(frame)

    async def pump(self) -> None:
        async for event in self._subscription:
            if isinstance(event, TaskChanged) and event.project_id in self._projects:
                await self.send(frames.project_update(event))
                if event.task_id not in self._tasks:
                    continue
            frame = frames.event_frame(event)
            if frame is not None:
                await self.send(frame)

    def close(self) -> None:
        self._closed = True
        self._subscription.close()

    def _run_in_background(self, task_id: str, work: Awaitable[Any]) -> None:
        async def runner() -> None:
            try:
                await work
            except LanewardenError as exc:
                await self.send(frames.error(str(exc), task_id))
            except WebSocketDisconnect:
                logger.info("Client left before the run finished", extra={"task_id": task_id})

        run = asyncio.create_task(runner(), name=f"gateway-run-{task_id}")
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)

    async def handle(self, command: GatewayCommand) -> None:
        orchestrator = self._orchestrator
        if isinstance(command, ExecuteCommand):
            self._tasks.add(command.task_id)
            start = await orchestrator.execute(command.project_id, command.task_id)
            if start.resumed:
                await self.send(frames.started(command.task_id, start.session_id))
        elif isinstance(command, AttachCommand):
            self._tasks.add(command.task_id)
            attachment = await orchestrator.attach(command.project_id, command.task_id)
            await self.send(
                frames.attached(command.task_id, attachment.session_id, attachment.buffered_output)
            )
        elif isinstance(command, InputCommand):
            if not await orchestrator.send_input(command.task_id, command.data):
                await self.send(frames.error("No active session for task", command.task_id))
        elif isinstance(command, StopCommand):
            if await orchestrator.stop(command.task_id):
                await self.send(frames.stopped(command.task_id))
            else:
                await self.send(frames.error("No session to stop for task", command.task_id))
        elif isinstance(command, ResizeCommand):
            logger.debug("Ignoring resize", extra={"task_id": command.task_id or "none"})
        elif isinstance(command, DesignStartCommand):
            self._tasks.add(command.task_id)
            self._run_in_background(
                command.task_id, orchestrator.design_start(command.project_id, command.task_id)
            )
        elif isinstance(command, ExecuteStartCommand):
            self._tasks.add(command.task_id)
            self._run_in_background(
                command.task_id, orchestrator.execute_start(command.project_id, command.task_id)
            )
        elif isinstance(command, UserInputCommand):
            project, _ = await orchestrator.locate_task(command.task_id, command.project_id)
            self._tasks.add(command.task_id)
            self._run_in_background(
                command.task_id,
                orchestrator.user_input(project.id, command.task_id, command.content),
            )
        elif isinstance(command, SubscribeCommand):
            await orchestrator.project(command.project_id)
            self._projects.add(command.project_id)
            await self.send(frames.subscribed(command.project_id))


@router.websocket("/ws")
async def gateway_socket(websocket: WebSocket) -> None:
    orchestrator: Orchestrator = websocket.app.state.orchestrator
    await websocket.accept()
    connection = GatewayConnection(websocket, orchestrator)
    pump = asyncio.create_task(connection.pump(), name="gateway-pump")
    try:
        while True:
            text = await websocket.receive_text()
            try:
                command = parse_command(json.loads(text))
            except json.JSONDecodeError:
                await connection.send(frames.error("Invalid command: malformed JSON"))
                continue
            except ValidationError as exc:
                await connection.send(frames.error(f"Invalid command: {exc.errors()[0]['msg']}"))
                continue
            try:
                await connection.handle(command)
            except LanewardenError as exc:
                await connection.send(frames.error(str(exc), getattr(command, "task_id", None)))
    except WebSocketDisconnect:
        logger.info("Websocket client disconnected")
    finally:
        connection.close()
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)


__all__ = ["GatewayConnection", "router"]
