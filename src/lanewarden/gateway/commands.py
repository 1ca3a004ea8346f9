"""Inbound websocket commands, one model per ``type``."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from ..board.models import BoardRecord


class ExecuteCommand(BoardRecord):
    type: Literal["execute"]
    task_id: str
    project_id: str


class AttachCommand(BoardRecord):
    type: Literal["attach"]
    task_id: str
    project_id: str


class InputCommand(BoardRecord):
    type: Literal["input"]
    task_id: str
    data: str


class StopCommand(BoardRecord):
    type: Literal["stop"]
    task_id: str


class ResizeCommand(BoardRecord):
    type: Literal["resize"]
    task_id: str | None = None
    cols: int | None = None
    rows: int | None = None


class UserInputCommand(BoardRecord):
    type: Literal["conversation.user_input"]
    task_id: str
    content: str
    project_id: str | None = None


class DesignStartCommand(BoardRecord):
    type: Literal["conversation.design_start"]
    task_id: str
    project_id: str


class ExecuteStartCommand(BoardRecord):
    type: Literal["conversation.execute_start"]
    task_id: str
    project_id: str


class SubscribeCommand(BoardRecord):
    type: Literal["subscribe"]
    project_id: str


GatewayCommand = Annotated[
    Union[
        ExecuteCommand,
        AttachCommand,
        InputCommand,
        StopCommand,
        ResizeCommand,
        UserInputCommand,
        DesignStartCommand,
        ExecuteStartCommand,
        SubscribeCommand,
    ],
    Field(discriminator="type"),
]

_COMMANDS: TypeAdapter[GatewayCommand] = TypeAdapter(GatewayCommand)


def parse_command(payload: Any) -> GatewayCommand:
    """Validate a decoded JSON envelope; raises ``pydantic.ValidationError``."""

    return _COMMANDS.validate_python(payload)


__all__ = [
    "AttachCommand",
    "DesignStartCommand",
    "ExecuteCommand",
    "ExecuteStartCommand",
    "GatewayCommand",
    "InputCommand",
    "ResizeCommand",
    "StopCommand",
    "SubscribeCommand",
    "UserInputCommand",
    "parse_command",
]
