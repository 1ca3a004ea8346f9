"""In-process publish/subscribe bus for session and board events."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Output:
    topic: ClassVar[str] = "output"
    task_id: str
    data: str


@dataclass(frozen=True, slots=True)
class Log:
    topic: ClassVar[str] = "log"
    task_id: str
    message: str


@dataclass(frozen=True, slots=True)
class Error:
    topic: ClassVar[str] = "error"
    task_id: str
    message: str


@dataclass(frozen=True, slots=True)
class StatusUpdate:
    topic: ClassVar[str] = "statusUpdate"
    task_id: str
    status: str
    move_to: str | None = None


@dataclass(frozen=True, slots=True)
class SessionStart:
    topic: ClassVar[str] = "sessionStart"
    task_id: str
    session_id: str


@dataclass(frozen=True, slots=True)
class StructuredOutputEvent:
    topic: ClassVar[str] = "structuredOutput"
    task_id: str
    output: Any


@dataclass(frozen=True, slots=True)
class Exit:
    topic: ClassVar[str] = "exit"
    task_id: str
    code: int = 0


@dataclass(frozen=True, slots=True)
class TaskChanged:
    """A task record was written; carries the lane and status after the write."""

    topic: ClassVar[str] = "taskChanged"
    task_id: str
    project_id: str
    status: str
    lane_id: str
    deleted: bool = False


@dataclass(frozen=True, slots=True)
class ConversationFrame:
    topic: ClassVar[str] = "conversation"
    task_id: str
    frame: dict[str, Any] = field(default_factory=dict)


BusEvent = Union[
    Output,
    Log,
    Error,
    StatusUpdate,
    SessionStart,
    StructuredOutputEvent,
    Exit,
    TaskChanged,
    ConversationFrame,
]

Predicate = Callable[[BusEvent], bool]


class Subscription:
    """Queue of bus events matching an optional predicate."""

    def __init__(self, bus: "EventBus", predicate: Predicate | None = None) -> None:
        self._bus = bus
        self._predicate = predicate
        self._queue: asyncio.Queue[BusEvent] = asyncio.Queue()

    def matches(self, event: BusEvent) -> bool:
        return self._predicate is None or self._predicate(event)

    def deliver(self, event: BusEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> BusEvent:
        return await self._queue.get()

    def pending(self) -> list[BusEvent]:
        items: list[BusEvent] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> BusEvent:
        return await self.get()


class EventBus:
    """Fan events out to every matching subscription without blocking the publisher."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, predicate: Predicate | None = None) -> Subscription:
        subscription = Subscription(self, predicate)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: BusEvent) -> None:
        logger.debug("Bus event", extra={"topic": event.topic, "task_id": event.task_id})
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.deliver(event)


__all__ = [
    "BusEvent",
    "ConversationFrame",
    "Error",
    "EventBus",
    "Exit",
    "Log",
    "Output",
    "SessionStart",
    "StatusUpdate",
    "StructuredOutputEvent",
    "Subscription",
    "TaskChanged",
]
