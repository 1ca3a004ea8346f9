"""Lane/status state machine: validates board changes and applies their effects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Collection, Iterable
from uuid import uuid4

from pydantic import Field

from ..agent.bus import EventBus, TaskChanged
from ..conversation.storage import ConversationStorage
from ..errors import InvalidStateError, LanewardenError, NotFoundError, VersionControlError
from ..storage.paths import design_relpath
from ..storage.task_store import TaskStore
from ..worktrees.manager import MergeResult, WorktreeManager
from .documents import delete_document
from .lanes import WORKTREE_LANES, is_lane, next_lane_on_completion, output_type_for_lane, requires_merge
from .models import (
    AgentSessionRef,
    BoardRecord,
    LaneId,
    ProjectData,
    StructuredOutput,
    Task,
    TaskStatus,
    Worktree,
    utc_now,
)

logger = logging.getLogger(__name__)

STATUSES = frozenset(status.value for status in TaskStatus)

# A bare completion signal leaves the task at rest in these lanes.
TERMINAL_LANES = frozenset({LaneId.ARCHIVED.value, LaneId.DEPRECATED.value})


class TaskPatch(BoardRecord):
    title: str | None = None
    description: str | None = None
    prompt: str | None = None
    status: TaskStatus | None = None
    metadata: dict[str, Any] | None = None


class TaskPlacement(BoardRecord):
    """One entry of a batch reorder: target lane and position for a task."""

    id: str
    lane_id: str | None = None
    order: int | None = Field(default=None, ge=0)


@dataclass(slots=True)
class LaneEffects:
    worktree: Worktree | None = None
    tombstone: bool = False
    completed: bool = False


def _require(data: ProjectData, task_id: str) -> Task:
    task = data.find_task(task_id)
    if task is None:
        raise NotFoundError(f"Task not found: {task_id}")
    return task


def _check_lane(lane_id: str) -> None:
    if not is_lane(lane_id):
        raise InvalidStateError(f"Unknown lane: {lane_id}")


def _renumber(
    data: ProjectData,
    lanes: Iterable[str],
    moved: set[str],
    after: Collection[str] = (),
) -> None:
    """Rewrite ``order`` to a dense 0..n-1 sequence in each lane.

    On equal orders a moved task goes first, unless it moved down within its
    own lane, in which case it goes after the sibling it displaced.
    """

    def rank(task: Task) -> tuple[int, int]:
        if task.id in after:
            return task.order, 2
        return task.order, 0 if task.id in moved else 1

    for lane_id in set(lanes):
        members = sorted((task for task in data.tasks if task.lane_id == lane_id), key=rank)
        for index, task in enumerate(members):
            if task.order != index:
                task.order = index


def _apply_effects(task: Task, effects: LaneEffects) -> None:
    if effects.worktree is not None:
        task.worktree = effects.worktree
    if effects.tombstone and task.worktree is not None and task.worktree.removed_at is None:
        task.worktree = task.worktree.model_copy(update={"removed_at": utc_now()})
    if effects.completed:
        task.status = TaskStatus.COMPLETED


class BoardStateMachine:
    """Every board mutation goes through here so lane effects are applied once."""

    def __init__(
        self,
        store: TaskStore,
        worktrees: WorktreeManager,
        conversations: ConversationStorage,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._worktrees = worktrees
        self._conversations = conversations
        self._bus = bus

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def worktrees(self) -> WorktreeManager:
        return self._worktrees

    def _announce(self, project_id: str, task: Task, *, deleted: bool = False) -> None:
        if self._bus is None:
            return
        self._bus.publish(
            TaskChanged(
                task_id=task.id,
                project_id=project_id,
                status=task.status,
                lane_id=task.lane_id,
                deleted=deleted,
            )
        )

    async def _write_task(
        self,
        project_path: str | Path,
        task_id: str,
        fn: Callable[[Task, ProjectData], None],
    ) -> Task:
        def apply(data: ProjectData) -> tuple[str, Task]:
            task = _require(data, task_id)
            fn(task, data)
            task.touch()
            return data.project_id, task.model_copy(deep=True)

        project_id, task = await self._store.mutate(project_path, apply)
        self._announce(project_id, task)
        return task

    async def get_task(self, project_path: str | Path, task_id: str) -> Task:
        data = await self._store.load(project_path)
        return _require(data, task_id)

    async def list_tasks(self, project_path: str | Path, lane_id: str | None = None) -> list[Task]:
        data = await self._store.load(project_path)
        if lane_id is not None:
            _check_lane(lane_id)
            return data.lane_tasks(lane_id)
        lane_order = {lane.id: lane.order for lane in data.lanes}
        return sorted(data.tasks, key=lambda task: (lane_order.get(task.lane_id, 0), task.order))

    async def create_task(
        self,
        project_path: str | Path,
        *,
        title: str,
        description: str = "",
        prompt: str | None = None,
        lane_id: str = LaneId.DESIGN.value,
        created_by: str = "user",
    ) -> Task:
        _check_lane(lane_id)
        if not title or not title.strip():
            raise InvalidStateError("Task title is required")

        task_id = str(uuid4())
        worktree: Worktree | None = None
        if lane_id in WORKTREE_LANES:
            try:
                worktree = await self._worktrees.create_worktree(project_path, task_id)
            except VersionControlError as exc:
                logger.warning(
                    "Worktree creation failed, task created without one",
                    extra={"task_id": task_id, "error": str(exc)},
                )

        def apply(data: ProjectData) -> tuple[str, Task]:
            task = Task(
                id=task_id,
                title=title.strip(),
                description=description,
                prompt=prompt or None,
                lane_id=lane_id,
                order=len(data.lane_tasks(lane_id)),
                created_by=created_by,
                worktree=worktree,
            )
            data.tasks.append(task)
            return data.project_id, task.model_copy(deep=True)

        project_id, task = await self._store.mutate(project_path, apply)
        logger.info("Created task", extra={"task_id": task_id, "lane_id": lane_id})
        self._announce(project_id, task)
        return task

    async def update_task(self, project_path: str | Path, task_id: str, patch: TaskPatch) -> Task:
        changes = patch.model_dump(exclude_none=True)
        if "title" in changes and not changes["title"].strip():
            raise InvalidStateError("Task title is required")

        def apply(task: Task, _: ProjectData) -> None:
            for field_name, value in changes.items():
                setattr(task, field_name, value)

        return await self._write_task(project_path, task_id, apply)

    async def set_status(self, project_path: str | Path, task_id: str, status: str) -> Task:
        if status not in STATUSES:
            raise InvalidStateError(f"Unknown status: {status}")

        def apply(task: Task, _: ProjectData) -> None:
            task.status = status

        return await self._write_task(project_path, task_id, apply)

    async def _lane_effects(self, project_path: str | Path, task: Task, target: str) -> LaneEffects:
        """Run the git side of a lane change; raises when the move must be rejected."""

        effects = LaneEffects()
        source = task.lane_id
        active = task.active_worktree
        if target in WORKTREE_LANES and active is None:
            try:
                effects.worktree = await self._worktrees.create_worktree(project_path, task.id)
            except VersionControlError as exc:
                raise VersionControlError(f"Cannot move task to {target}: {exc}") from exc
        elif requires_merge(source, target) and active is not None:
            result = await self._worktrees.merge_worktree(project_path, active.path, active.branch)
            if not result.success:
                raise VersionControlError(result.message)
            effects.tombstone = True
            effects.completed = True
        elif target == LaneId.DEPRECATED.value and active is not None:
            try:
                await self._worktrees.remove_worktree(project_path, active.path)
                effects.tombstone = True
            except VersionControlError as exc:
                logger.warning(
                    "Failed to remove worktree of deprecated task",
                    extra={"task_id": task.id, "error": str(exc)},
                )
        return effects

    async def move_task(
        self,
        project_path: str | Path,
        task_id: str,
        lane_id: str,
        order: int | None = None,
    ) -> Task:
        _check_lane(lane_id)
        if order is not None and order < 0:
            raise InvalidStateError("Order must be >= 0")
        task = await self.get_task(project_path, task_id)
        changing_lane = task.lane_id != lane_id
        if changing_lane and task.status == TaskStatus.RUNNING.value:
            raise InvalidStateError(f"Task {task_id} is running and cannot change lane")

        effects = await self._lane_effects(project_path, task, lane_id) if changing_lane else LaneEffects()

        def apply(data: ProjectData) -> tuple[str, Task]:
            current = _require(data, task_id)
            source = current.lane_id
            # A merge or removal has already changed git; the record must follow it.
            if source != lane_id and current.status == TaskStatus.RUNNING.value and not effects.tombstone:
                raise InvalidStateError(f"Task {task_id} is running and cannot change lane")
            siblings = [other for other in data.tasks if other.lane_id == lane_id and other.id != task_id]
            target_order = len(siblings) if order is None else min(order, len(siblings))
            after = {task_id} if source == lane_id and target_order > current.order else set()
            current.lane_id = lane_id
            current.order = target_order
            _apply_effects(current, effects)
            current.touch()
            _renumber(data, {source, lane_id}, {task_id}, after)
            return data.project_id, current.model_copy(deep=True)

        try:
            project_id, moved = await self._store.mutate(project_path, apply)
        except LanewardenError:
            if effects.worktree is not None:
                await self._rollback_worktrees(project_path, {task_id: effects.worktree})
            raise
        if changing_lane:
            logger.info(
                "Moved task",
                extra={"task_id": task_id, "from_lane": task.lane_id, "to_lane": lane_id},
            )
        self._announce(project_id, moved)
        return moved

    async def reorder_tasks(self, project_path: str | Path, placements: list[TaskPlacement]) -> list[Task]:
        """Apply a batch of lane/order placements, all or nothing."""

        data = await self._store.load(project_path)
        targets: dict[str, str] = {}
        for placement in placements:
            task = _require(data, placement.id)
            target = placement.lane_id or task.lane_id
            _check_lane(target)
            if target != task.lane_id and task.status == TaskStatus.RUNNING.value:
                raise InvalidStateError(f"Task {task.id} is running and cannot change lane")
            if requires_merge(task.lane_id, target) and task.active_worktree is not None:
                raise InvalidStateError(
                    f"Task {task.id} needs a merge to be archived; move it on its own"
                )
            targets[task.id] = target

        created: dict[str, Worktree] = {}
        for task_id, target in targets.items():
            task = _require(data, task_id)
            if target == task.lane_id or target not in WORKTREE_LANES or task.active_worktree:
                continue
            try:
                worktree = await self._worktrees.create_worktree(project_path, task_id)
            except VersionControlError as exc:
                await self._rollback_worktrees(project_path, created)
                raise VersionControlError(f"Cannot move task {task_id} to {target}: {exc}") from exc
            if worktree is not None:
                created[task_id] = worktree

        removed: set[str] = set()
        for task_id, target in targets.items():
            task = _require(data, task_id)
            active = task.active_worktree
            if target != LaneId.DEPRECATED.value or task.lane_id == target or active is None:
                continue
            try:
                await self._worktrees.remove_worktree(project_path, active.path)
                removed.add(task_id)
            except VersionControlError as exc:
                logger.warning(
                    "Failed to remove worktree of deprecated task",
                    extra={"task_id": task_id, "error": str(exc)},
                )

        def apply(current: ProjectData) -> tuple[str, list[Task]]:
            lanes: set[str] = set()
            moved: list[Task] = []
            for index, placement in enumerate(placements):
                task = _require(current, placement.id)
                target = targets[task.id]
                if target != task.lane_id and task.status == TaskStatus.RUNNING.value:
                    raise InvalidStateError(f"Task {task.id} is running and cannot change lane")
                lanes.update({task.lane_id, target})
                if placement.order is not None:
                    task.order = placement.order
                elif target != task.lane_id:
                    task.order = len(current.tasks) + index
                task.lane_id = target
                _apply_effects(
                    task,
                    LaneEffects(worktree=created.get(task.id), tombstone=task.id in removed),
                )
                task.touch()
                moved.append(task)
            _renumber(current, lanes, {task.id for task in moved})
            return current.project_id, [task.model_copy(deep=True) for task in moved]

        try:
            project_id, moved = await self._store.mutate(project_path, apply)
        except LanewardenError:
            await self._rollback_worktrees(project_path, created)
            raise
        for task in moved:
            self._announce(project_id, task)
        return moved

    async def _rollback_worktrees(self, project_path: str | Path, created: dict[str, Worktree]) -> None:
        for task_id, worktree in created.items():
            try:
                await self._worktrees.remove_worktree(project_path, worktree.path)
            except VersionControlError as exc:
                logger.warning(
                    "Failed to roll back worktree",
                    extra={"task_id": task_id, "error": str(exc)},
                )

    async def delete_task(self, project_path: str | Path, task_id: str) -> None:
        """Delete a task; teardown of its worktree, log and design file is best-effort."""

        task = await self.get_task(project_path, task_id)

        if task.worktree is not None:
            if task.worktree.active:
                try:
                    await self._worktrees.remove_worktree(project_path, task.worktree.path)
                except VersionControlError as exc:
                    logger.warning(
                        "Failed to remove worktree of deleted task",
                        extra={"task_id": task_id, "error": str(exc)},
                    )
            if await self._worktrees.branch_exists(project_path, task.worktree.branch):
                await self._worktrees.delete_branch(project_path, task.worktree.branch, force=True)

        try:
            await self._conversations.delete(project_path, task_id)
        except LanewardenError as exc:
            logger.warning(
                "Failed to delete conversation log",
                extra={"task_id": task_id, "error": str(exc)},
            )

        try:
            await delete_document(project_path, task.design_path or design_relpath(task_id))
        except (LanewardenError, OSError) as exc:
            logger.warning(
                "Failed to delete design document",
                extra={"task_id": task_id, "error": str(exc)},
            )

        def apply(data: ProjectData) -> str:
            current = _require(data, task_id)
            data.tasks = [other for other in data.tasks if other.id != task_id]
            _renumber(data, {current.lane_id}, set())
            return data.project_id

        project_id = await self._store.mutate(project_path, apply)
        logger.info("Deleted task", extra={"task_id": task_id})
        self._announce(project_id, task, deleted=True)

    async def complete_run(self, project_path: str | Path, task_id: str, move_to: str | None = None) -> Task:
        """Record a completed run and apply the lane advance it implies.

        Without an explicit ``move_to`` the auto-advance policy picks the next
        lane. A task that advances into a working lane is left ``idle``; one
        that stays put or lands in a terminal lane stays ``completed``.
        """

        if move_to is not None:
            _check_lane(move_to)
        task = await self.set_status(project_path, task_id, TaskStatus.COMPLETED.value)
        target = move_to or next_lane_on_completion(task.lane_id)
        if target is None or target == task.lane_id:
            return task
        moved = await self.move_task(project_path, task_id, target)
        if target in TERMINAL_LANES:
            return moved
        return await self.set_status(project_path, task_id, TaskStatus.IDLE.value)

    async def apply_status(
        self,
        project_path: str | Path,
        task_id: str,
        status: str,
        move_to: str | None = None,
    ) -> Task:
        """Status report from an agent run, optionally with a lane to move to."""

        if status not in STATUSES:
            raise InvalidStateError(f"Unknown status: {status}")
        if status == TaskStatus.COMPLETED.value:
            return await self.complete_run(project_path, task_id, move_to)
        if move_to is None:
            return await self.set_status(project_path, task_id, status)
        if status == TaskStatus.RUNNING.value:
            await self.move_task(project_path, task_id, move_to)
            return await self.set_status(project_path, task_id, status)
        await self.set_status(project_path, task_id, status)
        return await self.move_task(project_path, task_id, move_to)

    async def record_session(self, project_path: str | Path, task_id: str, session_id: str) -> Task:
        task = await self.get_task(project_path, task_id)
        if task.agent_session is not None and task.agent_session.id == session_id:
            return task

        def apply(current: Task, _: ProjectData) -> None:
            current.agent_session = AgentSessionRef(id=session_id)

        return await self._write_task(project_path, task_id, apply)

    async def record_structured_output(
        self,
        project_path: str | Path,
        task_id: str,
        payload: Any,
        lane_id: str | None = None,
    ) -> Task:
        def apply(task: Task, _: ProjectData) -> None:
            task.structured_output = StructuredOutput(
                type=output_type_for_lane(lane_id or task.lane_id),
                data=payload,
            )

        return await self._write_task(project_path, task_id, apply)

    async def set_design_path(self, project_path: str | Path, task_id: str, relpath: str) -> Task:
        def apply(task: Task, _: ProjectData) -> None:
            task.design_path = relpath

        return await self._write_task(project_path, task_id, apply)

    async def set_plan_path(self, project_path: str | Path, task_id: str, relpath: str) -> Task:
        def apply(task: Task, _: ProjectData) -> None:
            task.plan_path = relpath

        return await self._write_task(project_path, task_id, apply)

    async def create_worktree(
        self,
        project_path: str | Path,
        task_id: str,
        base_branch: str | None = None,
    ) -> tuple[Task, bool]:
        """Explicitly attach a worktree; returns the task and whether one was created."""

        task = await self.get_task(project_path, task_id)
        if task.active_worktree is not None:
            return task, False
        worktree = await self._worktrees.create_worktree(project_path, task_id, base_branch)
        if worktree is None:
            raise InvalidStateError("Project is not a git repository, cannot create a worktree")

        def apply(current: Task, _: ProjectData) -> None:
            current.worktree = worktree

        return await self._write_task(project_path, task_id, apply), True

    async def merge_task(
        self,
        project_path: str | Path,
        task_id: str,
        target_branch: str | None = None,
    ) -> tuple[MergeResult, Task]:
        task = await self.get_task(project_path, task_id)
        active = task.active_worktree
        if active is None:
            raise InvalidStateError(f"Task {task_id} has no worktree to merge")
        if task.status == TaskStatus.RUNNING.value:
            raise InvalidStateError(f"Task {task_id} is running and cannot be merged")

        result = await self._worktrees.merge_worktree(
            project_path, active.path, active.branch, target_branch
        )
        if not result.success:
            logger.warning("Merge failed", extra={"task_id": task_id, "error": result.message})
            return result, task

        def apply(data: ProjectData) -> tuple[str, Task]:
            current = _require(data, task_id)
            source = current.lane_id
            if source != LaneId.ARCHIVED.value:
                current.lane_id = LaneId.ARCHIVED.value
                current.order = len(data.tasks)
            _apply_effects(current, LaneEffects(tombstone=True, completed=True))
            current.touch()
            _renumber(data, {source, LaneId.ARCHIVED.value}, {task_id})
            return data.project_id, current.model_copy(deep=True)

        project_id, merged = await self._store.mutate(project_path, apply)
        logger.info("Merged task", extra={"task_id": task_id, "message": result.message})
        self._announce(project_id, merged)
        return result, merged

    async def remove_worktree(self, project_path: str | Path, task_id: str) -> Task:
        """Tear down a task's worktree without merging; the record is tombstoned."""

        task = await self.get_task(project_path, task_id)
        active = task.active_worktree
        if active is None:
            raise InvalidStateError(f"Task {task_id} has no worktree")
        await self._worktrees.remove_worktree(project_path, active.path)

        def apply(current: Task, _: ProjectData) -> None:
            _apply_effects(current, LaneEffects(tombstone=True))

        return await self._write_task(project_path, task_id, apply)

    async def cleanup_worktrees(self, project_path: str | Path) -> None:
        await self._worktrees.cleanup(project_path)


__all__ = [
    "BoardStateMachine",
    "LaneEffects",
    "STATUSES",
    "TaskPatch",
    "TaskPlacement",
]
