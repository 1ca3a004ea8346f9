"""File-backed task store with serialized, version-checked writes."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, TypeVar

from pydantic import ValidationError

from ..board.lanes import default_lanes
from ..board.models import ProjectData
from ..errors import NotFoundError, PersistenceError, StoreConflictError
from .paths import tasks_file

logger = logging.getLogger(__name__)

T = TypeVar("T")


def write_json_atomic(path: Path, payload: dict) -> None:
    """Write JSON next to the target and swap it in with a single rename."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class TaskStore:
    """Persist one ``ProjectData`` document per project.

    Every write for a project runs under that project's ``asyncio.Lock`` so
    read-modify-write cycles inside this process never interleave. Writers in
    other processes are detected through the ``version`` stamp: a write only
    lands when the version on disk still equals the version that was read.
    """

    def __init__(self, *, retry_attempts: int = 3) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._retry_attempts = max(1, retry_attempts)

    def _lock_for(self, project_path: str | Path) -> asyncio.Lock:
        key = str(Path(project_path).resolve())
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    def _read_sync(path: Path) -> ProjectData:
        if not path.exists():
            raise NotFoundError(f"Project not initialized: {path.parent.parent}")
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            return ProjectData.model_validate(document)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise PersistenceError(f"Failed to read task store {path}: {exc}") from exc

    @staticmethod
    def _disk_version(path: Path) -> int | None:
        if not path.exists():
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read task store {path}: {exc}") from exc
        return int(document.get("version", 0))

    def _write_sync(self, path: Path, data: ProjectData, expected_version: int | None) -> None:
        current = self._disk_version(path)
        if current != expected_version:
            raise StoreConflictError(
                f"Task store {path} changed on disk (expected version {expected_version}, found {current})"
            )
        data.version = (expected_version or 0) + 1
        try:
            write_json_atomic(path, data.dump())
        except OSError as exc:
            raise PersistenceError(f"Failed to write task store {path}: {exc}") from exc

    async def exists(self, project_path: str | Path) -> bool:
        return await asyncio.to_thread(tasks_file(project_path).exists)

    async def load(self, project_path: str | Path) -> ProjectData:
        return await asyncio.to_thread(self._read_sync, tasks_file(project_path))

    async def initialize(self, project_path: str | Path, project_id: str) -> ProjectData:
        """Create an empty board for the project unless one already exists."""

        path = tasks_file(project_path)
        async with self._lock_for(project_path):
            if await asyncio.to_thread(path.exists):
                return await asyncio.to_thread(self._read_sync, path)
            data = ProjectData(project_id=project_id, lanes=default_lanes(), tasks=[])
            await asyncio.to_thread(self._write_sync, path, data, None)
            logger.info("Initialized task store", extra={"project_path": str(project_path)})
            return data

    @asynccontextmanager
    async def transaction(self, project_path: str | Path) -> AsyncIterator[ProjectData]:
        """Yield the project document and persist it when the block exits cleanly.

        Exceptions raised inside the block propagate and nothing is written.
        """

        path = tasks_file(project_path)
        async with self._lock_for(project_path):
            data = await asyncio.to_thread(self._read_sync, path)
            loaded_version = data.version
            yield data
            await asyncio.to_thread(self._write_sync, path, data, loaded_version)

    async def mutate(self, project_path: str | Path, fn: Callable[[ProjectData], T]) -> T:
        """Apply a side-effect free mutation, retrying on version conflicts."""

        for attempt in range(1, self._retry_attempts + 1):
            try:
                async with self.transaction(project_path) as data:
                    result = fn(data)
                return result
            except StoreConflictError:
                if attempt >= self._retry_attempts:
                    raise
                logger.warning(
                    "Task store conflict, retrying",
                    extra={"project_path": str(project_path), "attempt": attempt},
                )
        raise AssertionError("unreachable")


__all__ = ["TaskStore", "write_json_atomic"]
