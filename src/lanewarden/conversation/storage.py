"""File-backed conversation logs at ``<project>/.lanewarden/sessions/<taskId>.json``."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..board.models import utc_now
from ..errors import NotFoundError, PersistenceError
from ..storage.paths import session_file, sessions_dir
from ..storage.task_store import write_json_atomic
from .models import ConversationLog, ConversationMessage

logger = logging.getLogger(__name__)


class ConversationStorage:
    """Load and mutate conversation logs, one lock per task log."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, project_path: str | Path, task_id: str) -> asyncio.Lock:
        key = str(session_file(project_path, task_id).resolve())
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    def _read_sync(path: Path) -> ConversationLog | None:
        if not path.exists():
            return None
        try:
            return ConversationLog.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise PersistenceError(f"Failed to read conversation {path}: {exc}") from exc

    @staticmethod
    def _write_sync(path: Path, log: ConversationLog) -> None:
        try:
            write_json_atomic(path, log.dump())
        except OSError as exc:
            raise PersistenceError(f"Failed to write conversation {path}: {exc}") from exc

    async def load(self, project_path: str | Path, task_id: str) -> ConversationLog | None:
        return await asyncio.to_thread(self._read_sync, session_file(project_path, task_id))

    async def save(self, project_path: str | Path, log: ConversationLog) -> None:
        async with self._lock_for(project_path, log.task_id):
            await self._save_unlocked(project_path, log)

    async def _save_unlocked(self, project_path: str | Path, log: ConversationLog) -> None:
        log.updated_at = utc_now()
        await asyncio.to_thread(self._write_sync, session_file(project_path, log.task_id), log)

    async def _mutate(
        self,
        project_path: str | Path,
        task_id: str,
        fn: Callable[[ConversationLog], None],
    ) -> ConversationLog:
        async with self._lock_for(project_path, task_id):
            log = await self.load(project_path, task_id) or ConversationLog(task_id=task_id)
            fn(log)
            await self._save_unlocked(project_path, log)
            return log

    async def append(
        self, project_path: str | Path, task_id: str, message: ConversationMessage
    ) -> ConversationLog:
        return await self._mutate(project_path, task_id, lambda log: log.messages.append(message))

    async def update_message(
        self,
        project_path: str | Path,
        task_id: str,
        message_id: str,
        fn: Callable[[ConversationMessage], None],
    ) -> ConversationLog:
        """Apply ``fn`` to one stored message and persist the log."""

        def apply(log: ConversationLog) -> None:
            message = log.find(message_id)
            if message is None:
                raise NotFoundError(f"Message {message_id} not found in conversation {task_id}")
            fn(message)

        return await self._mutate(project_path, task_id, apply)

    async def clear(self, project_path: str | Path, task_id: str) -> None:
        async with self._lock_for(project_path, task_id):
            log = await self.load(project_path, task_id)
            if log is None:
                return
            log.messages = []
            await self._save_unlocked(project_path, log)

    async def delete(self, project_path: str | Path, task_id: str) -> bool:
        path = session_file(project_path, task_id)
        directory = sessions_dir(project_path)

        def _remove() -> bool:
            if not path.exists():
                return False
            path.unlink()
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()
            return True

        async with self._lock_for(project_path, task_id):
            try:
                removed = await asyncio.to_thread(_remove)
            except OSError as exc:
                raise PersistenceError(f"Failed to delete conversation {path}: {exc}") from exc
        if removed:
            logger.info("Deleted conversation", extra={"task_id": task_id})
        return removed

    async def exists(self, project_path: str | Path, task_id: str) -> bool:
        return await asyncio.to_thread(session_file(project_path, task_id).exists)

    async def list_sessions(self, project_path: str | Path) -> list[str]:
        directory = sessions_dir(project_path)

        def _list() -> list[str]:
            if not directory.is_dir():
                return []
            return sorted(item.stem for item in directory.glob("*.json"))

        return await asyncio.to_thread(_list)


__all__ = ["ConversationStorage"]
