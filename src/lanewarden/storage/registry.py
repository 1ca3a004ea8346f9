"""Global registry of projects known to this Lanewarden installation."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from uuid import uuid4

from pydantic import ValidationError

from ..board.models import ProjectRef, RegistryData, utc_now
from ..errors import NotFoundError, PersistenceError
from .paths import registry_file
from .task_store import write_json_atomic

logger = logging.getLogger(__name__)


class ProjectRegistry:
    """Maps project ids to project directories via ``<home>/config.json``."""

    def __init__(self, home_dir: Path) -> None:
        self._path = registry_file(home_dir)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_sync(self) -> RegistryData:
        if not self._path.exists():
            return RegistryData()
        try:
            return RegistryData.model_validate(json.loads(self._path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise PersistenceError(f"Failed to read project registry {self._path}: {exc}") from exc

    def _write_sync(self, data: RegistryData) -> None:
        try:
            write_json_atomic(self._path, data.dump())
        except OSError as exc:
            raise PersistenceError(f"Failed to write project registry {self._path}: {exc}") from exc

    async def list_projects(self) -> list[ProjectRef]:
        data = await asyncio.to_thread(self._read_sync)
        return list(data.projects)

    async def get(self, project_id: str) -> ProjectRef:
        for project in await self.list_projects():
            if project.id == project_id:
                return project
        raise NotFoundError(f"Project '{project_id}' not found")

    async def find_by_path(self, project_path: str | Path) -> ProjectRef | None:
        resolved = str(Path(project_path).resolve())
        for project in await self.list_projects():
            if project.path == resolved:
                return project
        return None

    async def register(self, project_path: str | Path, name: str | None = None) -> ProjectRef:
        resolved = Path(project_path).expanduser().resolve()
        if not resolved.is_dir():
            raise NotFoundError(f"Project directory not found: {resolved}")
        async with self._lock:
            data = await asyncio.to_thread(self._read_sync)
            for project in data.projects:
                if project.path == str(resolved):
                    project.last_opened_at = utc_now()
                    await asyncio.to_thread(self._write_sync, data)
                    return project
            project = ProjectRef(id=uuid4().hex, name=name or resolved.name, path=str(resolved))
            data.projects.append(project)
            await asyncio.to_thread(self._write_sync, data)
        logger.info("Registered project", extra={"project_id": project.id, "path": project.path})
        return project

    async def remove(self, project_id: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_sync)
            remaining = [project for project in data.projects if project.id != project_id]
            if len(remaining) == len(data.projects):
                raise NotFoundError(f"Project '{project_id}' not found")
            data.projects = remaining
            await asyncio.to_thread(self._write_sync, data)


__all__ = ["ProjectRegistry"]
