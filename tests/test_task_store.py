from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from lanewarden.board.models import ProjectData, Task
from lanewarden.errors import NotFoundError, PersistenceError, StoreConflictError
from lanewarden.storage import ProjectRegistry, TaskStore
from lanewarden.storage.paths import tasks_file


def bump_on_disk(project: Path) -> None:
    path = tasks_file(project)
    document = json.loads(path.read_text(encoding="utf-8"))
    document["version"] += 1
    path.write_text(json.dumps(document), encoding="utf-8")


def test_initialize_writes_default_lanes_once(tmp_path: Path) -> None:
    store = TaskStore()

    first = asyncio.run(store.initialize(tmp_path, "proj"))
    second = asyncio.run(store.initialize(tmp_path, "other"))

    assert [lane.id for lane in first.lanes] == [
        "design",
        "develop",
        "test",
        "pending-merge",
        "archived",
        "deprecated",
    ]
    assert second.project_id == "proj"
    document = json.loads(tasks_file(tmp_path).read_text(encoding="utf-8"))
    assert document["projectId"] == "proj"
    assert document["version"] == 1


def test_mutate_persists_and_bumps_version(tmp_path: Path) -> None:
    store = TaskStore()
    asyncio.run(store.initialize(tmp_path, "proj"))

    def add(data: ProjectData) -> int:
        data.tasks.append(Task(id="t1", title="First", lane_id="design"))
        return len(data.tasks)

    assert asyncio.run(store.mutate(tmp_path, add)) == 1
    data = asyncio.run(store.load(tmp_path))
    assert data.version == 2
    assert data.find_task("t1").title == "First"


def test_mutate_retries_after_external_write(tmp_path: Path) -> None:
    store = TaskStore(retry_attempts=3)
    asyncio.run(store.initialize(tmp_path, "proj"))
    calls = []

    def add(data: ProjectData) -> None:
        calls.append(data.version)
        if len(calls) == 1:
            bump_on_disk(tmp_path)
        data.tasks.append(Task(id="t1", title="First", lane_id="design"))

    asyncio.run(store.mutate(tmp_path, add))

    assert calls == [1, 2]
    data = asyncio.run(store.load(tmp_path))
    assert data.version == 3
    assert [task.id for task in data.tasks] == ["t1"]


def test_mutate_gives_up_after_retries(tmp_path: Path) -> None:
    store = TaskStore(retry_attempts=2)
    asyncio.run(store.initialize(tmp_path, "proj"))

    def always_conflict(data: ProjectData) -> None:
        bump_on_disk(tmp_path)

    with pytest.raises(StoreConflictError):
        asyncio.run(store.mutate(tmp_path, always_conflict))


def test_failed_mutation_writes_nothing(tmp_path: Path) -> None:
    store = TaskStore()
    asyncio.run(store.initialize(tmp_path, "proj"))

    def explode(data: ProjectData) -> None:
        data.tasks.append(Task(id="t1", title="First", lane_id="design"))
        raise NotFoundError("nope")

    with pytest.raises(NotFoundError):
        asyncio.run(store.mutate(tmp_path, explode))
    data = asyncio.run(store.load(tmp_path))
    assert data.tasks == []
    assert data.version == 1


def test_concurrent_mutations_are_serialized(tmp_path: Path) -> None:
    store = TaskStore()
    asyncio.run(store.initialize(tmp_path, "proj"))

    async def run() -> None:
        def add(index: int):
            def apply(data: ProjectData) -> None:
                data.tasks.append(Task(id=f"t{index}", title=f"Task {index}", lane_id="design"))

            return apply

        await asyncio.gather(*(store.mutate(tmp_path, add(index)) for index in range(10)))

    asyncio.run(run())
    data = asyncio.run(store.load(tmp_path))
    assert len(data.tasks) == 10
    assert data.version == 11


def test_load_errors(tmp_path: Path) -> None:
    store = TaskStore()
    with pytest.raises(NotFoundError):
        asyncio.run(store.load(tmp_path))

    path = tasks_file(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        asyncio.run(store.load(tmp_path))


def test_registry_register_is_idempotent(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    registry = ProjectRegistry(tmp_path / "home")

    first = asyncio.run(registry.register(project, "Demo"))
    second = asyncio.run(registry.register(project))

    assert first.id == second.id
    assert first.name == "Demo"
    assert first.path == str(project.resolve())
    assert asyncio.run(registry.get(first.id)).path == first.path
    assert asyncio.run(registry.find_by_path(project)).id == first.id


def test_registry_errors(tmp_path: Path) -> None:
    registry = ProjectRegistry(tmp_path / "home")

    with pytest.raises(NotFoundError):
        asyncio.run(registry.register(tmp_path / "missing"))
    with pytest.raises(NotFoundError):
        asyncio.run(registry.get("nope"))
    with pytest.raises(NotFoundError):
        asyncio.run(registry.remove("nope"))


def test_registry_remove(tmp_path: Path) -> None:
    registry = ProjectRegistry(tmp_path / "home")
    project = asyncio.run(registry.register(tmp_path))

    asyncio.run(registry.remove(project.id))

    assert asyncio.run(registry.list_projects()) == []
