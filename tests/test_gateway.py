from __future__ import annotations

import time
from pathlib import Path

from fastapi.testclient import TestClient

from lanewarden.agent.events import RunResult, SessionStarted, TextDelta, TextStarted, TextStopped
from lanewarden.agent.runtime import FakeAgentRuntime
from lanewarden.config import LanewardenSettings
from lanewarden.errors import PersistenceError, VersionControlError
from lanewarden.gateway import create_app
from lanewarden.gateway.routes import status_for
from lanewarden.orchestrator import Orchestrator
from lanewarden.worktrees import WorktreeManager
from lanewarden.worktrees.git import FakeGitRunner


def make_client(tmp_path: Path, runtime: FakeAgentRuntime) -> TestClient:
    settings = LanewardenSettings(
        LANEWARDEN_HOME=str(tmp_path / "home"),
        LANEWARDEN_LANE_PATHS=str(tmp_path / "lanes"),
    )
    orchestrator = Orchestrator(settings, runtime, worktrees=WorktreeManager(FakeGitRunner()))
    return TestClient(create_app(settings, orchestrator=orchestrator))


def open_project(client: TestClient, tmp_path: Path) -> str:
    project = tmp_path / "project"
    project.mkdir(exist_ok=True)
    response = client.post("/api/projects", json={"path": str(project), "name": "Demo"})
    assert response.status_code == 201
    return response.json()["id"]


def create_task(client: TestClient, project_id: str, **body) -> dict:
    body.setdefault("title", "Login")
    response = client.post(f"/api/projects/{project_id}/tasks", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def receive_until(ws, predicate, limit: int = 50) -> list[dict]:
    frames = []
    for _ in range(limit):
        frame = ws.receive_json()
        frames.append(frame)
        if predicate(frame):
            return frames
    raise AssertionError(f"expected frame never arrived: {frames}")


def of_type(kind: str):
    return lambda frame: frame["type"] == kind


def wait_for_task(client: TestClient, project_id: str, task_id: str, predicate) -> dict:
    task: dict = {}
    for _ in range(100):
        task = client.get(f"/api/projects/{project_id}/tasks/{task_id}").json()
        if predicate(task):
            return task
        time.sleep(0.02)
    raise AssertionError(f"task never reached the expected state: {task}")


def test_health_and_projects(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        assert client.get("/health").json()["status"] == "ok"
        project_id = open_project(client, tmp_path)
        again = client.post("/api/projects", json={"path": str(tmp_path / "project")}).json()
        listed = client.get("/api/projects").json()
        board = client.get(f"/api/projects/{project_id}/board").json()

        assert again["id"] == project_id
        assert [project["name"] for project in listed] == ["Demo"]
        assert [lane["id"] for lane in board["lanes"]][:2] == ["design", "develop"]
        assert board["tasks"] == []

        assert client.delete(f"/api/projects/{project_id}").status_code == 204
        assert client.get(f"/api/projects/{project_id}/board").status_code == 404


def test_task_crud_and_ordering(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        project_id = open_project(client, tmp_path)
        first = create_task(client, project_id, title="First", description="one")
        second = create_task(client, project_id, title="Second")
        base = f"/api/projects/{project_id}/tasks"

        patched = client.patch(f"{base}/{first['id']}", json={"title": "Renamed"}).json()
        moved = client.post(f"{base}/{second['id']}/move", json={"laneId": "design", "order": 0}).json()
        design = client.get(base, params={"lane": "design"}).json()
        reordered = client.post(
            f"/api/projects/{project_id}/reorder",
            json={"updates": [{"id": first["id"], "laneId": "develop", "order": 0}]},
        ).json()

        assert (patched["title"], patched["description"]) == ("Renamed", "one")
        assert moved["order"] == 0
        assert [task["title"] for task in design] == ["Second", "Renamed"]
        assert [(task["laneId"], task["order"]) for task in reordered] == [("develop", 0)]

        assert client.delete(f"{base}/{second['id']}").status_code == 204
        assert client.get(f"{base}/{second['id']}").status_code == 404
        assert [task["id"] for task in client.get(base).json()] == [first["id"]]


def test_error_mapping(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id)
        base = f"/api/projects/{project_id}/tasks/{task['id']}"

        client.patch(base, json={"status": "running"})
        busy = client.post(f"{base}/move", json={"laneId": "develop"})
        no_worktree = client.post(f"{base}/merge")
        bad_lane = client.post(f"{base}/move", json={"laneId": "review"})
        missing = client.get(f"/api/projects/{project_id}/tasks/nope")

        assert busy.status_code == 409
        assert "running" in busy.json()["error"]
        assert no_worktree.status_code == 409
        assert bad_lane.status_code == 422
        assert missing.status_code == 404
        assert missing.json() == {"error": "Task not found: nope"}

    assert status_for(VersionControlError("merge failed")) == 422
    assert status_for(PersistenceError("disk")) == 500


def test_documents_and_conversation_routes(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id)
        base = f"/api/projects/{project_id}/tasks/{task['id']}"

        assert client.get(f"{base}/design").status_code == 404
        written = client.put(f"{base}/design", json={"content": "# Design"}).json()
        design = client.get(f"{base}/design").json()
        plan_path = client.put(f"{base}/plan", json={"content": "1. step"}).json()["path"]
        conversation = client.get(f"{base}/conversation").json()
        export = client.get(f"{base}/conversation/export")
        session = client.get(f"{base}/session").json()

        assert written["path"] == f".lanewarden/designs/{task['id']}-design.md"
        assert design == {"path": written["path"], "content": "# Design"}
        assert client.get(f"{base}").json()["designPath"] == written["path"]
        assert plan_path == f".lanewarden/plans/{task['id']}-plan.md"
        assert conversation["messages"] == []
        assert export.headers["content-type"].startswith("text/markdown")
        assert export.text.startswith(f"# Conversation - {task['id']}")
        assert session["sessionId"] is None and session["output"] is None
        assert client.delete(f"{base}/conversation").status_code == 204


def test_hooks_locate_task_without_project(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id, lane_id="develop", prompt="do it")

        completed = client.post("/api/hooks/task-complete", json={"taskId": task["id"]}).json()
        failed = client.post(
            "/api/hooks/task-failed", json={"taskId": task["id"], "error": "tests red"}
        ).json()
        moved = client.post(
            "/api/hooks/task-move", json={"taskId": task["id"], "laneId": "design", "projectId": project_id}
        ).json()
        stopped = client.post("/api/hooks/task-stopped", json={"taskId": task["id"]}).json()
        unknown = client.post("/api/hooks/task-complete", json={"taskId": "nope"})

        assert (completed["laneId"], completed["status"]) == ("test", "idle")
        assert failed["status"] == "failed"
        assert moved["laneId"] == "design"
        assert stopped["status"] == "idle"
        assert unknown.status_code == 404


def test_design_start_streams_and_advances_task(tmp_path: Path) -> None:
    runtime = FakeAgentRuntime()
    with make_client(tmp_path, runtime) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id, description="Add a login form")
        runtime.queue(
            SessionStarted("sess-9"),
            TextStarted(),
            TextDelta("# Login design"),
            TextStopped(),
            RunResult("success", "sess-9"),
        )

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "conversation.design_start", "taskId": task["id"], "projectId": project_id})
            frames = receive_until(ws, of_type("conversation.design_complete"))

        conversation_frames = [frame for frame in frames if frame["type"].startswith("conversation.")]
        assert [frame["type"] for frame in conversation_frames] == [
            "conversation.chunk_start",
            "conversation.chunk",
            "conversation.chunk_end",
            "conversation.design_complete",
        ]
        assert conversation_frames[1]["content"] == "# Login design"
        complete = conversation_frames[-1]
        assert complete["content"] == "# Login design"

        stored = client.get(f"/api/projects/{project_id}/tasks/{task['id']}").json()
        assert (stored["laneId"], stored["status"]) == ("develop", "idle")
        assert stored["designPath"] == complete["designPath"]
        assert stored["agentSession"]["id"] == "sess-9"
        design = (tmp_path / "project" / complete["designPath"]).read_text(encoding="utf-8")
        assert design == "# Login design"

        log = client.get(f"/api/projects/{project_id}/tasks/{task['id']}/conversation").json()
        assert [message["role"] for message in log["messages"]] == ["user", "assistant", "system"]
        assert log["messages"][0]["metadata"]["command"] == "design"
        assert log["messages"][1]["status"] == "complete"

    request = runtime.requests[0]
    assert not request.interactive
    assert request.allowed_tools == ("Read", "Glob", "Grep")
    assert "summary" in request.output_schema["required"]


def test_design_start_failure_marks_task_failed(tmp_path: Path) -> None:
    runtime = FakeAgentRuntime()
    with make_client(tmp_path, runtime) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id)
        runtime.queue(TextDelta("half a thought"), RuntimeError("runtime crashed"))

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "conversation.design_start", "taskId": task["id"], "projectId": project_id})
            frames = receive_until(ws, of_type("conversation.error"))

        assert frames[-1]["error"] == "runtime crashed"
        stored = wait_for_task(client, project_id, task["id"], lambda item: item["status"] == "failed")
        assert stored["laneId"] == "design"


def test_execute_start_applies_completion_policy(tmp_path: Path) -> None:
    runtime = FakeAgentRuntime()
    with make_client(tmp_path, runtime) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id, lane_id="develop", prompt="Implement login")
        runtime.queue(
            TextDelta("Implemented"),
            RunResult("success", "sess-3", structured_output={"summary": "Login added", "changes": []}),
        )

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "conversation.execute_start", "taskId": task["id"], "projectId": project_id})
            frames = receive_until(ws, of_type("conversation.execute_complete"))

        assert frames[-1]["structuredOutput"]["summary"] == "Login added"
        assert any(frame["type"] == "structured-output" for frame in frames)
        stored = client.get(f"/api/projects/{project_id}/tasks/{task['id']}").json()
        assert (stored["laneId"], stored["status"]) == ("test", "idle")
        assert stored["structuredOutput"]["type"] == "development"

    assert "Implement login" in runtime.requests[0].prompt
    assert runtime.requests[0].allowed_tools == ("Bash", "Read", "Edit", "Glob", "Grep", "Write")


def test_user_input_without_project_id(tmp_path: Path) -> None:
    runtime = FakeAgentRuntime()
    with make_client(tmp_path, runtime) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id)
        runtime.queue(TextDelta("Sure"), RunResult("success", "sess-4"))

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "conversation.user_input", "taskId": task["id"], "content": "hello?"})
            frames = receive_until(ws, of_type("conversation.chunk_end"))

        assert [frame["type"] for frame in frames if frame["type"].startswith("conversation.")] == [
            "conversation.chunk_start",
            "conversation.chunk",
            "conversation.chunk_end",
        ]
        log = client.get(f"/api/projects/{project_id}/tasks/{task['id']}/conversation").json()
        first = log["messages"][0]
        assert (first["role"], first["content"]) == ("user", "hello?")

    assert runtime.requests[0].prompt == "hello?"


def test_terminal_execution_and_attach(tmp_path: Path) -> None:
    runtime = FakeAgentRuntime()
    with make_client(tmp_path, runtime) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id, lane_id="develop", prompt="Implement login")
        runtime.queue(SessionStarted("sess-1"), TextDelta("working"), RunResult("success", "sess-1"))

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "execute", "taskId": task["id"], "projectId": project_id})
            frames = receive_until(ws, of_type("exit"))
            ws.send_json({"type": "attach", "taskId": task["id"], "projectId": project_id})
            attached = receive_until(ws, of_type("attached"))[-1]

        kinds = [frame["type"] for frame in frames]
        assert kinds.index("started") < kinds.index("output") < kinds.index("exit")
        assert [frame["data"] for frame in frames if frame["type"] == "output"] == ["working"]
        assert attached["bufferedOutput"] == "working"
        assert attached["sessionId"] == "sess-1"

        stored = wait_for_task(
            client, project_id, task["id"], lambda item: item["laneId"] == "test"
        )
        assert stored["status"] == "idle"
        assert stored["agentSession"]["id"] == "sess-1"

    assert runtime.requests[0].interactive
    assert runtime.requests[0].status_handler is not None


def test_stop_ends_live_session(tmp_path: Path) -> None:
    runtime = FakeAgentRuntime(hold_open=True)
    with make_client(tmp_path, runtime) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id, lane_id="develop", prompt="Implement login")
        runtime.queue(SessionStarted("sess-2"), TextDelta("thinking about it"))

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "execute", "taskId": task["id"], "projectId": project_id})
            receive_until(ws, of_type("output"))
            ws.send_json({"type": "stop", "taskId": task["id"]})
            frames = receive_until(ws, of_type("stopped"))

        assert frames[-1] == {"type": "stopped", "taskId": task["id"]}
        assert all(frame["type"] != "error" for frame in frames)
        stored = wait_for_task(client, project_id, task["id"], lambda item: item["status"] == "idle")
        assert stored["laneId"] == "develop"

    assert runtime.streams[0].closed


def test_execute_without_prompt_reports_error(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        project_id = open_project(client, tmp_path)
        task = create_task(client, project_id, lane_id="develop")

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "execute", "taskId": task["id"], "projectId": project_id})
            frame = receive_until(ws, of_type("error"))[-1]

        assert frame["taskId"] == task["id"]
        assert "no prompt or design" in frame["message"]
        assert client.get(f"/api/projects/{project_id}/tasks/{task['id']}").json()["status"] == "idle"


def test_websocket_rejects_bad_commands(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            malformed = ws.receive_json()
            ws.send_json({"type": "teleport", "taskId": "t1"})
            unknown = ws.receive_json()
            ws.send_json({"type": "input", "taskId": "t1", "data": "ls\n"})
            no_session = ws.receive_json()
            ws.send_json({"type": "stop", "taskId": "t1"})
            nothing_to_stop = ws.receive_json()
            ws.send_json({"type": "subscribe", "projectId": "nope"})
            missing_project = ws.receive_json()

    assert malformed == {"type": "error", "message": "Invalid command: malformed JSON"}
    assert unknown["type"] == "error" and unknown["message"].startswith("Invalid command")
    assert no_session == {"type": "error", "message": "No active session for task", "taskId": "t1"}
    assert nothing_to_stop == {"type": "error", "message": "No session to stop for task", "taskId": "t1"}
    assert missing_project["type"] == "error"


def test_subscribe_receives_project_updates(tmp_path: Path) -> None:
    with make_client(tmp_path, FakeAgentRuntime()) as client:
        project_id = open_project(client, tmp_path)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "subscribe", "projectId": project_id})
            assert ws.receive_json() == {"type": "subscribed", "projectId": project_id}
            task = create_task(client, project_id, title="Fresh")
            update = receive_until(ws, of_type("project-update"))[-1]

        assert update["taskId"] == task["id"]
        assert (update["laneId"], update["status"], update["deleted"]) == ("design", "idle", False)
