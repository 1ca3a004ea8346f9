"""Process entry points: the gateway server and the MCP board tools."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastmcp import Context, FastMCP

from . import __version__
from .config import LanewardenSettings, get_settings
from .gateway import build_orchestrator, create_app
from .lanes.loader import LaneProfileLoadError, LaneProfileLoader
from .orchestrator import Orchestrator
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for Lanewarden processes."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_mcp_server(
    settings: Optional[LanewardenSettings] = None,
    orchestrator: Orchestrator | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server exposing the board tools."""

    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings)
    profile_loader = LaneProfileLoader(settings.lane_profile_paths)

    server = FastMCP(
        name="Lanewarden",
        version=__version__,
        instructions=(
            "Lanewarden keeps a kanban board of coding tasks. Use the tools to list "
            "tasks, create follow-up tasks and report the status of the task you work on."
        ),
    )

    handles = register_tools(
        server,
        orchestrator=orchestrator,
        default_project_id=settings.mcp_project_id,
    )

    @server.resource(
        "resource://lanewarden/status",
        name="lanewarden_status",
        title="Lanewarden Status",
        description="Registered projects and loaded lane profiles.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    async def status_resource(context: Context) -> str:
        """Return a JSON string summarizing the board state."""

        try:
            profile_ids = sorted(profile_loader.load_all())
            profile_error: str | None = None
        except LaneProfileLoadError as exc:
            profile_ids = []
            profile_error = str(exc)

        projects = []
        for project in await orchestrator.list_projects():
            status_counts: dict[str, int] = {}
            if await orchestrator.store.exists(project.path):
                data = await orchestrator.store.load(project.path)
                for task in data.tasks:
                    status_counts[task.status] = status_counts.get(task.status, 0) + 1
            projects.append({"id": project.id, "name": project.name, "status_counts": status_counts})

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "lane_profiles": {"count": len(profile_ids), "ids": profile_ids, "error": profile_error},
            "projects": projects,
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for the gateway server."""

    settings = get_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    logging.getLogger(__name__).info(
        "Launching Lanewarden gateway",
        extra={"version": __version__, "host": settings.host, "port": settings.port},
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def mcp_main() -> None:
    """Entry point for the MCP board tools over stdio."""

    settings = get_settings()
    configure_logging(settings.log_level)
    server = create_mcp_server(settings)
    logging.getLogger(__name__).info(
        "Launching Lanewarden MCP server",
        extra={"version": __version__, "project_id": settings.mcp_project_id or "none"},
    )
    server.run()


if __name__ == "__main__":
    main()
