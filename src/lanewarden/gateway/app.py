"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .. import __version__
from ..agent.claude import ClaudeAgentRuntime
from ..agent.runtime import AgentRuntime
from ..config import LanewardenSettings, get_settings
from ..lanes.loader import LaneCatalog, LaneProfileLoadError
from ..orchestrator import Orchestrator
from . import routes, websocket

logger = logging.getLogger(__name__)


def build_orchestrator(settings: LanewardenSettings, runtime: AgentRuntime | None = None) -> Orchestrator:
    """Assemble the service object from settings."""

    try:
        lanes = LaneCatalog.from_paths(settings.lane_profile_paths)
    except LaneProfileLoadError as exc:
        logger.warning("Ignoring lane profiles that failed to load", extra={"error": str(exc)})
        lanes = LaneCatalog()
    runtime = runtime or ClaudeAgentRuntime(
        cli_path=settings.claude_cli_path,
        permission_mode=settings.permission_mode,
        linger_seconds=settings.session_linger_seconds,
    )
    return Orchestrator(settings, runtime, lanes=lanes)


def create_app(
    settings: LanewardenSettings | None = None,
    *,
    runtime: AgentRuntime | None = None,
    orchestrator: Orchestrator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings, runtime)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.close()

    app = FastAPI(title="Lanewarden", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    routes.install_error_handlers(app)
    app.include_router(routes.router)
    app.include_router(websocket.router)
    return app


__all__ = ["build_orchestrator", "create_app"]
