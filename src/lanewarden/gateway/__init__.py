"""HTTP and websocket gateway."""

from .app import build_orchestrator, create_app

__all__ = ["build_orchestrator", "create_app"]
