from __future__ import annotations

from typing import TYPE_CHECKING

from scorm_mcp.server.router import ToolRouter
from . import dom, runtime, session, system, validate

if TYPE_CHECKING:
    from scorm_mcp.orchestrator import Orchestrator


def register_tools(router: ToolRouter, app: Orchestrator) -> None:
    session.register(router, app)
    runtime.register(router, app)
    dom.register(router, app)
    validate.register(router, app)
    system.register(router, app)


__all__ = ["register_tools"]
