# scorm_mcp/orchestrator.py
from __future__ import annotations as _annotations

from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

import anyio
from mcp.server.fastmcp.utilities.logging import get_logger

from scorm_mcp import __version__
from scorm_mcp.bridge import BridgedRuntime, ProcessBridge
from scorm_mcp.runtime.base import RuntimeBackend
from scorm_mcp.runtime.manager import RuntimeManager
from scorm_mcp.runtime.manifest import resolve_entry_path
from scorm_mcp.server.router import ToolRouter
from scorm_mcp.server.server import Server
from scorm_mcp.sessions import CourseResources, SessionManager
from scorm_mcp.settings import Settings
from scorm_mcp.tools import register_tools

logger = get_logger(__name__)

SERVER_NAME = "SCORM MCP"
INSTRUCTIONS = (
    "Open a package with scorm_open_course (or scorm_session_open + scorm_runtime_open), "
    "drive it through the scorm_* tools, and close it with scorm_close_course."
)


def build_runtime(settings: Settings) -> RuntimeBackend:
    if settings.topology == "inprocess":
        return RuntimeManager(settings)
    return BridgedRuntime(ProcessBridge(settings))


class Orchestrator:
    """Owns the runtime backend, session registry and tool router for one server."""

    def __init__(self, settings: Settings | None = None, runtime: RuntimeBackend | None = None):
        self.settings = settings or Settings()
        self.runtime: RuntimeBackend = runtime if runtime is not None else build_runtime(self.settings)
        self.courses = CourseResources(self.settings.courses_root, self.settings.max_course_captures)
        self.sessions = SessionManager(self.settings.sessions_root, self.courses, runtime=self.runtime)
        self.router = ToolRouter()
        register_tools(self.router, self)
        self._exit_stack: AsyncExitStack | None = None

    async def __aenter__(self) -> Orchestrator:
        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self.runtime)
            self._exit_stack = stack.pop_all()
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        with anyio.CancelScope(shield=True):
            await self.close_sessions()
        stack, self._exit_stack = self._exit_stack, None
        if stack is not None:
            return await stack.__aexit__(*exc_info)
        return None

    async def close_sessions(self) -> None:
        for session_id in self.sessions.ids():
            try:
                await self.sessions.close(session_id)
            except Exception:
                logger.exception("Failed to close session %s on shutdown", session_id)

    def resolve_entry(self, session_id: str) -> Path:
        """Launch file for a session's package."""
        return resolve_entry_path(self.sessions.content_root(session_id))

    def create_server(self) -> Server:
        return Server(SERVER_NAME, self.router, version=__version__, instructions=INSTRUCTIONS)
