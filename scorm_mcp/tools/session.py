# scorm_mcp/tools/session.py
from __future__ import annotations as _annotations

from typing import Any, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from scorm_mcp.errors import UnknownSessionError
from scorm_mcp.server.router import ToolRouter

if TYPE_CHECKING:
    from scorm_mcp.orchestrator import Orchestrator

ViewportArg = str | dict[str, Any] | None


class EchoInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: Any | None = None


class SessionOpenInput(BaseModel):
    package_path: str = Field(min_length=1, description="Package directory or zip archive")
    timeout_ms: int = Field(default=0, ge=0)
    new_attempt: bool = False


class SessionIdInput(BaseModel):
    session_id: str = Field(min_length=1)


class SessionEventsInput(SessionIdInput):
    since_event_id: int = 0
    max_events: int | None = None


class OpenCourseInput(BaseModel):
    package_path: str = Field(min_length=1)
    viewport: ViewportArg = None
    timeout_ms: int = Field(default=0, ge=0)
    force_new: bool = False


class ReloadCourseInput(SessionIdInput):
    package_path: str | None = None
    viewport: ViewportArg = None
    force_new: bool = False


async def open_course(app: Orchestrator, args: OpenCourseInput) -> dict[str, Any]:
    """Open a session and a persistent runtime on the package's launch file."""
    opened = app.sessions.open(args.package_path, timeout_ms=args.timeout_ms, new_attempt=args.force_new)
    session_id = opened["session_id"]
    try:
        entry = app.resolve_entry(session_id)
        app.sessions.emit(session_id, "runtime:persistent_open_start", {"entry_path": str(entry)})
        runtime = await app.runtime.open_persistent(
            session_id,
            str(entry),
            viewport=args.viewport,
            adapter_options={"course_id": app.sessions.get(session_id).course_key, "force_new": args.force_new},
        )
    except Exception:
        await app.sessions.close(session_id)
        raise
    if not app.sessions.is_ready(session_id):
        await app.runtime.close_persistent(session_id)
        raise UnknownSessionError(session_id)
    app.sessions.emit(session_id, "runtime:persistent_opened", {"url": runtime.get("url")})
    return {**opened, "entry_path": str(entry), "url": runtime.get("url")}


def register(router: ToolRouter, app: Orchestrator) -> None:
    @router.tool("scorm_echo", description="Echo the arguments back; connectivity check.", input_model=EchoInput)
    async def echo(args: EchoInput) -> dict[str, Any]:
        return {"echo": args.model_dump()}

    @router.tool(
        "scorm_session_open",
        description="Open a testing session for a package directory or zip archive.",
        input_model=SessionOpenInput,
    )
    async def session_open(args: SessionOpenInput) -> dict[str, Any]:
        return app.sessions.open(args.package_path, timeout_ms=args.timeout_ms, new_attempt=args.new_attempt)

    @router.tool("scorm_session_status", description="State and activity of a session.", input_model=SessionIdInput)
    async def session_status(args: SessionIdInput) -> dict[str, Any]:
        return app.sessions.status(args.session_id)

    @router.tool(
        "scorm_session_events",
        description="Session events after a cursor (max_events clamped to 1..1000).",
        input_model=SessionEventsInput,
    )
    async def session_events(args: SessionEventsInput) -> dict[str, Any]:
        return app.sessions.events(args.session_id, args.since_event_id, args.max_events)

    @router.tool(
        "scorm_session_close",
        description="Close a session, suspending and terminating its runtime if one is running.",
        input_model=SessionIdInput,
    )
    async def session_close(args: SessionIdInput) -> dict[str, Any]:
        return await app.sessions.close(args.session_id)

    @router.tool(
        "scorm_open_course",
        description="Open a session and load the package's launch page in a persistent runtime.",
        input_model=OpenCourseInput,
    )
    async def scorm_open_course(args: OpenCourseInput) -> dict[str, Any]:
        return await open_course(app, args)

    @router.tool("scorm_close_course", description="Close a course opened with scorm_open_course.", input_model=SessionIdInput)
    async def close_course(args: SessionIdInput) -> dict[str, Any]:
        return await app.sessions.close(args.session_id)

    @router.tool(
        "scorm_reload_course",
        description="Close a course session and open the same package again in a new session.",
        input_model=ReloadCourseInput,
    )
    async def reload_course(args: ReloadCourseInput) -> dict[str, Any]:
        package_path = args.package_path or str(app.sessions.get(args.session_id).package_path)
        await app.sessions.close(args.session_id)
        reopened = await open_course(
            app,
            OpenCourseInput(package_path=package_path, viewport=args.viewport, force_new=args.force_new),
        )
        return {**reopened, "previous_session_id": args.session_id}
