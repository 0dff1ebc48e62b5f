# scorm_mcp/sessions/manager.py
from __future__ import annotations as _annotations

import json
import secrets
import shutil
import zipfile
from pathlib import Path
from typing import Any, TYPE_CHECKING

from mcp.server.fastmcp.utilities.logging import get_logger

from scorm_mcp.errors import (
    ErrorCode,
    InvalidParamsError,
    ScormMcpError,
    UnknownSessionError,
)
from .course_resources import CourseResources, course_key
from .types import Event, Session, SessionState, now_ms

if TYPE_CHECKING:
    from scorm_mcp.runtime.base import RuntimeBackend

logger = get_logger(__name__)

MANIFEST_NAME = "imsmanifest.xml"
DEFAULT_MAX_EVENTS = 100
MAX_EVENTS_LIMIT = 1000


class SessionManager:
    """Registry of open testing sessions and their on-disk workspaces."""

    def __init__(
        self,
        sessions_root: Path,
        courses: CourseResources,
        runtime: RuntimeBackend | None = None,
    ):
        self.sessions_root = sessions_root
        self.courses = courses
        self.runtime = runtime
        self._sessions: dict[str, Session] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def require_ready(self, session_id: str) -> Session:
        """Like `get`, but refuses sessions that are already shutting down."""
        session = self.get(session_id)
        if session.state is SessionState.CLOSING:
            raise ScormMcpError(
                ErrorCode.MCP_UNKNOWN_SESSION,
                f"Session is closing: {session_id}",
                {"session_id": session_id},
            )
        return session

    def is_ready(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.state is not SessionState.CLOSING

    def _new_id(self) -> str:
        while True:
            session_id = secrets.token_hex(8)
            if session_id not in self._sessions:
                return session_id

    def open(self, package_path: str | None, timeout_ms: int = 0, new_attempt: bool = False) -> dict[str, Any]:
        """Validate a package location and allocate a session for it."""
        if not package_path:
            raise InvalidParamsError("package_path is required")

        path = Path(package_path).expanduser()
        if not path.exists():
            raise ScormMcpError(ErrorCode.CONTENT_FILE_MISSING, f"Package not found: {package_path}")

        package_type = "directory" if path.is_dir() else "file"
        manifest_path: Path | None = None
        if package_type == "directory":
            manifest_path = path / MANIFEST_NAME
            if not manifest_path.is_file():
                raise ScormMcpError(
                    ErrorCode.MANIFEST_NOT_FOUND,
                    f"{MANIFEST_NAME} not found in {path}",
                    {"package_path": str(path)},
                )

        session_id = self._new_id()
        workspace = self.sessions_root / session_id
        workspace.mkdir(parents=True, exist_ok=True)

        session = Session(
            id=session_id,
            package_path=path.resolve(),
            package_type=package_type,
            manifest_path=manifest_path.resolve() if manifest_path else None,
            workspace_path=workspace,
            course_key=course_key(path),
            timeout_ms=max(int(timeout_ms or 0), 0),
            new_attempt=new_attempt,
        )
        self._write_manifest(session, {"session_id": session_id, "artifacts": []})
        self._sessions[session_id] = session
        session.append_event("session:open", {"package_type": package_type})
        logger.info("Opened session %s for %s", session_id, path)

        return {
            "session_id": session_id,
            "workspace": str(workspace),
            "state": session.state.value,
            "artifacts_manifest_path": str(session.artifacts_manifest_path),
        }

    def status(self, session_id: str) -> dict[str, Any]:
        s = self.get(session_id)
        return {
            "state": s.state.value,
            "started_at": s.created_at,
            "last_activity_at": s.last_activity_at,
            "artifacts_count": s.artifacts_count,
            "timeout_ms": s.timeout_ms,
            "package_type": s.package_type,
        }

    def events(
        self,
        session_id: str,
        since_event_id: int | None = 0,
        max_events: int | None = DEFAULT_MAX_EVENTS,
    ) -> dict[str, Any]:
        s = self.get(session_id)
        since = max(int(since_event_id or 0), 0)
        limit = DEFAULT_MAX_EVENTS if max_events is None else int(max_events)
        limit = min(max(limit, 1), MAX_EVENTS_LIMIT)
        selected = [ev for ev in s.events if ev.id > since][:limit]
        return {
            "events": [ev.model_dump() for ev in selected],
            "next_event_id": s.next_event_id,
        }

    def emit(self, session_id: str, type: str, payload: dict[str, Any] | None = None) -> Event | None:
        """Append to a session's log; silently ignored once the session is gone."""
        s = self._sessions.get(session_id)
        if s is None:
            return None
        return s.append_event(type, payload)

    async def close(self, session_id: str) -> dict[str, Any]:
        s = self.get(session_id)
        s.state = SessionState.CLOSING
        s.append_event("session:close", {})

        if not s.shutdown_attempted:
            s.shutdown_attempted = True
            await self._shutdown_runtime(s)

        self._sessions.pop(session_id, None)
        logger.info("Closed session %s", session_id)
        return {"success": True, "artifacts_manifest_path": str(s.artifacts_manifest_path)}

    async def _shutdown_runtime(self, s: Session) -> None:
        """Suspend and terminate a running attempt, then drop the page. Never raises."""
        if self.runtime is None:
            return
        try:
            status = await self.runtime.get_status(s.id)
        except Exception:
            logger.exception("Runtime status unavailable while closing session %s", s.id)
            status = {"open": True}

        if status.get("open") and status.get("initialize_state") == "initialized":
            try:
                await self.runtime.call_api(s.id, "SetValue", ["cmi.exit", "suspend"])
            except Exception:
                logger.exception("Could not mark exit=suspend for session %s", s.id)
            try:
                result = await self.runtime.call_api(s.id, "Terminate", [""])
                s.append_event("runtime:terminated", {"result": result})
            except Exception:
                logger.exception("Terminate failed while closing session %s", s.id)

        # always runs: a page may have been opened after the status was read
        try:
            await self.runtime.close_persistent(s.id)
        except Exception:
            logger.exception("Could not close runtime for session %s", s.id)

    # -- artifacts ---------------------------------------------------------------

    def _write_manifest(self, s: Session, data: dict[str, Any]) -> None:
        try:
            s.artifacts_manifest_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            raise ScormMcpError(
                ErrorCode.MCP_ARTIFACT_WRITE_FAILED,
                f"Failed to write artifacts manifest: {e}",
                {"path": str(s.artifacts_manifest_path)},
            ) from e

    def _read_manifest(self, s: Session) -> dict[str, Any]:
        try:
            data = json.loads(s.artifacts_manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            data = None
        if not isinstance(data, dict) or not isinstance(data.get("artifacts"), list):
            logger.debug("Resetting unreadable artifacts manifest for session %s", s.id)
            return {"session_id": s.id, "artifacts": []}
        return data

    def add_artifact(
        self,
        session_id: str,
        artifact: dict[str, Any],
        event_type: str = "screenshot:capture_done",
    ) -> dict[str, Any]:
        s = self.get(session_id)
        data = self._read_manifest(s)
        data["artifacts"].append(artifact)
        self._write_manifest(s, data)
        s.artifacts_count += 1
        s.append_event(
            event_type,
            {"path": artifact.get("path"), "type": artifact.get("type")},
        )
        return artifact

    def save_capture(self, session_id: str, data: bytes, suffix: str = "jpg") -> dict[str, Any]:
        """Store a capture as a session artifact and in the rotated course folder."""
        s = self.get(session_id)
        name = f"screenshot_{now_ms()}_{secrets.token_hex(3)}.{suffix}"
        artifact_path = s.workspace_path / name
        try:
            artifact_path.write_bytes(data)
        except OSError as e:
            raise ScormMcpError(ErrorCode.MCP_ARTIFACT_WRITE_FAILED, f"Failed to write capture: {e}") from e

        course_path: Path | None = None
        try:
            course_path = self.courses.store(s.course_key, name, data)
        except OSError as e:
            logger.warning("Could not store capture in course folder %s: %s", s.course_key, e)

        self.add_artifact(session_id, {"type": "screenshot", "path": str(artifact_path)})
        return {
            "artifact_path": str(artifact_path),
            "course_path": str(course_path) if course_path else None,
        }

    def write_artifact(self, session_id: str, name: str, text: str, artifact_type: str) -> Path:
        """Write a text artifact into the session workspace and record it."""
        s = self.get(session_id)
        path = s.workspace_path / name
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise ScormMcpError(ErrorCode.MCP_ARTIFACT_WRITE_FAILED, f"Failed to write {name}: {e}") from e
        self.add_artifact(session_id, {"type": artifact_type, "path": str(path)}, event_type="artifact:written")
        return path

    # -- content -----------------------------------------------------------------

    def content_root(self, session_id: str) -> Path:
        """Directory holding the unpacked package content for a session."""
        s = self.get(session_id)
        if s.package_type == "directory":
            return s.package_path

        target = s.workspace_path / "content"
        if (target / MANIFEST_NAME).is_file():
            return target
        if not zipfile.is_zipfile(s.package_path):
            raise ScormMcpError(
                ErrorCode.MANIFEST_NOT_FOUND,
                f"{s.package_path} is neither a package directory nor a zip archive",
            )
        extract_package(s.package_path, target)
        if not (target / MANIFEST_NAME).is_file():
            raise ScormMcpError(ErrorCode.MANIFEST_NOT_FOUND, f"{MANIFEST_NAME} not found in {s.package_path}")
        s.append_event("package:extracted", {"path": str(target)})
        return target


def extract_package(archive: Path, target: Path) -> None:
    """Unpack a zip package, refusing members that would land outside `target`."""
    root = target.resolve()
    with zipfile.ZipFile(archive) as zf:
        for member in zf.infolist():
            dest = (root / member.filename).resolve()
            if dest != root and root not in dest.parents:
                shutil.rmtree(root, ignore_errors=True)
                raise ScormMcpError(
                    ErrorCode.SECURITY_VIOLATION,
                    f"Archive member escapes package folder: {member.filename}",
                )
            if member.is_dir():
                dest.mkdir(parents=True, exist_ok=True)
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member) as src, open(dest, "wb") as out:
                shutil.copyfileobj(src, out)
