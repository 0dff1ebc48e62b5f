# scorm_mcp/runtime/sequencing.py
"""Sequencing and navigation collaborator, reached from content pages through `SCORM_MCP.snInvoke`."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from mcp.server.fastmcp.utilities.logging import get_logger

from scorm_mcp.errors import ErrorCode, ScormMcpError
from .manifest import Manifest, iter_items, parse_manifest

logger = get_logger(__name__)


class SequencingEngine(Protocol):
    def initialize(self, manifest: Manifest, context: dict[str, Any]) -> dict[str, Any]: ...

    def get_sequencing_state(self) -> dict[str, Any]: ...

    def process_navigation(self, kind: str, target_id: str | None = None) -> dict[str, Any]: ...

    def reset(self) -> None: ...


class LinearSequencingEngine:
    """Flow navigation over the launchable leaves of the default organization."""

    def __init__(self):
        self._activities: list[dict[str, Any]] = []
        self._current: int | None = None
        self._context: dict[str, Any] = {}

    def initialize(self, manifest: Manifest, context: dict[str, Any]) -> dict[str, Any]:
        org = manifest.organization()
        self._context = dict(context)
        self._activities = [
            {"id": item.identifier, "title": item.title, "resource": item.identifierref}
            for item in iter_items(org.items if org else [])
            if item.identifierref and item.isvisible
        ]
        self._current = 0 if self._activities else None
        return {"activity_count": len(self._activities), "organization": org.identifier if org else None}

    def _current_activity(self) -> dict[str, Any] | None:
        if self._current is None:
            return None
        return self._activities[self._current]

    def get_sequencing_state(self) -> dict[str, Any]:
        current = self._current
        return {
            "current_activity": self._current_activity(),
            "activities": list(self._activities),
            "can_continue": current is not None and current + 1 < len(self._activities),
            "can_previous": current is not None and current > 0,
        }

    def process_navigation(self, kind: str, target_id: str | None = None) -> dict[str, Any]:
        if self._current is None:
            return {"success": False, "reason": "No activities available"}

        if kind == "continue":
            target = self._current + 1
        elif kind == "previous":
            target = self._current - 1
        elif kind == "choice":
            ids = [a["id"] for a in self._activities]
            if target_id not in ids:
                return {"success": False, "reason": f"Unknown activity: {target_id}"}
            target = ids.index(target_id)
        else:
            return {"success": False, "reason": f"Unsupported navigation request: {kind}"}

        if not 0 <= target < len(self._activities):
            return {"success": False, "reason": f"No activity available for {kind}"}
        self._current = target
        return {"success": True, "target_activity": self._activities[target]}

    def reset(self) -> None:
        self._current = 0 if self._activities else None


class SequencingBridge:
    """Session-keyed sequencing engines, answering the in-page `snInvoke` actions."""

    def __init__(self, engine_factory: Callable[[], SequencingEngine] = LinearSequencingEngine):
        self._engine_factory = engine_factory
        self._engines: dict[str, SequencingEngine] = {}

    def discard(self, key: str) -> None:
        self._engines.pop(key, None)

    def handle(self, key: str, action: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = payload or {}
        try:
            match action:
                case "init":
                    return self._init(key, payload)
                case "status":
                    engine = self._engines.get(key)
                    if engine is None:
                        return {"success": False, "error": ErrorCode.SN_NOT_INITIALIZED.value}
                    return {"success": True, "status": engine.get_sequencing_state()}
                case "reset":
                    engine = self._engines.get(key)
                    if engine is not None:
                        engine.reset()
                    return {"success": True}
                case "nav":
                    return self._nav(key, payload)
                case _:
                    return {"success": False, "error": "UNKNOWN_ACTION"}
        except Exception as e:
            logger.exception("Sequencing action %s failed", action)
            return {"success": False, "error": ErrorCode.SN_BRIDGE_ERROR.value, "message": str(e)}

    def _init(self, key: str, payload: dict[str, Any]) -> dict[str, Any]:
        manifest_path = payload.get("manifestPath")
        if not manifest_path and payload.get("folderPath"):
            manifest_path = str(Path(payload["folderPath"]) / "imsmanifest.xml")
        if not manifest_path:
            return {"success": False, "error": ErrorCode.SN_INIT_FAILED.value, "message": "manifestPath is required"}

        try:
            manifest = parse_manifest(manifest_path)
        except ScormMcpError as e:
            return {"success": False, "error": ErrorCode.SN_INIT_FAILED.value, "message": str(e)}
        engine = self._engine_factory()
        summary = engine.initialize(manifest, {"folder_path": payload.get("folderPath")})
        self._engines[key] = engine
        return {"success": True, **summary}

    def _nav(self, key: str, payload: dict[str, Any]) -> dict[str, Any]:
        engine = self._engines.get(key)
        if engine is None:
            return {"success": False, "error": ErrorCode.SN_NOT_INITIALIZED.value}
        kind = payload.get("navRequest") or payload.get("kind")
        if kind not in ("continue", "previous", "choice"):
            return {"success": False, "error": ErrorCode.NAV_UNSUPPORTED_ACTION.value}
        outcome = engine.process_navigation(kind, payload.get("targetId"))
        return {"success": True, "nav": outcome}
