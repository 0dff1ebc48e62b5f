# scorm_mcp/sessions/types.py
from __future__ import annotations

import time
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionState(str, Enum):
    READY = "ready"
    CLOSING = "closing"


class Event(BaseModel):
    """One entry of a session's append-only event log."""

    id: int
    ts: int
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class Session(BaseModel):
    id: str
    state: SessionState = SessionState.READY
    package_path: Path
    package_type: Literal["file", "directory"]
    manifest_path: Path | None = None
    workspace_path: Path
    course_key: str
    created_at: int = Field(default_factory=now_ms)
    last_activity_at: int = Field(default_factory=now_ms)
    timeout_ms: int = 0
    new_attempt: bool = False
    artifacts_count: int = 0

    events: list[Event] = Field(default_factory=list)
    next_event_id: int = 1

    # set before the first await of close(); the graceful runtime shutdown runs once
    shutdown_attempted: bool = False

    @property
    def artifacts_manifest_path(self) -> Path:
        return self.workspace_path / "artifacts_manifest.json"

    def append_event(self, type: str, payload: dict[str, Any] | None = None) -> Event:
        ev = Event(id=self.next_event_id, ts=now_ms(), type=type, payload=payload or {})
        self.next_event_id += 1
        self.events.append(ev)
        self.last_activity_at = ev.ts
        return ev
