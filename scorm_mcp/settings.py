# scorm_mcp/settings.py
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_temp_root() -> Path:
    return Path(tempfile.gettempdir()) / "scorm-tester"


class Settings(BaseSettings):
    """SCORM MCP server settings.

    All settings can be configured via environment variables with the prefix SCORM_MCP_.
    For example, SCORM_MCP_TOPOLOGY=inprocess runs the browser inside the server process.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCORM_MCP_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    topology: Literal["split", "inprocess"] = "split"
    """`split` hosts the browser in a child engine process; `inprocess` keeps it local."""

    temp_root: Path = Field(default_factory=_default_temp_root)
    """Parent of `mcp_sessions/` (per-session workspaces) and `courses/` (capture folders)."""

    max_course_captures: int = Field(default=20, ge=1)

    # bridge timings, in seconds
    bridge_startup_timeout: float = Field(default=10.0, gt=0)
    bridge_message_timeout: float = Field(default=30.0, gt=0)
    bridge_shutdown_grace: float = Field(default=0.5, ge=0)

    # browser
    headless: bool = True
    chromium_sandbox: bool = True
    """Launch Chromium with its OS-level sandbox enabled."""
    allow_network: bool = False
    """When false only file:// and data: URLs load in content pages."""
    redirect_settle_timeout: float = Field(default=2.0, ge=0)
    default_viewport_width: int = Field(default=1024, gt=0)
    default_viewport_height: int = Field(default=768, gt=0)
    browser_args: list[str] = Field(default_factory=list)

    @property
    def sessions_root(self) -> Path:
        return self.temp_root / "mcp_sessions"

    @property
    def courses_root(self) -> Path:
        return self.temp_root / "courses"
