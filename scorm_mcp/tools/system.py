# scorm_mcp/tools/system.py
from __future__ import annotations as _annotations

import logging
from typing import Any, Literal, TYPE_CHECKING

from pydantic import BaseModel

from scorm_mcp.server.router import ToolRouter

if TYPE_CHECKING:
    from scorm_mcp.orchestrator import Orchestrator


class SetLogLevelInput(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def register(router: ToolRouter, app: Orchestrator) -> None:
    @router.tool("system_set_log_level", description="Change the server's log level.", input_model=SetLogLevelInput)
    async def set_log_level(args: SetLogLevelInput) -> dict[str, Any]:
        logging.getLogger("scorm_mcp").setLevel(args.level)
        return {"success": True, "level": args.level}
