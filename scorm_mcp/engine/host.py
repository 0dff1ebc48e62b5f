# scorm_mcp/engine/host.py
"""Engine side of the process bridge: serves runtime operations over the channel."""

from __future__ import annotations as _annotations

from typing import Any

import anyio
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic_core import to_jsonable_python

from scorm_mcp.bridge.channel import JsonLineChannel
from scorm_mcp.bridge.messages import OPERATIONS, READY, encode_bytes
from scorm_mcp.errors import ErrorCode, ScormMcpError, map_error
from scorm_mcp.runtime.manager import RuntimeManager

logger = get_logger(__name__)


class EngineHost:
    def __init__(self, runtime: RuntimeManager, channel: JsonLineChannel):
        self.runtime = runtime
        self.channel = channel

    async def serve(self) -> None:
        """Announce readiness, then answer messages until the parent goes away."""
        await self.channel.send({"type": READY, "id": None, "payload": {}})
        async with anyio.create_task_group() as tg:
            while True:
                try:
                    message = await self.channel.receive()
                except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError):
                    logger.info("Parent channel closed")
                    break
                tg.start_soon(self._answer, message)

    async def _answer(self, message: dict[str, Any]) -> None:
        msg_id = message.get("id")
        try:
            payload = await self.handle_message(message)
            response = {"id": msg_id, "type": "result", "payload": payload}
        except Exception as e:
            err = map_error(e)
            if err.error_code is ErrorCode.UNKNOWN_ERROR:
                logger.exception("Engine operation %s failed", message.get("type"))
            response = {
                "id": msg_id,
                "type": "error",
                "payload": {"message": err.message, "code": err.error_code.value, "data": err.data},
            }
        try:
            await self.channel.send(to_jsonable_python(response))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            logger.debug("Could not answer message %s: %s", msg_id, e)

    async def handle_message(self, message: dict[str, Any]) -> Any:
        msg_type = message.get("type")
        method_name = OPERATIONS.get(msg_type) if isinstance(msg_type, str) else None
        if method_name is None:
            raise ScormMcpError(ErrorCode.MCP_UNKNOWN_TOOL, f"Unknown engine message type: {msg_type}")
        payload = message.get("payload") or {}
        if not isinstance(payload, dict):
            raise ScormMcpError(ErrorCode.MCP_INVALID_PARAMS, "Message payload must be an object")

        result = await getattr(self.runtime, method_name)(**payload)
        if isinstance(result, bytes):
            return encode_bytes(result)
        return result
