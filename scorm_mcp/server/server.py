# scorm_mcp/server/server.py
"""
SCORM MCP protocol server.

Reads newline-delimited JSON-RPC 2.0 messages, answers the MCP verbs
(`initialize`, `ping`, `tools/list`, `tools/call`) and falls back to calling a
registered tool directly when the method name matches one.

Usage:
    router = ToolRouter()
    server = Server("SCORM MCP", router, version="1.0.0")

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream)
"""

from __future__ import annotations as _annotations

import json
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import ValidationError
from pydantic_core import to_jsonable_python

import scorm_mcp.types as types
from scorm_mcp.errors import ErrorCode, map_error
from scorm_mcp.server.router import ToolRouter

logger = get_logger(__name__)

_JSONRPC_CODES = {
    ErrorCode.MCP_INVALID_PARAMS: types.INVALID_PARAMS,
    ErrorCode.MCP_UNKNOWN_TOOL: types.METHOD_NOT_FOUND,
}


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json", exclude_none=True)


def error_response(request_id: Any, code: int, message: str, data: Any | None = None) -> dict[str, Any]:
    err = types.JSONRPCError(
        id=types.response_id(request_id),
        error=types.ErrorData(code=code, message=message, data=data),
    )
    payload = _dump(err)
    # `id` must be present even when unknown
    payload["id"] = err.id
    return payload


def result_response(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return _dump(types.JSONRPCResponse(jsonrpc="2.0", id=request_id, result=result))


class Server:
    def __init__(
        self,
        name: str,
        router: ToolRouter,
        version: str | None = None,
        instructions: str | None = None,
    ):
        self.name = name
        self.router = router
        self.version = version
        self.instructions = instructions

    def create_initialize_result(self, requested_version: Any = None) -> types.InitializeResult:
        if requested_version in types.SUPPORTED_PROTOCOL_VERSIONS:
            version = requested_version
        else:
            version = types.DEFAULT_NEGOTIATED_VERSION
        return types.InitializeResult(
            protocolVersion=version,
            capabilities=types.ServerCapabilities(tools=types.ToolsCapability(listChanged=True)),
            serverInfo=types.Implementation(name=self.name, version=self.version or "0.0.0"),
            instructions=self.instructions,
        )

    async def run(
        self,
        read_stream: MemoryObjectReceiveStream[str],
        write_stream: MemoryObjectSendStream[str],
    ) -> None:
        """Serve until the read stream is exhausted, then wait for in-flight requests."""
        async with write_stream:
            async with anyio.create_task_group() as tg:
                async for line in read_stream:
                    line = line.strip()
                    if not line:
                        continue
                    logger.debug("Received message: %s", line)
                    try:
                        message = json.loads(line)
                    except ValueError:
                        # written inline so ordering against later lines is preserved
                        await self._write(write_stream, error_response(None, types.PARSE_ERROR, "Parse error"))
                        continue
                    tg.start_soon(self._respond, message, write_stream)

    async def _respond(self, message: Any, write_stream: MemoryObjectSendStream[str]) -> None:
        response = await self.handle_message(message)
        if response is not None:
            await self._write(write_stream, response)

    async def _write(self, write_stream: MemoryObjectSendStream[str], payload: dict[str, Any]) -> None:
        try:
            await write_stream.send(json.dumps(payload))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            logger.debug("Dropping response, output closed: %s", e)

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        """Handle one raw line; `None` means nothing is written back."""
        try:
            message = json.loads(line)
        except ValueError:
            return error_response(None, types.PARSE_ERROR, "Parse error")
        return await self.handle_message(message)

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        if not isinstance(message, dict):
            return error_response(None, types.INVALID_REQUEST, "Invalid Request")

        is_request = "id" in message
        request_id = message.get("id")

        if message.get("jsonrpc") != "2.0":
            return error_response(request_id, types.INVALID_REQUEST, "Invalid Request: JSON-RPC 2.0 required")
        if not isinstance(message.get("method"), str) or not message["method"]:
            return error_response(request_id, types.INVALID_REQUEST, "Invalid Request")
        if is_request and types.response_id(request_id) is None:
            return error_response(None, types.INVALID_REQUEST, "Invalid Request: id must be a string or an integer")

        try:
            if is_request:
                req = types.JSONRPCRequest.model_validate(message)
            else:
                req = types.JSONRPCNotification.model_validate(message)
        except ValidationError:
            return error_response(request_id, types.INVALID_REQUEST, "Invalid Request")

        logger.info("Processing request of type %s", req.method)
        params = req.params or {}

        match req.method:
            case "initialize":
                result = _dump(self.create_initialize_result(params.get("protocolVersion")))
            case "ping":
                result = {}
            case "tools/list":
                result = _dump(types.ListToolsResult(tools=self.router.list_descriptors()))
            case "tools/call":
                name = params.get("name")
                if not isinstance(name, str) or not name:
                    if not is_request:
                        return None
                    return error_response(request_id, types.INVALID_PARAMS, "Invalid params: tool name is required")
                arguments = params.get("arguments")
                result = _dump(await self._call_tool(name, arguments if isinstance(arguments, dict) else {}))
            case method if method.startswith("notifications/"):
                return None
            case method:
                if not self.router.has(method):
                    if not is_request:
                        return None
                    return error_response(request_id, types.METHOD_NOT_FOUND, f"Method not found: {method}")
                try:
                    data = await self.router.dispatch(method, params)
                except Exception as e:
                    err = map_error(e)
                    self._log_tool_failure(method, e, err.error_code)
                    if not is_request:
                        return None
                    code = _JSONRPC_CODES.get(err.error_code, types.SERVER_ERROR)
                    return error_response(request_id, code, err.message, err.wire())
                result = {"data": to_jsonable_python(data)}

        if not is_request:
            return None
        return result_response(request_id, result)

    async def _call_tool(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        try:
            data = to_jsonable_python(await self.router.dispatch(name, arguments))
        except Exception as e:
            err = map_error(e)
            self._log_tool_failure(name, e, err.error_code)
            payload = err.wire()
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=json.dumps(payload))],
                structuredContent=payload,
                isError=True,
            )
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=json.dumps(data))],
            structuredContent=data if isinstance(data, dict) else {"result": data},
        )

    def _log_tool_failure(self, name: str, exc: Exception, code: ErrorCode) -> None:
        if code is ErrorCode.UNKNOWN_ERROR:
            logger.exception("Tool %s failed", name)
        else:
            logger.info("Tool %s failed with %s: %s", name, code.value, exc)
