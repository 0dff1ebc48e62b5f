# scorm_mcp/types.py
from typing import Any, Literal

from mcp.types import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    CallToolResult,
    ErrorData,
    Implementation,
    InitializeResult,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ListToolsResult,
    RequestId,
    ServerCapabilities,
    TextContent,
    Tool,
    ToolsCapability,
)
from pydantic import BaseModel, ConfigDict

"""
JSON-RPC 2.0 and MCP tool-protocol bindings used on the stdio wire.

The MCP models are reused from `mcp.types`; only the error envelope differs,
because it has to carry a null id.
"""

__all__ = [
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SERVER_ERROR",
    "CallToolResult",
    "ErrorData",
    "Implementation",
    "InitializeResult",
    "JSONRPCError",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "ListToolsResult",
    "RequestId",
    "ServerCapabilities",
    "TextContent",
    "Tool",
    "ToolsCapability",
    "response_id",
]

LATEST_PROTOCOL_VERSION = "2025-06-18"

"""
The version answered when the client asks for one we do not know. Older MCP clients
still open with 2024-11-05, which is echoed back unchanged.
"""
DEFAULT_NEGOTIATED_VERSION = "2024-11-05"

SUPPORTED_PROTOCOL_VERSIONS = ["2024-11-05", "2025-03-26", LATEST_PROTOCOL_VERSION]

# Application errors; `data.error_code` carries the symbolic kind
SERVER_ERROR = -32000


def response_id(value: Any) -> RequestId | None:
    """The id to echo back: a string or a plain integer, anything else answers as null."""
    if isinstance(value, str) or type(value) is int:
        return value
    return None


class JSONRPCError(BaseModel):
    """A response to a request that indicates an error occurred.

    `id` is null when the request could not be read far enough to recover one.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None
    error: ErrorData
    model_config = ConfigDict(extra="allow")
