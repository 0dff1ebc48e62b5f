# scorm_mcp/errors.py
"""Symbolic error kinds and the exception that carries them to the wire."""

from __future__ import annotations

from enum import Enum
from typing import Any

import jsonschema
from pydantic import BaseModel, ConfigDict, ValidationError


class ErrorCode(str, Enum):
    MCP_INVALID_PARAMS = "MCP_INVALID_PARAMS"
    MCP_UNKNOWN_SESSION = "MCP_UNKNOWN_SESSION"
    MCP_UNKNOWN_TOOL = "MCP_UNKNOWN_TOOL"
    MCP_ARTIFACT_WRITE_FAILED = "MCP_ARTIFACT_WRITE_FAILED"

    CONTENT_FILE_MISSING = "CONTENT_FILE_MISSING"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    MANIFEST_NOT_FOUND = "MANIFEST_NOT_FOUND"
    MANIFEST_LAUNCH_NOT_FOUND = "MANIFEST_LAUNCH_NOT_FOUND"

    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"
    BRIDGE_TIMEOUT = "BRIDGE_TIMEOUT"

    RUNTIME_NOT_OPEN = "RUNTIME_NOT_OPEN"
    PAGE_LOAD_FAILED = "PAGE_LOAD_FAILED"
    INVALID_SCORM_METHOD = "INVALID_SCORM_METHOD"
    SCORM_API_ERROR = "SCORM_API_ERROR"
    SCRIPT_EXECUTION_ERROR = "SCRIPT_EXECUTION_ERROR"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    DOM_CLICK_FAILED = "DOM_CLICK_FAILED"
    DOM_FILL_FAILED = "DOM_FILL_FAILED"
    DOM_QUERY_FAILED = "DOM_QUERY_FAILED"
    DOM_WAIT_FAILED = "DOM_WAIT_FAILED"
    KEYBOARD_TYPE_FAILED = "KEYBOARD_TYPE_FAILED"

    SN_BRIDGE_UNAVAILABLE = "SN_BRIDGE_UNAVAILABLE"
    SN_BRIDGE_ERROR = "SN_BRIDGE_ERROR"
    SN_NOT_INITIALIZED = "SN_NOT_INITIALIZED"
    SN_INIT_FAILED = "SN_INIT_FAILED"
    SN_RESET_FAILED = "SN_RESET_FAILED"
    NAV_UNSUPPORTED_ACTION = "NAV_UNSUPPORTED_ACTION"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @classmethod
    def parse(cls, value: Any) -> ErrorCode:
        """Map a code received from elsewhere onto a known kind."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN_ERROR


class ToolError(BaseModel):
    """Error payload attached to a failed tool invocation."""

    error_code: ErrorCode
    message: str
    data: Any | None = None

    model_config = ConfigDict(use_enum_values=False)

    def wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error_code": self.error_code.value, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


class ScormMcpError(Exception):
    """
    Exception type raised by tools, the session manager, the runtime and the bridge.
    """

    error: ToolError

    def __init__(self, code: ErrorCode, message: str, data: Any | None = None):
        super().__init__(message)
        self.error = ToolError(error_code=code, message=message, data=data)

    @property
    def code(self) -> ErrorCode:
        return self.error.error_code


class InvalidParamsError(ScormMcpError):
    def __init__(self, message: str, data: Any | None = None):
        super().__init__(ErrorCode.MCP_INVALID_PARAMS, message, data)


class UnknownSessionError(ScormMcpError):
    def __init__(self, session_id: str):
        super().__init__(ErrorCode.MCP_UNKNOWN_SESSION, f"Unknown session: {session_id}")


class RuntimeNotOpenError(ScormMcpError):
    def __init__(self, session_id: str):
        super().__init__(ErrorCode.RUNTIME_NOT_OPEN, f"Runtime not open for session {session_id}")


def map_error(exc: BaseException) -> ToolError:
    """Classify any exception into a symbolic error payload."""
    if isinstance(exc, ScormMcpError):
        return exc.error
    if isinstance(exc, ValidationError):
        return ToolError(
            error_code=ErrorCode.MCP_INVALID_PARAMS,
            message="Invalid parameters",
            data=exc.errors(include_url=False, include_context=False, include_input=False),
        )
    if isinstance(exc, jsonschema.ValidationError):
        return ToolError(error_code=ErrorCode.MCP_INVALID_PARAMS, message=f"Invalid parameters: {exc.message}")
    if isinstance(exc, FileNotFoundError):
        return ToolError(error_code=ErrorCode.CONTENT_FILE_MISSING, message=str(exc))
    if isinstance(exc, PermissionError):
        return ToolError(error_code=ErrorCode.SECURITY_VIOLATION, message=str(exc))
    return ToolError(error_code=ErrorCode.UNKNOWN_ERROR, message=str(exc) or type(exc).__name__)
