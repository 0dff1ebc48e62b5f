# scorm_mcp/bridge/messages.py
from __future__ import annotations

import base64
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from scorm_mcp.errors import ErrorCode, ScormMcpError

READY = "ready"

# message type -> RuntimeManager method served by the engine
OPERATIONS: dict[str, str] = {
    "runtime_openPersistent": "open_persistent",
    "runtime_closePersistent": "close_persistent",
    "runtime_getStatus": "get_status",
    "runtime_callAPI": "call_api",
    "runtime_getCapturedCalls": "get_captured_calls",
    "runtime_capture": "capture",
    "runtime_executeJS": "execute_js",
    "runtime_snInvoke": "sn_invoke",
    "runtime_domClick": "dom_click",
    "runtime_domFill": "dom_fill",
    "runtime_domQuery": "dom_query",
    "runtime_domWaitFor": "dom_wait_for",
    "runtime_keyboardType": "keyboard_type",
    "runtime_findInteractiveElements": "find_interactive_elements",
    "runtime_testApiIntegration": "test_api_integration",
    "runtime_screenshotPage": "screenshot_page",
    "runtime_closeAll": "close_all",
}


class BridgeMessage(BaseModel):
    """A request sent to the engine; the response reuses `id`."""

    id: int | str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class BridgeResponse(BaseModel):
    id: int | str | None = None
    type: Literal["result", "error", "ready"]
    payload: Any | None = None

    model_config = ConfigDict(extra="allow")


class BridgeErrorPayload(BaseModel):
    message: str
    code: str | None = None
    data: Any | None = None


def normalize_error(payload: Any) -> BridgeErrorPayload:
    """Accept `"text"` or `{message, code?, data?}` error payloads."""
    if isinstance(payload, BridgeErrorPayload):
        return payload
    if isinstance(payload, dict):
        message = payload.get("message")
        return BridgeErrorPayload(
            message=str(message) if message else "Engine error",
            code=str(payload["code"]) if payload.get("code") else None,
            data=payload.get("data"),
        )
    if payload is None:
        return BridgeErrorPayload(message="Engine error")
    return BridgeErrorPayload(message=str(payload))


def error_from_payload(payload: Any) -> ScormMcpError:
    err = normalize_error(payload)
    return ScormMcpError(ErrorCode.parse(err.code), err.message, err.data)


def encode_bytes(data: bytes) -> dict[str, str]:
    return {"encoding": "base64", "data": base64.b64encode(data).decode("ascii")}


def decode_bytes(value: Any) -> bytes:
    if isinstance(value, dict) and value.get("encoding") == "base64":
        return base64.b64decode(value["data"])
    raise ScormMcpError(ErrorCode.CAPTURE_FAILED, "Engine returned no image data")
