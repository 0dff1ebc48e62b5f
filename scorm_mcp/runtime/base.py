# scorm_mcp/runtime/base.py
from __future__ import annotations

from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field

InitializeState = Literal["none", "initialized", "terminated"]

VIEWPORT_PRESETS: dict[str, tuple[int, int]] = {
    "desktop": (1366, 768),
    "tablet": (1024, 1366),
    "mobile": (390, 844),
}


class Viewport(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    scale: float = Field(default=1.0, gt=0)


def resolve_viewport(value: Any, default: Viewport) -> Viewport:
    """Accept a preset name, a {width, height, scale?} mapping, or nothing."""
    if value is None:
        return default
    if isinstance(value, Viewport):
        return value
    if isinstance(value, str):
        preset = VIEWPORT_PRESETS.get(value.lower())
        if preset is None:
            return default
        return Viewport(width=preset[0], height=preset[1])
    if isinstance(value, dict):
        return Viewport(
            width=value.get("width") or default.width,
            height=value.get("height") or default.height,
            scale=value.get("scale") or 1.0,
        )
    return default


class RuntimeStatus(BaseModel):
    open: bool = False
    url: str | None = None
    initialize_state: InitializeState = "none"
    last_api_method: str | None = None
    last_api_ts: int | None = None


def initialize_state_from_calls(calls: list[dict[str, Any]]) -> InitializeState:
    """Derive the attempt state from a captured API call history."""
    state: InitializeState = "none"
    for call in calls:
        method = call.get("method")
        if call.get("result") != "true":
            continue
        if method == "Initialize":
            state = "initialized"
        elif method == "Terminate":
            state = "terminated"
    return state


class RuntimeBackend(Protocol):
    """Surface shared by the in-process runtime manager and its bridged proxy."""

    async def __aenter__(self) -> RuntimeBackend: ...

    async def __aexit__(self, *exc_info: Any) -> bool | None: ...

    async def open_persistent(
        self,
        session_id: str,
        entry_path: str,
        viewport: dict[str, Any] | None = None,
        adapter_options: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def close_persistent(self, session_id: str) -> bool: ...

    async def get_status(self, session_id: str) -> dict[str, Any]: ...

    async def call_api(self, session_id: str, method: str, args: list[Any] | None = None) -> str: ...

    async def get_captured_calls(self, session_id: str) -> list[dict[str, Any]]: ...

    async def capture(
        self,
        session_id: str,
        compress: bool = True,
        wait_for_selector: str | None = None,
        wait_timeout_ms: int = 5000,
        delay_ms: int = 0,
    ) -> bytes: ...

    async def execute_js(self, session_id: str, script: str) -> Any: ...

    async def sn_invoke(self, session_id: str, method: str, payload: dict[str, Any] | None = None) -> Any: ...

    async def dom_click(
        self,
        session_id: str,
        selector: str,
        click_type: str = "single",
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> dict[str, Any]: ...

    async def dom_fill(
        self,
        session_id: str,
        selector: str,
        value: Any,
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> dict[str, Any]: ...

    async def dom_query(self, session_id: str, selector: str, query_type: str = "all") -> dict[str, Any]: ...

    async def dom_wait_for(self, session_id: str, condition: dict[str, Any], timeout_ms: int = 10000) -> dict[str, Any]: ...

    async def keyboard_type(
        self,
        session_id: str,
        text: str,
        selector: str | None = None,
        delay_ms: int = 0,
    ) -> dict[str, Any]: ...

    async def find_interactive_elements(self, session_id: str) -> dict[str, Any]: ...

    async def test_api_integration(
        self,
        entry_path: str,
        viewport: dict[str, Any] | None = None,
        scenario: list[Any] | None = None,
        capture_api_calls: bool = True,
    ) -> dict[str, Any]: ...

    async def screenshot_page(
        self,
        entry_path: str,
        viewport: dict[str, Any] | None = None,
        compress: bool = True,
        wait_for_selector: str | None = None,
        wait_timeout_ms: int = 5000,
        delay_ms: int = 0,
    ) -> bytes: ...

    async def close_all(self) -> int: ...
