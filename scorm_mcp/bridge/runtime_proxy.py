# scorm_mcp/bridge/runtime_proxy.py
from __future__ import annotations

from typing import Any

from scorm_mcp.runtime.base import RuntimeStatus
from .messages import decode_bytes
from .process_bridge import ProcessBridge


class BridgedRuntime:
    """Runtime backend whose pages live in the engine process."""

    def __init__(self, bridge: ProcessBridge):
        self.bridge = bridge

    async def __aenter__(self) -> BridgedRuntime:
        await self.bridge.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool | None:
        return await self.bridge.__aexit__(exc_type, exc_val, exc_tb)

    async def open_persistent(
        self,
        session_id: str,
        entry_path: str,
        viewport: dict[str, Any] | None = None,
        adapter_options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_openPersistent",
            {
                "session_id": session_id,
                "entry_path": str(entry_path),
                "viewport": viewport,
                "adapter_options": adapter_options,
            },
        )

    async def close_persistent(self, session_id: str) -> bool:
        # nothing can be open without a live engine
        if not self.bridge.is_running:
            return False
        return bool(await self.bridge.request("runtime_closePersistent", {"session_id": session_id}))

    async def get_status(self, session_id: str) -> dict[str, Any]:
        if not self.bridge.is_running:
            return RuntimeStatus().model_dump()
        return await self.bridge.request("runtime_getStatus", {"session_id": session_id})

    async def call_api(self, session_id: str, method: str, args: list[Any] | None = None) -> str:
        return await self.bridge.request(
            "runtime_callAPI",
            {"session_id": session_id, "method": method, "args": list(args or [])},
        )

    async def get_captured_calls(self, session_id: str) -> list[dict[str, Any]]:
        return await self.bridge.request("runtime_getCapturedCalls", {"session_id": session_id}) or []

    async def capture(
        self,
        session_id: str,
        compress: bool = True,
        wait_for_selector: str | None = None,
        wait_timeout_ms: int = 5000,
        delay_ms: int = 0,
    ) -> bytes:
        payload = await self.bridge.request(
            "runtime_capture",
            {
                "session_id": session_id,
                "compress": compress,
                "wait_for_selector": wait_for_selector,
                "wait_timeout_ms": wait_timeout_ms,
                "delay_ms": delay_ms,
            },
        )
        return decode_bytes(payload)

    async def execute_js(self, session_id: str, script: str) -> Any:
        return await self.bridge.request("runtime_executeJS", {"session_id": session_id, "script": script})

    async def sn_invoke(self, session_id: str, method: str, payload: dict[str, Any] | None = None) -> Any:
        return await self.bridge.request(
            "runtime_snInvoke",
            {"session_id": session_id, "method": method, "payload": payload or {}},
        )

    async def dom_click(
        self,
        session_id: str,
        selector: str,
        click_type: str = "single",
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_domClick",
            {
                "session_id": session_id,
                "selector": selector,
                "click_type": click_type,
                "wait_for_selector": wait_for_selector,
                "wait_timeout_ms": wait_timeout_ms,
            },
        )

    async def dom_fill(
        self,
        session_id: str,
        selector: str,
        value: Any,
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_domFill",
            {
                "session_id": session_id,
                "selector": selector,
                "value": value,
                "wait_for_selector": wait_for_selector,
                "wait_timeout_ms": wait_timeout_ms,
            },
        )

    async def dom_query(self, session_id: str, selector: str, query_type: str = "all") -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_domQuery",
            {"session_id": session_id, "selector": selector, "query_type": query_type},
        )

    async def dom_wait_for(self, session_id: str, condition: dict[str, Any], timeout_ms: int = 10000) -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_domWaitFor",
            {"session_id": session_id, "condition": condition, "timeout_ms": timeout_ms},
        )

    async def keyboard_type(
        self,
        session_id: str,
        text: str,
        selector: str | None = None,
        delay_ms: int = 0,
    ) -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_keyboardType",
            {"session_id": session_id, "text": text, "selector": selector, "delay_ms": delay_ms},
        )

    async def find_interactive_elements(self, session_id: str) -> dict[str, Any]:
        return await self.bridge.request("runtime_findInteractiveElements", {"session_id": session_id})

    async def test_api_integration(
        self,
        entry_path: str,
        viewport: dict[str, Any] | None = None,
        scenario: list[Any] | None = None,
        capture_api_calls: bool = True,
    ) -> dict[str, Any]:
        return await self.bridge.request(
            "runtime_testApiIntegration",
            {
                "entry_path": str(entry_path),
                "viewport": viewport,
                "scenario": scenario,
                "capture_api_calls": capture_api_calls,
            },
        )

    async def screenshot_page(
        self,
        entry_path: str,
        viewport: dict[str, Any] | None = None,
        compress: bool = True,
        wait_for_selector: str | None = None,
        wait_timeout_ms: int = 5000,
        delay_ms: int = 0,
    ) -> bytes:
        payload = await self.bridge.request(
            "runtime_screenshotPage",
            {
                "entry_path": str(entry_path),
                "viewport": viewport,
                "compress": compress,
                "wait_for_selector": wait_for_selector,
                "wait_timeout_ms": wait_timeout_ms,
                "delay_ms": delay_ms,
            },
        )
        return decode_bytes(payload)

    async def close_all(self) -> int:
        if not self.bridge.is_running:
            return 0
        return int(await self.bridge.request("runtime_closeAll") or 0)
