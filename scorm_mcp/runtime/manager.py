# scorm_mcp/runtime/manager.py
from __future__ import annotations as _annotations

import os
import re
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any

import anyio
from mcp.server.fastmcp.utilities.logging import get_logger
from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    Dialog,
    Error as PlaywrightError,
    Locator,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from scorm_mcp.errors import (
    ErrorCode,
    InvalidParamsError,
    RuntimeNotOpenError,
    ScormMcpError,
)
from scorm_mcp.sessions.types import now_ms
from scorm_mcp.settings import Settings
from . import scripts
from .base import RuntimeStatus, Viewport, initialize_state_from_calls, resolve_viewport
from .sequencing import SequencingBridge

logger = get_logger(__name__)

_REMOTE_URL = re.compile(r"^(https?|wss?|ftp)://", re.IGNORECASE)

Launcher = Callable[[Settings], Awaitable[tuple[Playwright | None, Browser]]]


async def launch_chromium(settings: Settings) -> tuple[Playwright, Browser]:
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(
            headless=settings.headless,
            chromium_sandbox=settings.chromium_sandbox,
            args=["--disable-dev-shm-usage", "--no-first-run", *settings.browser_args],
        )
    except BaseException:
        await playwright.stop()
        raise
    return playwright, browser


@dataclass
class RuntimeHandle:
    session_id: str
    context: BrowserContext
    page: Page
    entry_path: str
    opened_at: int = field(default_factory=now_ms)


def to_wire_string(value: Any) -> str:
    """Coerce an API value the way JavaScript's String() would."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _checked(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return to_wire_string(value).strip().lower() in ("true", "1", "on", "yes", "checked")


def parse_scenario_step(step: Any) -> tuple[str, list[str]]:
    """Turn `"setvalue cmi.location 3"` or `{"method": ..., "args": [...]}` into a call."""
    if isinstance(step, str):
        parts = step.strip().split(None, 2)
        verb = parts[0].lower() if parts else ""
        if verb in ("initialize", "terminate", "commit"):
            return verb.capitalize(), [""]
        if verb == "setvalue" and len(parts) >= 2:
            return "SetValue", [parts[1], parts[2] if len(parts) > 2 else ""]
        if verb == "getvalue" and len(parts) >= 2:
            return "GetValue", [parts[1]]
        raise InvalidParamsError(f"Unrecognized scenario step: {step!r}")
    if isinstance(step, dict) and isinstance(step.get("method"), str):
        return step["method"], [to_wire_string(a) for a in step.get("args") or []]
    raise InvalidParamsError(f"Unrecognized scenario step: {step!r}")


def _directory_listing(entry: Path) -> list[str]:
    try:
        return sorted(os.listdir(entry.parent))
    except OSError:
        return []


async def _block_remote(route: Route) -> None:
    await route.abort()


async def _close_popup(popup: Page) -> None:
    logger.debug("Closing popup %s", popup.url)
    await popup.close()


async def _handle_dialog(dialog: Dialog) -> None:
    # unload prompts never block navigation or close
    if dialog.type == "beforeunload":
        await dialog.accept()
    else:
        await dialog.dismiss()


class RuntimeManager:
    """Headless browser pages rendering course content, at most one per session."""

    def __init__(
        self,
        settings: Settings,
        sequencing: SequencingBridge | None = None,
        launcher: Launcher = launch_chromium,
    ):
        self.settings = settings
        self.sequencing = sequencing or SequencingBridge()
        self.default_viewport = Viewport(
            width=settings.default_viewport_width,
            height=settings.default_viewport_height,
        )
        self._launcher = launcher
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._browser_lock = anyio.Lock()
        self._handles: dict[str, RuntimeHandle] = {}
        self._session_locks: dict[str, anyio.Lock] = {}

    async def __aenter__(self) -> RuntimeManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def has_handle(self, session_id: str) -> bool:
        return session_id in self._handles

    # -- browser -----------------------------------------------------------------

    def _browser_ready(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def ensure_ready(self) -> Browser:
        if self._browser_ready():
            return self._browser  # type: ignore[return-value]
        async with self._browser_lock:
            if not self._browser_ready():
                self._playwright, self._browser = await self._launcher(self.settings)
                self._browser.on("disconnected", self._on_disconnected)
                logger.info("Browser launched (headless=%s)", self.settings.headless)
        return self._browser  # type: ignore[return-value]

    def _on_disconnected(self, browser: Browser) -> None:
        if browser is not self._browser:
            return
        logger.warning("Browser disconnected; dropping %d runtime handle(s)", len(self._handles))
        for session_id in list(self._handles):
            self.sequencing.discard(session_id)
        self._handles.clear()
        self._browser = None

    # -- pages -------------------------------------------------------------------

    async def open_page(
        self,
        entry_path: str,
        viewport: Any = None,
        adapter_options: dict[str, Any] | None = None,
        key: str | None = None,
    ) -> tuple[BrowserContext, Page]:
        """Open `entry_path` in a fresh, isolated context with the API bridge installed."""
        entry = Path(entry_path)
        if not entry.is_file():
            raise ScormMcpError(ErrorCode.CONTENT_FILE_MISSING, f"Entry file not found: {entry_path}")
        key = key or f"page-{secrets.token_hex(4)}"
        vp = resolve_viewport(viewport, self.default_viewport)

        browser = await self.ensure_ready()
        context = await browser.new_context(
            viewport={"width": vp.width, "height": vp.height},
            device_scale_factor=vp.scale,
            permissions=[],
            accept_downloads=False,
            service_workers="block",
        )
        try:
            if not self.settings.allow_network:
                await context.route(_REMOTE_URL, _block_remote)
            # bridge must exist before the first content script runs
            await context.add_init_script(script=scripts.options_script(adapter_options))
            await context.add_init_script(script=scripts.BRIDGE_SCRIPT)
            await context.expose_binding(scripts.SN_BINDING, partial(self._sn_binding, key))

            page = await context.new_page()
            self._watch_page(page, key)
            await self._load(page, entry)
        except BaseException:
            self.sequencing.discard(key)
            with anyio.CancelScope(shield=True):
                await self._close_context(context)
            raise
        return context, page

    def _sn_binding(self, key: str, source: Any, action: str, payload: dict[str, Any] | None = None) -> Any:
        return self.sequencing.handle(key, action, payload)

    def _watch_page(self, page: Page, key: str) -> None:
        page.on("popup", _close_popup)
        page.on("dialog", _handle_dialog)
        page.on("console", partial(self._log_console, key))
        page.on("pageerror", lambda exc: logger.warning("[%s] page error: %s", key, exc))
        page.on("crash", lambda _: logger.error("[%s] page crashed", key))

    @staticmethod
    def _log_console(key: str, message: ConsoleMessage) -> None:
        if message.type == "error":
            logger.warning("[%s] console: %s", key, message.text)
        elif message.type == "warning":
            logger.info("[%s] console: %s", key, message.text)
        else:
            logger.debug("[%s] console: %s", key, message.text)

    async def _load(self, page: Page, entry: Path) -> None:
        url = entry.resolve().as_uri()
        try:
            await page.goto(url, wait_until="load")
            return
        except PlaywrightError as e:
            failure = e.message

        if "ERR_ABORTED" in failure:
            # content that redirects during load aborts the first navigation
            try:
                await page.wait_for_load_state("load", timeout=self.settings.redirect_settle_timeout * 1000)
            except PlaywrightError:
                pass
            else:
                if page.url and page.url != "about:blank":
                    logger.debug("Navigation to %s settled at %s", url, page.url)
                    return

        raise ScormMcpError(
            ErrorCode.PAGE_LOAD_FAILED,
            f"Failed to load {url}: {failure}",
            {"url": url, "directory_listing": _directory_listing(entry)},
        )

    @staticmethod
    async def _close_context(context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.debug("Context already gone: %s", e)

    # -- persistent runtimes -----------------------------------------------------

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._session_locks.setdefault(session_id, anyio.Lock())
        try:
            async with lock:
                yield
        finally:
            if (
                not lock.locked()
                and lock.statistics().tasks_waiting == 0
                and self._session_locks.get(session_id) is lock
            ):
                del self._session_locks[session_id]

    async def open_persistent(
        self,
        session_id: str,
        entry_path: str,
        viewport: Any = None,
        adapter_options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        async with self._session_lock(session_id):
            await self._destroy(session_id)
            context, page = await self.open_page(entry_path, viewport, adapter_options, key=session_id)
            handle = RuntimeHandle(session_id=session_id, context=context, page=page, entry_path=str(entry_path))
            self._handles[session_id] = handle
            page.on("close", lambda _: self._forget(handle))
            logger.info("Runtime opened for session %s", session_id)
            return {"session_id": session_id, "url": page.url, "entry_path": str(entry_path)}

    def _forget(self, handle: RuntimeHandle) -> None:
        # a replaced handle's late close event must not drop its successor
        if self._handles.get(handle.session_id) is handle:
            del self._handles[handle.session_id]
            self.sequencing.discard(handle.session_id)
            logger.debug("Runtime page for session %s closed", handle.session_id)

    async def _destroy(self, session_id: str) -> bool:
        handle = self._handles.pop(session_id, None)
        if handle is None:
            return False
        self.sequencing.discard(session_id)
        await self._close_context(handle.context)
        return True

    async def close_persistent(self, session_id: str) -> bool:
        async with self._session_lock(session_id):
            return await self._destroy(session_id)

    def _require(self, session_id: str) -> RuntimeHandle:
        handle = self._handles.get(session_id)
        if handle is None:
            raise RuntimeNotOpenError(session_id)
        if handle.page.is_closed():
            self._forget(handle)
            raise RuntimeNotOpenError(session_id)
        return handle

    # -- API ---------------------------------------------------------------------

    async def invoke_api(self, page: Page, method: str, args: list[Any] | None = None) -> str:
        try:
            present = await page.evaluate(scripts.HAS_API_METHOD, method)
        except PlaywrightError as e:
            raise ScormMcpError(ErrorCode.SCORM_API_ERROR, f"API lookup failed: {e.message}") from e
        if not present:
            raise ScormMcpError(
                ErrorCode.INVALID_SCORM_METHOD,
                f"Unknown SCORM API method: {method}",
                {"method": method},
            )
        wire_args = [to_wire_string(a) for a in args or []]
        try:
            value = await page.evaluate(scripts.CALL_API_METHOD, [method, wire_args])
        except PlaywrightError as e:
            raise ScormMcpError(
                ErrorCode.SCORM_API_ERROR,
                f"{method} failed: {e.message}",
                {"method": method, "args": wire_args},
            ) from e
        return to_wire_string(value)

    async def call_api(self, session_id: str, method: str, args: list[Any] | None = None) -> str:
        handle = self._require(session_id)
        return await self.invoke_api(handle.page, method, args)

    async def run_scenario(self, page: Page, steps: list[Any]) -> list[dict[str, Any]]:
        """Run scenario steps strictly one after another; a failed step does not stop the run."""
        results: list[dict[str, Any]] = []
        for step in steps:
            method, args = parse_scenario_step(step)
            record: dict[str, Any] = {"method": method, "args": args}
            try:
                record["result"] = await self.invoke_api(page, method, args)
            except ScormMcpError as e:
                record["error"] = e.error.wire()
            results.append(record)
        return results

    @staticmethod
    async def _read_calls(page: Page) -> list[dict[str, Any]]:
        try:
            calls = await page.evaluate(scripts.GET_CALLS)
        except PlaywrightError as e:
            logger.debug("Could not read captured calls: %s", e)
            return []
        return calls if isinstance(calls, list) else []

    async def get_captured_calls(self, session_id: str) -> list[dict[str, Any]]:
        handle = self._require(session_id)
        return await self._read_calls(handle.page)

    async def get_status(self, session_id: str) -> dict[str, Any]:
        handle = self._handles.get(session_id)
        if handle is None or handle.page.is_closed():
            return RuntimeStatus().model_dump()
        calls = await self._read_calls(handle.page)
        last = calls[-1] if calls else {}
        return RuntimeStatus(
            open=True,
            url=handle.page.url,
            initialize_state=initialize_state_from_calls(calls),
            last_api_method=last.get("method"),
            last_api_ts=last.get("ts"),
        ).model_dump()

    # -- capture / script --------------------------------------------------------

    async def _screenshot(
        self,
        page: Page,
        compress: bool,
        wait_for_selector: str | None,
        wait_timeout_ms: int,
        delay_ms: int,
    ) -> bytes:
        if wait_for_selector:
            try:
                await page.wait_for_selector(wait_for_selector, timeout=wait_timeout_ms)
            except PlaywrightTimeoutError:
                logger.debug("Selector %s not found within %sms", wait_for_selector, wait_timeout_ms)
        if delay_ms > 0:
            await anyio.sleep(delay_ms / 1000)
        try:
            if compress:
                return await page.screenshot(type="jpeg", quality=70)
            return await page.screenshot(type="png")
        except PlaywrightError as e:
            raise ScormMcpError(ErrorCode.CAPTURE_FAILED, f"Capture failed: {e.message}") from e

    async def capture(
        self,
        session_id: str,
        compress: bool = True,
        wait_for_selector: str | None = None,
        wait_timeout_ms: int = 5000,
        delay_ms: int = 0,
    ) -> bytes:
        handle = self._require(session_id)
        return await self._screenshot(handle.page, compress, wait_for_selector, wait_timeout_ms, delay_ms)

    async def execute_js(self, session_id: str, script: str) -> Any:
        handle = self._require(session_id)
        try:
            outcome = await handle.page.evaluate(scripts.EXECUTE_SCRIPT, script)
        except PlaywrightError as e:
            raise ScormMcpError(ErrorCode.SCRIPT_EXECUTION_ERROR, e.message) from e
        if not outcome or not outcome.get("success"):
            details = (outcome or {}).get("error") or {}
            raise ScormMcpError(
                ErrorCode.SCRIPT_EXECUTION_ERROR,
                details.get("message") or "Script execution failed",
                details,
            )
        return outcome.get("result")

    async def sn_invoke(self, session_id: str, method: str, payload: dict[str, Any] | None = None) -> Any:
        handle = self._require(session_id)
        try:
            return await handle.page.evaluate(scripts.SN_INVOKE, [method, payload or {}])
        except PlaywrightError as e:
            logger.debug("snInvoke %s failed: %s", method, e)
            return None

    # -- DOM interaction ---------------------------------------------------------

    async def _element(
        self,
        session_id: str,
        selector: str,
        code: ErrorCode,
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> Locator:
        handle = self._require(session_id)
        locator = handle.page.locator(selector).first
        try:
            if wait_for_selector:
                await locator.wait_for(state="attached", timeout=wait_timeout_ms)
                return locator
            if await locator.count():
                return locator
        except PlaywrightError as e:
            raise ScormMcpError(code, f"Element not found: {selector} ({e.message})", {"selector": selector}) from e
        raise ScormMcpError(code, f"Element not found: {selector}", {"selector": selector})

    async def dom_click(
        self,
        session_id: str,
        selector: str,
        click_type: str = "single",
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> dict[str, Any]:
        locator = await self._element(session_id, selector, ErrorCode.DOM_CLICK_FAILED, wait_for_selector, wait_timeout_ms)
        try:
            element = await locator.evaluate(scripts.DESCRIBE_ELEMENT)
            if click_type == "double":
                await locator.dblclick(timeout=wait_timeout_ms)
            elif click_type == "right":
                await locator.click(button="right", timeout=wait_timeout_ms)
            else:
                await locator.click(timeout=wait_timeout_ms)
        except PlaywrightError as e:
            raise ScormMcpError(
                ErrorCode.DOM_CLICK_FAILED,
                f"Click on {selector} failed: {e.message}",
                {"selector": selector},
            ) from e
        return {"success": True, "click_type": click_type, "element": element}

    async def dom_fill(
        self,
        session_id: str,
        selector: str,
        value: Any,
        wait_for_selector: bool = True,
        wait_timeout_ms: int = 5000,
    ) -> dict[str, Any]:
        """Fill text fields, pick select options and tick checkboxes or radios alike."""
        locator = await self._element(session_id, selector, ErrorCode.DOM_FILL_FAILED, wait_for_selector, wait_timeout_ms)
        try:
            kind = await locator.evaluate(scripts.ELEMENT_KIND)
            match kind:
                case "select":
                    await locator.select_option(to_wire_string(value), timeout=wait_timeout_ms)
                case "checkbox" | "radio":
                    await locator.set_checked(_checked(value), timeout=wait_timeout_ms)
                case "text" | "textarea":
                    await locator.fill(to_wire_string(value), timeout=wait_timeout_ms)
                case _:
                    raise ScormMcpError(
                        ErrorCode.DOM_FILL_FAILED,
                        f"Cannot fill a <{kind}> element: {selector}",
                        {"selector": selector},
                    )
            element = await locator.evaluate(scripts.DESCRIBE_ELEMENT)
        except PlaywrightError as e:
            raise ScormMcpError(
                ErrorCode.DOM_FILL_FAILED,
                f"Fill of {selector} failed: {e.message}",
                {"selector": selector},
            ) from e
        return {"success": True, "element": element}

    async def dom_query(self, session_id: str, selector: str, query_type: str = "all") -> dict[str, Any]:
        handle = self._require(session_id)
        try:
            return await handle.page.evaluate(scripts.QUERY_ELEMENT, [selector, query_type])
        except PlaywrightError as e:
            raise ScormMcpError(
                ErrorCode.DOM_QUERY_FAILED,
                f"Query of {selector} failed: {e.message}",
                {"selector": selector},
            ) from e

    async def dom_wait_for(self, session_id: str, condition: dict[str, Any], timeout_ms: int = 10000) -> dict[str, Any]:
        handle = self._require(session_id)
        started = anyio.current_time()
        try:
            await handle.page.wait_for_function(scripts.WAIT_CONDITION, arg=condition, timeout=timeout_ms, polling=100)
        except PlaywrightError as e:
            raise ScormMcpError(
                ErrorCode.DOM_WAIT_FAILED,
                f"Condition not met within {timeout_ms}ms: {e.message}",
                {"condition": condition, "timeout_ms": timeout_ms},
            ) from e
        return {"success": True, "elapsed_ms": int((anyio.current_time() - started) * 1000)}

    async def keyboard_type(
        self,
        session_id: str,
        text: str,
        selector: str | None = None,
        delay_ms: int = 0,
    ) -> dict[str, Any]:
        handle = self._require(session_id)
        locator = await self._element(session_id, selector, ErrorCode.KEYBOARD_TYPE_FAILED) if selector else None
        try:
            if locator is not None:
                await locator.focus()
            elif await handle.page.evaluate(scripts.DESCRIBE_ACTIVE_ELEMENT) is None:
                raise ScormMcpError(
                    ErrorCode.KEYBOARD_TYPE_FAILED,
                    "No element has focus; pass a selector to type into",
                )
            await handle.page.keyboard.type(text, delay=delay_ms)
            element = await handle.page.evaluate(scripts.DESCRIBE_ACTIVE_ELEMENT)
        except PlaywrightError as e:
            raise ScormMcpError(ErrorCode.KEYBOARD_TYPE_FAILED, f"Typing failed: {e.message}") from e
        return {"success": True, "characters_typed": len(text), "element": element}

    async def find_interactive_elements(self, session_id: str) -> dict[str, Any]:
        handle = self._require(session_id)
        try:
            found = await handle.page.evaluate(scripts.FIND_INTERACTIVE)
        except PlaywrightError as e:
            raise ScormMcpError(ErrorCode.DOM_QUERY_FAILED, f"Element discovery failed: {e.message}") from e
        found["counts"] = {key: len(found.get(key) or []) for key in ("forms", "buttons", "inputs", "assessments")}
        return found

    # -- one-shot pages ----------------------------------------------------------

    async def test_api_integration(
        self,
        entry_path: str,
        viewport: Any = None,
        scenario: list[Any] | None = None,
        capture_api_calls: bool = True,
    ) -> dict[str, Any]:
        key = f"oneshot-{secrets.token_hex(4)}"
        context, page = await self.open_page(entry_path, viewport, key=key)
        try:
            api_available = bool(await page.evaluate(scripts.HAS_API_METHOD, "Initialize"))
            steps = await self.run_scenario(page, scenario or [])
            calls = await self._read_calls(page)
            result: dict[str, Any] = {
                "api_available": api_available,
                "steps": steps,
                "initialize_state": initialize_state_from_calls(calls),
            }
            if capture_api_calls:
                result["api_calls"] = calls
            return result
        finally:
            self.sequencing.discard(key)
            with anyio.CancelScope(shield=True):
                await self._close_context(context)

    async def screenshot_page(
        self,
        entry_path: str,
        viewport: Any = None,
        compress: bool = True,
        wait_for_selector: str | None = None,
        wait_timeout_ms: int = 5000,
        delay_ms: int = 0,
    ) -> bytes:
        key = f"oneshot-{secrets.token_hex(4)}"
        context, page = await self.open_page(entry_path, viewport, key=key)
        try:
            return await self._screenshot(page, compress, wait_for_selector, wait_timeout_ms, delay_ms)
        finally:
            self.sequencing.discard(key)
            with anyio.CancelScope(shield=True):
                await self._close_context(context)

    # -- teardown ----------------------------------------------------------------

    async def close_all(self) -> int:
        closed = 0
        for session_id in list(self._handles):
            if await self.close_persistent(session_id):
                closed += 1
        return closed

    async def shutdown(self) -> None:
        closed = await self.close_all()
        if closed:
            logger.info("Closed %d runtime(s) on shutdown", closed)
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug("Browser close failed: %s", e)
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            await playwright.stop()
