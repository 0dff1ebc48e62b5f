# scorm_mcp/tools/runtime.py
from __future__ import annotations as _annotations

import base64
from collections import Counter
from pathlib import Path
from typing import Any, Literal, TYPE_CHECKING

from pydantic import BaseModel, Field

from scorm_mcp.errors import ErrorCode, InvalidParamsError, ScormMcpError, UnknownSessionError
from scorm_mcp.runtime.manifest import iter_items, parse_manifest, resolve_entry_path
from scorm_mcp.runtime.sequencing import LinearSequencingEngine
from scorm_mcp.sessions.types import now_ms
from scorm_mcp.server.router import ToolRouter
from .session import SessionIdInput, ViewportArg

if TYPE_CHECKING:
    from scorm_mcp.orchestrator import Orchestrator


class CaptureOptions(BaseModel):
    delay_ms: int = Field(default=0, ge=0)
    wait_for_selector: str | None = None
    wait_timeout_ms: int = Field(default=5000, ge=0)


class RuntimeOpenInput(SessionIdInput):
    viewport: ViewportArg = None
    adapter_options: dict[str, Any] | None = None


class ApiCallInput(SessionIdInput):
    method: str = Field(min_length=1)
    args: list[Any] = Field(default_factory=list)


class ApiCallsInput(SessionIdInput):
    method_filter: str | None = None
    limit: int | None = Field(default=None, ge=1)


class CaptureScreenshotInput(SessionIdInput):
    compress: bool = True
    capture_options: CaptureOptions | None = None


class PackageInput(BaseModel):
    workspace_path: str = Field(min_length=1, description="Unpacked package directory")
    viewport: ViewportArg = None
    session_id: str | None = None


class TakeScreenshotInput(PackageInput):
    compress: bool = True
    capture_options: CaptureOptions | None = None


class ApiIntegrationInput(PackageInput):
    test_scenario: list[str | dict[str, Any]] | None = None
    capture_api_calls: bool = True


class NavChoiceInput(SessionIdInput):
    target_id: str = Field(min_length=1)


class DebugApiCallsInput(PackageInput):
    filter_methods: list[str] | None = None


class TraceSequencingInput(PackageInput):
    trace_level: Literal["basic", "detailed", "verbose"] = "basic"


class NavigationFlowInput(SessionIdInput):
    navigation_sequence: list[str] = Field(min_length=1, description="next, previous or choice:<activity id>")
    capture_each_step: bool = False


TRACE_LEVELS = {"basic": 1, "detailed": 2, "verbose": 3}

NAV_STEP_ALIASES = {
    "next": "continue",
    "continue": "continue",
    "previous": "previous",
    "prev": "previous",
    "back": "previous",
}


def _package_dir(workspace_path: str) -> Path:
    path = Path(workspace_path).expanduser()
    if not path.is_dir():
        raise ScormMcpError(ErrorCode.CONTENT_FILE_MISSING, f"Package directory not found: {workspace_path}")
    return path


def call_metrics(calls: list[dict[str, Any]]) -> dict[str, Any]:
    """Per-method counts and the time span covered by a list of captured calls."""
    by_method = Counter(c.get("method") for c in calls if c.get("method"))
    stamps = [c["ts"] for c in calls if isinstance(c.get("ts"), (int, float)) and not isinstance(c.get("ts"), bool)]
    first_ts = min(stamps) if stamps else None
    last_ts = max(stamps) if stamps else None
    return {
        "total_calls": len(calls),
        "by_method": dict(by_method),
        "methods": list(by_method),
        "first_ts": first_ts,
        "last_ts": last_ts,
        "duration_ms": (last_ts - first_ts) if stamps else 0,
    }


def parse_nav_step(step: str) -> tuple[str, str | None]:
    """`"next"` -> (continue, None); `"choice:sco-2"` -> (choice, "sco-2")."""
    kind, sep, target = step.strip().partition(":")
    kind = kind.strip().lower()
    target = target.strip()
    if kind == "choice" and target:
        return "choice", target
    if kind in NAV_STEP_ALIASES and not sep:
        return NAV_STEP_ALIASES[kind], None
    raise InvalidParamsError(f"Unrecognized navigation step: {step!r}")


def register(router: ToolRouter, app: Orchestrator) -> None:
    sessions = app.sessions

    async def api_call(session_id: str, method: str, args: list[Any]) -> dict[str, Any]:
        sessions.require_ready(session_id)
        result = await app.runtime.call_api(session_id, method, args)
        sessions.emit(session_id, "api:call", {"method": method, "args": args, "result": result})
        return {"method": method, "result": result}

    @router.tool(
        "scorm_runtime_open",
        description="Load the session's launch page into a persistent runtime (replaces any open one).",
        input_model=RuntimeOpenInput,
    )
    async def runtime_open(args: RuntimeOpenInput) -> dict[str, Any]:
        session = sessions.require_ready(args.session_id)
        entry = app.resolve_entry(args.session_id)
        sessions.emit(args.session_id, "runtime:persistent_open_start", {"entry_path": str(entry)})
        options = {"course_id": session.course_key, "force_new": session.new_attempt, **(args.adapter_options or {})}
        opened = await app.runtime.open_persistent(args.session_id, str(entry), args.viewport, options)
        if not sessions.is_ready(args.session_id):
            # the session started closing while the page loaded
            await app.runtime.close_persistent(args.session_id)
            raise UnknownSessionError(args.session_id)
        sessions.emit(args.session_id, "runtime:persistent_opened", {"url": opened.get("url")})
        return {"runtime_id": args.session_id, "entry_path": str(entry), "url": opened.get("url")}

    @router.tool("scorm_runtime_status", description="Whether a runtime is open and its attempt state.", input_model=SessionIdInput)
    async def runtime_status(args: SessionIdInput) -> dict[str, Any]:
        sessions.get(args.session_id)
        return await app.runtime.get_status(args.session_id)

    @router.tool("scorm_runtime_close", description="Close the session's persistent runtime.", input_model=SessionIdInput)
    async def runtime_close(args: SessionIdInput) -> dict[str, Any]:
        sessions.get(args.session_id)
        closed = await app.runtime.close_persistent(args.session_id)
        if closed:
            sessions.emit(args.session_id, "runtime:persistent_closed", {})
        return {"success": closed}

    @router.tool("scorm_attempt_initialize", description="Call API_1484_11.Initialize('').", input_model=SessionIdInput)
    async def attempt_initialize(args: SessionIdInput) -> dict[str, Any]:
        return await api_call(args.session_id, "Initialize", [""])

    @router.tool("scorm_attempt_terminate", description="Call API_1484_11.Terminate('').", input_model=SessionIdInput)
    async def attempt_terminate(args: SessionIdInput) -> dict[str, Any]:
        return await api_call(args.session_id, "Terminate", [""])

    @router.tool(
        "scorm_api_call",
        description="Call any API_1484_11 method (e.g. GetValue, SetValue, Commit) in the runtime.",
        input_model=ApiCallInput,
    )
    async def scorm_api_call(args: ApiCallInput) -> dict[str, Any]:
        return await api_call(args.session_id, args.method, args.args)

    @router.tool(
        "scorm_get_api_calls",
        description="API calls the content made in the persistent runtime, oldest first.",
        input_model=ApiCallsInput,
    )
    async def get_api_calls(args: ApiCallsInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        calls = await app.runtime.get_captured_calls(args.session_id)
        if args.method_filter:
            calls = [c for c in calls if c.get("method") == args.method_filter]
        total = len(calls)
        if args.limit is not None:
            calls = calls[-args.limit:]
        return {"calls": calls, "total": total}

    @router.tool(
        "scorm_capture_screenshot",
        description="Capture the persistent runtime; stored as a session artifact and in the course folder.",
        input_model=CaptureScreenshotInput,
    )
    async def capture_screenshot(args: CaptureScreenshotInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        opts = args.capture_options or CaptureOptions()
        sessions.emit(args.session_id, "screenshot:capture_start", {})
        data = await app.runtime.capture(
            args.session_id,
            compress=args.compress,
            wait_for_selector=opts.wait_for_selector,
            wait_timeout_ms=opts.wait_timeout_ms,
            delay_ms=opts.delay_ms,
        )
        fmt = "jpeg" if args.compress else "png"
        saved = sessions.save_capture(args.session_id, data, "jpg" if args.compress else "png")
        return {**saved, "format": fmt, "size_bytes": len(data)}

    @router.tool(
        "scorm_take_screenshot",
        description="Render a package's launch page in a throwaway page and capture it.",
        input_model=TakeScreenshotInput,
    )
    async def take_screenshot(args: TakeScreenshotInput) -> dict[str, Any]:
        if args.session_id:
            sessions.require_ready(args.session_id)
        entry = resolve_entry_path(_package_dir(args.workspace_path))
        opts = args.capture_options or CaptureOptions()
        data = await app.runtime.screenshot_page(
            str(entry),
            viewport=args.viewport,
            compress=args.compress,
            wait_for_selector=opts.wait_for_selector,
            wait_timeout_ms=opts.wait_timeout_ms,
            delay_ms=opts.delay_ms,
        )
        result: dict[str, Any] = {
            "format": "jpeg" if args.compress else "png",
            "size_bytes": len(data),
            "screenshot_data": base64.b64encode(data).decode("ascii"),
        }
        if args.session_id:
            result.update(sessions.save_capture(args.session_id, data, "jpg" if args.compress else "png"))
        return result

    @router.tool(
        "scorm_test_api_integration",
        description="Load a package in a throwaway page, run an API scenario and report the captured calls.",
        input_model=ApiIntegrationInput,
    )
    async def test_api_integration(args: ApiIntegrationInput) -> dict[str, Any]:
        if args.session_id:
            sessions.require_ready(args.session_id)
        package = _package_dir(args.workspace_path)
        manifest = parse_manifest(package / "imsmanifest.xml")
        entry = resolve_entry_path(package)
        if args.session_id:
            sessions.emit(args.session_id, "debug:api_check_start", {"entry_path": str(entry)})
        outcome = await app.runtime.test_api_integration(
            str(entry),
            viewport=args.viewport,
            scenario=args.test_scenario,
            capture_api_calls=args.capture_api_calls,
        )
        if args.session_id:
            sessions.emit(
                args.session_id,
                "debug:api_check_result",
                {"api_available": outcome.get("api_available"), "initialize_state": outcome.get("initialize_state")},
            )
        return {"manifest_ok": True, "scorm_version": manifest.schemaversion, **outcome}

    # -- sequencing & navigation -------------------------------------------------

    async def sn(session_id: str, action: str, payload: dict[str, Any] | None = None) -> dict[str, Any] | None:
        sessions.require_ready(session_id)
        result = await app.runtime.sn_invoke(session_id, action, payload)
        return result if isinstance(result, dict) else None

    async def init_sequencing(session_id: str) -> dict[str, Any]:
        sessions.require_ready(session_id)
        root = sessions.content_root(session_id)
        res = await sn(
            session_id,
            "init",
            {"manifestPath": str(root / "imsmanifest.xml"), "folderPath": str(root)},
        )
        if res is None:
            raise ScormMcpError(ErrorCode.SN_BRIDGE_UNAVAILABLE, "Sequencing bridge unavailable in runtime")
        if not res.get("success"):
            raise ScormMcpError(ErrorCode.SN_INIT_FAILED, res.get("message") or "Sequencing init failed", res)
        sessions.emit(session_id, "sn:initialized", {"activity_count": res.get("activity_count")})
        return res

    @router.tool(
        "scorm_sn_init",
        description="Initialize the sequencing engine from the session's manifest.",
        input_model=SessionIdInput,
    )
    async def sn_init(args: SessionIdInput) -> dict[str, Any]:
        return await init_sequencing(args.session_id)

    @router.tool("scorm_sn_reset", description="Reset the sequencing engine to its first activity.", input_model=SessionIdInput)
    async def sn_reset(args: SessionIdInput) -> dict[str, Any]:
        res = await sn(args.session_id, "reset")
        if res is None:
            raise ScormMcpError(ErrorCode.SN_BRIDGE_UNAVAILABLE, "Sequencing bridge unavailable in runtime")
        if not res.get("success"):
            raise ScormMcpError(ErrorCode.SN_RESET_FAILED, res.get("message") or "Sequencing reset failed", res)
        return {"success": True}

    @router.tool("scorm_nav_get_state", description="Current activity and available navigation.", input_model=SessionIdInput)
    async def nav_get_state(args: SessionIdInput) -> dict[str, Any]:
        res = await sn(args.session_id, "status")
        if res is None or not res.get("success"):
            reason = (res or {}).get("error") or ErrorCode.SN_BRIDGE_UNAVAILABLE.value
            return {
                "sn_available": False,
                "reason": reason,
                "message": "Sequencing engine not initialized; call scorm_sn_init first",
            }
        return {"sn_available": True, **res.get("status", {})}

    async def navigate(session_id: str, kind: Literal["continue", "previous", "choice"], target_id: str | None = None):
        res = await sn(session_id, "nav", {"navRequest": kind, "targetId": target_id})
        if res is None or res.get("error") == ErrorCode.SN_NOT_INITIALIZED.value:
            return {
                "success": False,
                "applicable": False,
                "reason": (res or {}).get("error") or ErrorCode.SN_BRIDGE_UNAVAILABLE.value,
            }
        if res.get("error") == ErrorCode.NAV_UNSUPPORTED_ACTION.value:
            raise ScormMcpError(ErrorCode.NAV_UNSUPPORTED_ACTION, f"Navigation request not supported: {kind}")
        nav = res.get("nav") or {}
        sessions.emit(session_id, f"nav:{kind}", {"success": nav.get("success"), "target_id": target_id})
        return {"applicable": True, **nav}

    @router.tool("scorm_nav_next", description="Request a 'continue' navigation.", input_model=SessionIdInput)
    async def nav_next(args: SessionIdInput) -> dict[str, Any]:
        return await navigate(args.session_id, "continue")

    @router.tool("scorm_nav_previous", description="Request a 'previous' navigation.", input_model=SessionIdInput)
    async def nav_previous(args: SessionIdInput) -> dict[str, Any]:
        return await navigate(args.session_id, "previous")

    @router.tool("scorm_nav_choice", description="Request a 'choice' navigation to an activity id.", input_model=NavChoiceInput)
    async def nav_choice(args: NavChoiceInput) -> dict[str, Any]:
        return await navigate(args.session_id, "choice", args.target_id)

    @router.tool(
        "scorm_test_navigation_flow",
        description="Run a sequence of navigation requests (next, previous, choice:<id>) and report each outcome.",
        input_model=NavigationFlowInput,
    )
    async def test_navigation_flow(args: NavigationFlowInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        steps = [parse_nav_step(step) for step in args.navigation_sequence]
        status = await sn(args.session_id, "status")
        if status is None:
            raise ScormMcpError(ErrorCode.SN_BRIDGE_UNAVAILABLE, "Sequencing bridge unavailable in runtime")
        if not status.get("success"):
            await init_sequencing(args.session_id)

        sessions.emit(args.session_id, "navigation:flow_start", {"steps": len(steps)})
        results: list[dict[str, Any]] = []
        artifacts: list[str] = []
        for index, (kind, target_id) in enumerate(steps, start=1):
            outcome = await navigate(args.session_id, kind, target_id)
            record = {"index": index, "request": kind, "target_id": target_id, **outcome}
            if args.capture_each_step:
                data = await app.runtime.capture(args.session_id)
                saved = sessions.save_capture(args.session_id, data)
                record["artifact_path"] = saved["artifact_path"]
                artifacts.append(saved["artifact_path"])
            results.append(record)

        final = await sn(args.session_id, "status") or {}
        sessions.emit(args.session_id, "navigation:flow_done", {"steps_executed": len(results)})
        return {
            "steps_executed": len(results),
            "steps": results,
            "artifacts": artifacts,
            "final_activity": (final.get("status") or {}).get("current_activity"),
        }

    # -- diagnostics -------------------------------------------------------------

    @router.tool(
        "scorm_debug_api_calls",
        description="Load a package in a throwaway page and summarize the API calls it makes on load.",
        input_model=DebugApiCallsInput,
    )
    async def debug_api_calls(args: DebugApiCallsInput) -> dict[str, Any]:
        if args.session_id:
            sessions.require_ready(args.session_id)
        entry = resolve_entry_path(_package_dir(args.workspace_path))
        if args.session_id:
            sessions.emit(args.session_id, "debug:api_session_start", {"entry_path": str(entry)})
        outcome = await app.runtime.test_api_integration(str(entry), viewport=args.viewport, capture_api_calls=True)
        calls = outcome.get("api_calls") or []
        if args.filter_methods:
            calls = [c for c in calls if c.get("method") in args.filter_methods]
        metrics = call_metrics(calls)
        if args.session_id:
            sessions.emit(args.session_id, "debug:api_session_done", {"total_calls": metrics["total_calls"]})
        return {
            "entry_path": str(entry),
            "api_available": outcome.get("api_available"),
            "initialize_state": outcome.get("initialize_state"),
            "calls": calls,
            "metrics": metrics,
        }

    @router.tool(
        "scorm_trace_sequencing",
        description="Step-by-step trace of how a package is resolved, sequenced and loaded.",
        input_model=TraceSequencingInput,
    )
    async def trace_sequencing(args: TraceSequencingInput) -> dict[str, Any]:
        if args.session_id:
            sessions.require_ready(args.session_id)
        package = _package_dir(args.workspace_path)
        level = TRACE_LEVELS[args.trace_level]
        trace: list[dict[str, Any]] = []

        def step(name: str, details: dict[str, Any] | None = None, required: str = "basic") -> None:
            if level < TRACE_LEVELS[required]:
                return
            record: dict[str, Any] = {"step": name, "time": now_ms(), "level": required}
            if details is not None:
                record["details"] = details
            trace.append(record)
            if args.session_id:
                sessions.emit(args.session_id, "trace:sequencing_step", {"step": name, "index": len(trace)})

        step("start", {"workspace_path": str(package), "trace_level": args.trace_level})
        manifest = parse_manifest(package / "imsmanifest.xml")
        entry = resolve_entry_path(package)
        step("manifest_resolved", {"entry_path": str(entry), "scorm_version": manifest.schemaversion}, "detailed")

        org = manifest.organization()
        items = list(iter_items(org.items)) if org else []
        step(
            "sn_summary",
            {"default_organization": org.identifier if org else None, "item_count": len(items)},
            "detailed",
        )
        step("sn_activity_titles", {"titles": [item.title or item.identifier for item in items[:10]]}, "verbose")

        engine = LinearSequencingEngine()
        step("sn_engine_initialized", engine.initialize(manifest, {"folder_path": str(package)}), "detailed")
        state = engine.get_sequencing_state()
        step("sn_engine_state", {"current_activity": state["current_activity"], "can_continue": state["can_continue"]})

        outcome = await app.runtime.test_api_integration(str(entry), viewport=args.viewport, capture_api_calls=True)
        step("page_opened", {"api_available": outcome.get("api_available")})
        step(
            "api_calls_on_load",
            {"count": len(outcome.get("api_calls") or []), "initialize_state": outcome.get("initialize_state")},
            "detailed",
        )
        return {"entry_path": str(entry), "trace_level": args.trace_level, "trace": trace}
