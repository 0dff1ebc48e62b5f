# tests/unit/bridge/test_process_bridge.py
"""
ProcessBridge against an in-memory engine.

`FakeEngine` answers through a responder callback instead of a real child
process, which lets each test decide whether the engine replies, errors,
replies twice, or never replies at all.
"""
import logging

import anyio
import pytest
from anyio import wait_all_tasks_blocked

from scorm_mcp.bridge import BridgedRuntime, ProcessBridge
from scorm_mcp.bridge.messages import READY, BridgeMessage, encode_bytes
from scorm_mcp.errors import ErrorCode, ScormMcpError


def echo_responder(message):
    return [{"id": message["id"], "type": "result", "payload": {"echo": message["type"], **message["payload"]}}]


class FakeChannel:
    def __init__(self, responder):
        self.responder = responder
        self.sent: list[dict] = []
        self.inbox_send, self.inbox = anyio.create_memory_object_stream(100)
        self.closed = False

    async def send(self, message):
        if self.closed:
            raise anyio.ClosedResourceError
        self.sent.append(message)
        for response in self.responder(message) or []:
            self.inbox_send.send_nowait(response)

    async def receive(self):
        return await self.inbox.receive()

    async def aclose(self):
        self.closed = True
        self.inbox_send.close()
        self.inbox.close()


class FakeEngine:
    def __init__(self, responder, announce_ready=True):
        self.channel = FakeChannel(responder)
        self.output_streams = {}
        self.killed = False
        self._exited = anyio.Event()
        if announce_ready:
            self.channel.inbox_send.send_nowait({"type": READY, "id": None, "payload": {}})

    async def wait(self):
        await self._exited.wait()
        return -9 if self.killed else 0

    def kill(self):
        self.killed = True
        self.channel.inbox_send.close()
        self._exited.set()


class Spawner:
    def __init__(self, responder=echo_responder, announce_ready=True):
        self.responder = responder
        self.announce_ready = announce_ready
        self.engines: list[FakeEngine] = []

    async def __call__(self, settings):
        engine = FakeEngine(self.responder, self.announce_ready)
        self.engines.append(engine)
        return engine


@pytest.mark.anyio
async def test_engine_spawns_lazily_and_is_reused(settings):
    spawner = Spawner()

    async with ProcessBridge(settings, spawn=spawner) as bridge:
        # 1. Nothing started until the first request
        assert not bridge.is_running
        assert spawner.engines == []

        # 2. Two requests share one engine and get distinct ids
        first = await bridge.request("runtime_getStatus", {"session_id": "s1"})
        second = await bridge.request("runtime_getStatus", {"session_id": "s2"})

        assert first == {"echo": "runtime_getStatus", "session_id": "s1"}
        assert second["session_id"] == "s2"
        assert len(spawner.engines) == 1
        ids = [m["id"] for m in spawner.engines[0].channel.sent]
        assert len(set(ids)) == 2


@pytest.mark.anyio
async def test_error_responses_are_normalized(settings):
    def responder(message):
        if message["type"] == "runtime_callAPI":
            return [{"id": message["id"], "type": "error", "payload": "engine says no"}]
        return [
            {
                "id": message["id"],
                "type": "error",
                "payload": {"message": "Runtime not open", "code": "RUNTIME_NOT_OPEN", "data": {"session_id": "s1"}},
            }
        ]

    async with ProcessBridge(settings, spawn=Spawner(responder)) as bridge:
        with pytest.raises(ScormMcpError) as exc_info:
            await bridge.request("runtime_callAPI", {})
        assert exc_info.value.code is ErrorCode.UNKNOWN_ERROR
        assert str(exc_info.value) == "engine says no"

        with pytest.raises(ScormMcpError) as exc_info:
            await bridge.request("runtime_capture", {})
        assert exc_info.value.code is ErrorCode.RUNTIME_NOT_OPEN
        assert exc_info.value.error.data == {"session_id": "s1"}


@pytest.mark.anyio
async def test_unanswered_request_times_out(settings):
    """A request never answered fails with BRIDGE_TIMEOUT no earlier than the configured timeout."""
    settings.bridge_message_timeout = 0.2

    def responder(message):
        if message["type"] == "runtime_closeAll":
            return echo_responder(message)
        return []

    async with ProcessBridge(settings, spawn=Spawner(responder)) as bridge:
        await bridge.ensure_engine()
        started = anyio.current_time()

        with pytest.raises(ScormMcpError) as exc_info:
            await bridge.request("runtime_callAPI", {"session_id": "s1"})

        assert anyio.current_time() - started >= 0.2
        assert exc_info.value.code is ErrorCode.BRIDGE_TIMEOUT
        assert exc_info.value.error.data["type"] == "runtime_callAPI"
        assert bridge._engine.pending == {}


@pytest.mark.anyio
async def test_duplicate_in_flight_id_is_rejected(settings):
    settings.bridge_message_timeout = 0.5
    outcomes = []

    def responder(message):
        if message["type"] == "runtime_closeAll":
            return echo_responder(message)
        return []

    async def first_call(bridge):
        try:
            await bridge.send_message(BridgeMessage(id="dup", type="runtime_callAPI"))
        except ScormMcpError as e:
            outcomes.append(e.code)

    async with ProcessBridge(settings, spawn=Spawner(responder)) as bridge:
        await bridge.ensure_engine()
        async with anyio.create_task_group() as tg:
            tg.start_soon(first_call, bridge)
            await wait_all_tasks_blocked()

            with pytest.raises(ScormMcpError) as exc_info:
                await bridge.send_message(BridgeMessage(id="dup", type="runtime_callAPI"))
            assert exc_info.value.code is ErrorCode.MCP_INVALID_PARAMS

    assert outcomes == [ErrorCode.BRIDGE_TIMEOUT]


@pytest.mark.anyio
async def test_first_response_wins(settings):
    def responder(message):
        return [
            {"id": message["id"], "type": "result", "payload": "first"},
            {"id": message["id"], "type": "result", "payload": "second"},
        ]

    async with ProcessBridge(settings, spawn=Spawner(responder)) as bridge:
        assert await bridge.request("runtime_getStatus") == "first"
        # the stray duplicate is dropped, later requests still correlate
        assert await bridge.request("runtime_getStatus") == "first"


@pytest.mark.anyio
async def test_startup_failures(settings):
    """A silent engine is killed after the startup timeout; a failed spawn is reported."""
    settings.bridge_startup_timeout = 0.2
    silent = Spawner(announce_ready=False)

    async with ProcessBridge(settings, spawn=silent) as bridge:
        with pytest.raises(ScormMcpError) as exc_info:
            await bridge.request("runtime_getStatus")
        assert exc_info.value.code is ErrorCode.ENGINE_UNAVAILABLE
        assert silent.engines[0].killed is True
        assert not bridge.is_running

    async def broken_spawn(_settings):
        raise OSError("no python here")

    async with ProcessBridge(settings, spawn=broken_spawn) as bridge:
        with pytest.raises(ScormMcpError) as exc_info:
            await bridge.request("runtime_getStatus")
        assert exc_info.value.code is ErrorCode.ENGINE_UNAVAILABLE


@pytest.mark.anyio
async def test_engine_respawns_after_exit(settings):
    spawner = Spawner()

    async with ProcessBridge(settings, spawn=spawner) as bridge:
        await bridge.request("runtime_getStatus")

        # 1. Engine dies on its own
        spawner.engines[0].kill()
        await wait_all_tasks_blocked()
        assert not bridge.is_running

        # 2. The next request starts a fresh one
        assert await bridge.request("runtime_getStatus", {"session_id": "s9"}) == {
            "echo": "runtime_getStatus",
            "session_id": "s9",
        }
        assert len(spawner.engines) == 2


@pytest.mark.anyio
async def test_shutdown_closes_pages_then_kills(settings):
    spawner = Spawner()

    async with ProcessBridge(settings, spawn=spawner) as bridge:
        await bridge.request("runtime_getStatus")

    engine = spawner.engines[0]
    assert engine.channel.sent[-1]["type"] == "runtime_closeAll"
    assert engine.killed is True


@pytest.mark.anyio
async def test_bridged_runtime_answers_locally_without_engine(settings):
    """Status and close never start an engine just to report that nothing is open."""
    spawner = Spawner()

    async with BridgedRuntime(ProcessBridge(settings, spawn=spawner)) as runtime:
        status = await runtime.get_status("s1")
        assert status["open"] is False
        assert status["initialize_state"] == "none"
        assert await runtime.close_persistent("s1") is False
        assert await runtime.close_all() == 0

    assert spawner.engines == []


@pytest.mark.anyio
async def test_bridged_runtime_forwards_and_decodes(settings):
    def responder(message):
        if message["type"] == "runtime_capture":
            return [{"id": message["id"], "type": "result", "payload": encode_bytes(b"\xff\xd8jpeg")}]
        if message["type"] == "runtime_callAPI":
            return [{"id": message["id"], "type": "result", "payload": "true"}]
        return echo_responder(message)

    spawner = Spawner(responder)
    async with BridgedRuntime(ProcessBridge(settings, spawn=spawner)) as runtime:
        assert await runtime.call_api("s1", "Initialize", [""]) == "true"
        assert await runtime.capture("s1") == b"\xff\xd8jpeg"

    sent = spawner.engines[0].channel.sent
    assert sent[0]["payload"] == {"session_id": "s1", "method": "Initialize", "args": [""]}
    assert sent[1]["payload"]["compress"] is True


@pytest.mark.parametrize("stream", ["stdout", "stderr"])
def test_engine_error_lines_are_warnings_on_both_streams(caplog, stream):
    caplog.set_level(logging.DEBUG, logger="scorm_mcp.bridge.process_bridge")
    ProcessBridge._log_engine_line(stream, "Error: boom\n")
    ProcessBridge._log_engine_line(stream, "page loaded")
    ProcessBridge._log_engine_line(stream, "   ")

    records = [(r.levelno, r.getMessage()) for r in caplog.records if r.name == "scorm_mcp.bridge.process_bridge"]
    assert records == [
        (logging.WARNING, "[engine] Error: boom"),
        (logging.DEBUG, f"[engine:{stream}] page loaded"),
    ]


@pytest.mark.anyio
async def test_bridged_runtime_forwards_dom_operations(settings):
    def responder(message):
        return [{"id": message["id"], "type": "result", "payload": {"success": True}}]

    spawner = Spawner(responder)
    async with BridgedRuntime(ProcessBridge(settings, spawn=spawner)) as runtime:
        await runtime.dom_click("s1", "#next", click_type="double")
        await runtime.keyboard_type("s1", "abc", selector="#answer", delay_ms=5)

    sent = spawner.engines[0].channel.sent
    assert [m["type"] for m in sent] == ["runtime_domClick", "runtime_keyboardType"]
    assert sent[0]["payload"] == {
        "session_id": "s1",
        "selector": "#next",
        "click_type": "double",
        "wait_for_selector": True,
        "wait_timeout_ms": 5000,
    }
    assert sent[1]["payload"] == {"session_id": "s1", "text": "abc", "selector": "#answer", "delay_ms": 5}
