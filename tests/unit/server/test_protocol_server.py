# tests/unit/server/test_protocol_server.py
import json

import anyio
import pytest
from pydantic import BaseModel

import scorm_mcp.types as types
from scorm_mcp.errors import ErrorCode, ScormMcpError
from scorm_mcp.server.router import ToolRouter
from scorm_mcp.server.server import Server


class AddInput(BaseModel):
    a: int
    b: int


def make_server() -> Server:
    router = ToolRouter()

    @router.tool("scorm_add", description="Add two numbers", input_model=AddInput)
    async def add(args: AddInput) -> dict:
        return {"sum": args.a + args.b}

    async def boom(params):
        raise ScormMcpError(ErrorCode.RUNTIME_NOT_OPEN, "Runtime not open", {"session_id": "s1"})

    async def crash(params):
        raise RuntimeError("kaput")

    router.register("scorm_boom", boom)
    router.register("scorm_crash", crash)
    return Server("SCORM MCP", router, version="9.9.9", instructions="test")


def request(method: str, params: dict | None = None, id: int | str = 1) -> dict:
    message = {"jsonrpc": "2.0", "id": id, "method": method}
    if params is not None:
        message["params"] = params
    return message


@pytest.mark.anyio
async def test_initialize_negotiates_version():
    server = make_server()

    # 1. Supported version is echoed
    response = await server.handle_message(request("initialize", {"protocolVersion": "2025-06-18"}))
    assert response["id"] == 1
    assert response["result"]["protocolVersion"] == "2025-06-18"
    assert response["result"]["serverInfo"] == {"name": "SCORM MCP", "version": "9.9.9"}
    assert response["result"]["capabilities"]["tools"] == {"listChanged": True}

    # 2. Unknown or missing version falls back to the default
    response = await server.handle_message(request("initialize", {"protocolVersion": "1999-01-01"}))
    assert response["result"]["protocolVersion"] == types.DEFAULT_NEGOTIATED_VERSION
    response = await server.handle_message(request("initialize"))
    assert response["result"]["protocolVersion"] == types.DEFAULT_NEGOTIATED_VERSION


@pytest.mark.anyio
async def test_ping_and_tools_list():
    server = make_server()

    assert (await server.handle_message(request("ping")))["result"] == {}

    response = await server.handle_message(request("tools/list", id="abc"))
    assert response["id"] == "abc"
    names = [t["name"] for t in response["result"]["tools"]]
    assert names == ["scorm_add", "scorm_boom", "scorm_crash"]
    assert response["result"]["tools"][0]["inputSchema"]["required"] == ["a", "b"]


@pytest.mark.anyio
async def test_tools_call_success_and_failure_blocks():
    server = make_server()

    # 1. Success carries JSON text plus structured content
    response = await server.handle_message(
        request("tools/call", {"name": "scorm_add", "arguments": {"a": 2, "b": 3}})
    )
    result = response["result"]
    assert result["isError"] is False
    assert json.loads(result["content"][0]["text"]) == {"sum": 5}
    assert result["structuredContent"] == {"sum": 5}

    # 2. Domain failure becomes an isError block, not a JSON-RPC error
    response = await server.handle_message(request("tools/call", {"name": "scorm_boom"}))
    assert "error" not in response
    result = response["result"]
    assert result["isError"] is True
    assert result["structuredContent"] == {
        "error_code": "RUNTIME_NOT_OPEN",
        "message": "Runtime not open",
        "data": {"session_id": "s1"},
    }

    # 3. Unknown tool also stays inside the result
    response = await server.handle_message(request("tools/call", {"name": "scorm_missing"}))
    assert response["result"]["structuredContent"]["error_code"] == "MCP_UNKNOWN_TOOL"


@pytest.mark.anyio
async def test_tools_call_without_name_is_invalid_params():
    server = make_server()

    response = await server.handle_message(request("tools/call", {"arguments": {}}))
    assert response["error"]["code"] == types.INVALID_PARAMS


@pytest.mark.anyio
async def test_direct_method_fallback():
    """Registered tool names can be called directly as JSON-RPC methods."""
    server = make_server()

    # 1. Success wraps the value in `data`
    response = await server.handle_message(request("scorm_add", {"a": 1, "b": 1}))
    assert response["result"] == {"data": {"sum": 2}}

    # 2. Unknown method
    response = await server.handle_message(request("scorm_nothing"))
    assert response["error"]["code"] == types.METHOD_NOT_FOUND
    assert response["error"]["message"] == "Method not found: scorm_nothing"

    # 3. Invalid arguments
    response = await server.handle_message(request("scorm_add", {"a": "x"}))
    assert response["error"]["code"] == types.INVALID_PARAMS
    assert response["error"]["data"]["error_code"] == "MCP_INVALID_PARAMS"

    # 4. Domain error
    response = await server.handle_message(request("scorm_boom"))
    assert response["error"]["code"] == types.SERVER_ERROR
    assert response["error"]["data"]["error_code"] == "RUNTIME_NOT_OPEN"

    # 5. Unexpected exception
    response = await server.handle_message(request("scorm_crash"))
    assert response["error"]["code"] == types.SERVER_ERROR
    assert response["error"]["data"]["error_code"] == "UNKNOWN_ERROR"


@pytest.mark.anyio
async def test_notifications_get_no_response():
    server = make_server()

    assert await server.handle_message({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None
    assert await server.handle_message({"jsonrpc": "2.0", "method": "scorm_add", "params": {"a": 1, "b": 2}}) is None
    assert await server.handle_message({"jsonrpc": "2.0", "method": "no_such_method"}) is None


@pytest.mark.anyio
async def test_invalid_envelopes():
    server = make_server()

    response = await server.handle_message({"jsonrpc": "1.0", "id": 7, "method": "ping"})
    assert response["id"] == 7
    assert response["error"]["code"] == types.INVALID_REQUEST

    response = await server.handle_message({"jsonrpc": "2.0", "id": 8})
    assert response["error"]["code"] == types.INVALID_REQUEST

    response = await server.handle_message(["not", "an", "object"])
    assert response["id"] is None
    assert response["error"]["code"] == types.INVALID_REQUEST

    response = await server.handle_line("{not json")
    assert response == {"jsonrpc": "2.0", "id": None, "error": {"code": types.PARSE_ERROR, "message": "Parse error"}}


@pytest.mark.anyio
async def test_run_serves_lines_until_input_closes(memory_channel_pair):
    """
    Tests the full loop: a malformed line, a blank line, and a valid request
    produce exactly two responses, and run() returns once input closes.
    """
    (client_read, client_write), (server_read, server_write) = memory_channel_pair
    server = make_server()

    async with anyio.create_task_group() as tg:
        tg.start_soon(server.run, server_read, server_write)

        # 1. Feed the server
        await client_write.send("{broken")
        await client_write.send("   ")
        await client_write.send(json.dumps(request("scorm_add", {"a": 4, "b": 5}, id=2)))
        await client_write.aclose()

        # 2. Collect responses until the server closes its output
        with anyio.fail_after(5):
            responses = [json.loads(line) async for line in client_read]

    assert responses[0]["error"]["code"] == types.PARSE_ERROR
    assert responses[1] == {"jsonrpc": "2.0", "id": 2, "result": {"data": {"sum": 9}}}
    assert len(responses) == 2


@pytest.mark.anyio
async def test_run_survives_closed_output(memory_channel_pair):
    """A client that stops reading does not crash the server."""
    (client_read, client_write), (server_read, server_write) = memory_channel_pair
    server = make_server()
    await client_read.aclose()

    await client_write.send(json.dumps(request("ping")))
    await client_write.aclose()

    with anyio.fail_after(5):
        await server.run(server_read, server_write)


@pytest.mark.anyio
@pytest.mark.parametrize("bad_id", [1.5, True, {"x": 1}, [1], None])
async def test_unusable_request_id_answers_with_null_id(bad_id):
    server = make_server()

    response = await server.handle_message({"jsonrpc": "2.0", "id": bad_id, "method": "ping"})

    assert response["id"] is None
    assert response["error"]["code"] == types.INVALID_REQUEST

    # the envelope checks that run earlier also fall back to null
    response = await server.handle_message({"jsonrpc": "1.0", "id": bad_id, "method": "ping"})
    assert response["id"] is None


@pytest.mark.anyio
async def test_run_keeps_serving_after_unusable_id(memory_channel_pair):
    (client_read, client_write), (server_read, server_write) = memory_channel_pair
    server = make_server()

    async with anyio.create_task_group() as tg:
        tg.start_soon(server.run, server_read, server_write)

        await client_write.send(json.dumps({"jsonrpc": "2.0", "id": 1.5, "method": "ping"}))
        await client_write.send(json.dumps({"jsonrpc": "2.0", "id": {}, "method": "scorm_add"}))
        await client_write.send(json.dumps(request("ping", id=3)))
        await client_write.aclose()

        with anyio.fail_after(5):
            responses = [json.loads(line) async for line in client_read]

    assert len(responses) == 3
    errors = [r for r in responses if "error" in r]
    assert [r["id"] for r in errors] == [None, None]
    assert all(r["error"]["code"] == types.INVALID_REQUEST for r in errors)
    assert {"jsonrpc": "2.0", "id": 3, "result": {}} in responses
