# examples/smoke_course.py
"""
Drive a SCORM package through the server over stdio.

    python examples/smoke_course.py path/to/package [--inprocess]

Opens the course, initializes the attempt, records a score, captures a
screenshot and closes the course, printing each tool result.
"""
from __future__ import annotations

import argparse
import itertools
import json
import subprocess
import sys
from typing import Any

import anyio
from anyio.abc import Process
from anyio.streams.text import TextReceiveStream


# ---------------------------
# Minimal line client
# ---------------------------

class LineClient:
    def __init__(self, process: Process):
        self.process = process
        self._ids = itertools.count(1)
        self._buffer = ""
        assert process.stdout is not None
        self._stdout = TextReceiveStream(process.stdout)

    async def _read_line(self) -> str:
        while "\n" not in self._buffer:
            self._buffer += await self._stdout.receive()
        line, self._buffer = self._buffer.split("\n", 1)
        return line

    async def request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        request_id = next(self._ids)
        message = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        assert self.process.stdin is not None
        await self.process.stdin.send((json.dumps(message) + "\n").encode("utf-8"))
        while True:
            response = json.loads(await self._read_line())
            if response.get("id") == request_id:
                return response

    async def tool(self, name: str, **arguments: Any) -> dict[str, Any]:
        response = await self.request("tools/call", {"name": name, "arguments": arguments})
        result = response["result"]
        payload = result["structuredContent"]
        status = "ERROR" if result.get("isError") else "ok"
        print(f"{name:<28} {status:<5} {json.dumps(payload)[:160]}")
        return payload


# ---------------------------
# Scenario
# ---------------------------

async def run(package_path: str, topology: str) -> None:
    command = [sys.executable, "-m", "scorm_mcp", "--topology", topology]
    async with await anyio.open_process(command, stdin=subprocess.PIPE, stdout=subprocess.PIPE) as process:
        client = LineClient(process)
        await client.request("initialize", {"protocolVersion": "2025-06-18"})

        opened = await client.tool("scorm_open_course", package_path=package_path)
        if "session_id" not in opened:
            return
        session_id = opened["session_id"]

        await client.tool("scorm_attempt_initialize", session_id=session_id)
        await client.tool("scorm_api_call", session_id=session_id, method="SetValue", args=["cmi.score.raw", 85])
        await client.tool("scorm_api_call", session_id=session_id, method="GetValue", args=["cmi.score.raw"])
        await client.tool("scorm_capture_screenshot", session_id=session_id)
        await client.tool("scorm_runtime_status", session_id=session_id)
        await client.tool("scorm_close_course", session_id=session_id)

        assert process.stdin is not None
        await process.stdin.aclose()
        await process.wait()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("package_path")
    parser.add_argument("--inprocess", action="store_true")
    cli_args = parser.parse_args()
    anyio.run(run, cli_args.package_path, "inprocess" if cli_args.inprocess else "split")
