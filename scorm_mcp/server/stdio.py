# scorm_mcp/server/stdio.py
"""
Stdio transport: one JSON document per line in each direction.

Example usage:
```
    async def run_server():
        async with stdio_server() as (read_stream, write_stream):
            # read_stream yields raw lines, write_stream accepts serialized messages
            await server.run(read_stream, write_stream)

    anyio.run(run_server)
```
"""

import sys
from contextlib import asynccontextmanager
from io import TextIOWrapper

import anyio
import anyio.lowlevel
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def stdio_server(
    stdin: anyio.AsyncFile[str] | None = None,
    stdout: anyio.AsyncFile[str] | None = None,
):
    """
    Server transport for stdio: reads lines from the current process' stdin and
    writes lines to stdout. stdout carries protocol frames only; logs go to stderr.
    """
    if not stdin:
        stdin = anyio.wrap_file(TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace"))
    if not stdout:
        stdout = anyio.wrap_file(TextIOWrapper(sys.stdout.buffer, encoding="utf-8"))

    read_stream_writer: MemoryObjectSendStream[str]
    read_stream: MemoryObjectReceiveStream[str]
    write_stream: MemoryObjectSendStream[str]
    write_stream_reader: MemoryObjectReceiveStream[str]

    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream(0)

    async def stdin_reader():
        try:
            async with read_stream_writer:
                async for line in stdin:
                    await read_stream_writer.send(line)
        except anyio.ClosedResourceError:
            await anyio.lowlevel.checkpoint()
        logger.debug("stdin closed")

    async def stdout_writer():
        async with write_stream_reader:
            async for line in write_stream_reader:
                try:
                    await stdout.write(line + "\n")
                    await stdout.flush()
                except OSError as e:
                    logger.debug("stdout write failed: %s", e)

    async with anyio.create_task_group() as tg:
        tg.start_soon(stdin_reader)
        tg.start_soon(stdout_writer)
        yield read_stream, write_stream
