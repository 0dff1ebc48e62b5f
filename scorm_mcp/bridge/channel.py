# scorm_mcp/bridge/channel.py
"""JSON-lines message channel over a pair of byte streams."""

from __future__ import annotations

import json
import os
from typing import Any

import anyio
from anyio.abc import ByteReceiveStream, ByteSendStream
from anyio.streams.buffered import BufferedByteReceiveStream
from anyio.streams.file import FileReadStream, FileWriteStream
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

MAX_MESSAGE_BYTES = 64 * 1024 * 1024

CHANNEL_FDS_ENV = "SCORM_MCP_ENGINE_FDS"
"""`<read_fd>,<write_fd>` as seen from the engine process."""


class JsonLineChannel:
    def __init__(self, receive_stream: ByteReceiveStream, send_stream: ByteSendStream):
        self._receive = BufferedByteReceiveStream(receive_stream)
        self._raw_receive = receive_stream
        self._send = send_stream
        self._send_lock = anyio.Lock()

    async def send(self, message: dict[str, Any]) -> None:
        data = (json.dumps(message) + "\n").encode("utf-8")
        async with self._send_lock:
            await self._send.send(data)

    async def receive(self) -> dict[str, Any]:
        """Next message; raises `anyio.EndOfStream` when the peer is gone."""
        while True:
            try:
                line = await self._receive.receive_until(b"\n", MAX_MESSAGE_BYTES)
            except anyio.IncompleteRead:
                raise anyio.EndOfStream from None
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except ValueError:
                logger.warning("Discarding malformed channel frame: %r", line[:200])
                continue
            if isinstance(message, dict):
                return message

    async def aclose(self) -> None:
        for stream in (self._send, self._raw_receive):
            try:
                await stream.aclose()
            except (OSError, anyio.BrokenResourceError, anyio.ClosedResourceError):
                pass


def channel_from_fds(read_fd: int, write_fd: int) -> JsonLineChannel:
    return JsonLineChannel(
        FileReadStream(os.fdopen(read_fd, "rb", buffering=0)),
        FileWriteStream(os.fdopen(write_fd, "wb", buffering=0)),
    )
