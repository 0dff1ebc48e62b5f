# scorm_mcp/bridge/process_bridge.py
"""
Lazily spawned engine process and request/response correlation over its channel.

Every request carries an id; the engine answers with the same id. A one-slot
memory stream per in-flight id receives the first matching response, and each
request gives up after `Settings.bridge_message_timeout`.
"""

from __future__ import annotations as _annotations

import itertools
import os
import re
import subprocess
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import anyio
from anyio.abc import ByteReceiveStream, Process, TaskGroup
from anyio.streams.memory import MemoryObjectSendStream
from anyio.streams.text import TextReceiveStream
from mcp.server.fastmcp.utilities.logging import get_logger

from scorm_mcp.errors import ErrorCode, ScormMcpError
from scorm_mcp.settings import Settings
from .channel import CHANNEL_FDS_ENV, JsonLineChannel, channel_from_fds
from .messages import READY, BridgeMessage, error_from_payload

logger = get_logger(__name__)

SETTINGS_ENV = "SCORM_MCP_ENGINE_SETTINGS"
ENGINE_MODULE = "scorm_mcp.engine"

_ERROR_LINE = re.compile(r"error", re.IGNORECASE)


class EngineProcess(Protocol):
    channel: JsonLineChannel
    output_streams: dict[str, ByteReceiveStream]

    async def wait(self) -> int | None: ...

    def kill(self) -> None: ...


class SubprocessEngine:
    def __init__(self, process: Process, channel: JsonLineChannel):
        self.process = process
        self.channel = channel
        self.output_streams: dict[str, ByteReceiveStream] = {}
        if process.stdout is not None:
            self.output_streams["stdout"] = process.stdout
        if process.stderr is not None:
            self.output_streams["stderr"] = process.stderr

    async def wait(self) -> int | None:
        return await self.process.wait()

    def kill(self) -> None:
        try:
            self.process.kill()
        except ProcessLookupError:
            pass


async def spawn_engine(settings: Settings) -> SubprocessEngine:
    """Start `python -m scorm_mcp.engine` with a dedicated pipe pair as its channel."""
    parent_read, child_write = os.pipe()
    child_read, parent_write = os.pipe()
    env = dict(os.environ)
    env[CHANNEL_FDS_ENV] = f"{child_read},{child_write}"
    env[SETTINGS_ENV] = settings.model_dump_json()
    try:
        process = await anyio.open_process(
            [sys.executable, "-m", ENGINE_MODULE],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            pass_fds=(child_read, child_write),
        )
    except BaseException:
        os.close(parent_read)
        os.close(parent_write)
        raise
    finally:
        os.close(child_read)
        os.close(child_write)
    return SubprocessEngine(process, channel_from_fds(parent_read, parent_write))


@dataclass(eq=False)
class _Engine:
    process: EngineProcess
    ready: anyio.Event = field(default_factory=anyio.Event)
    pending: dict[int | str, MemoryObjectSendStream[dict[str, Any]]] = field(default_factory=dict)
    exited: bool = False


class ProcessBridge:
    """Forwards runtime operations to a child engine process, starting it on first use."""

    def __init__(
        self,
        settings: Settings,
        spawn: Callable[[Settings], Awaitable[EngineProcess]] = spawn_engine,
    ):
        self.settings = settings
        self._spawn = spawn
        self._engine: _Engine | None = None
        self._spawn_lock = anyio.Lock()
        self._ids = itertools.count(1)
        self._task_group: TaskGroup | None = None

    async def __aenter__(self) -> ProcessBridge:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool | None:
        try:
            with anyio.CancelScope(shield=True):
                await self.shutdown()
        finally:
            assert self._task_group is not None
            self._task_group.cancel_scope.cancel()
            result = await self._task_group.__aexit__(exc_type, exc_val, exc_tb)
            self._task_group = None
        return result

    @property
    def is_running(self) -> bool:
        return self._engine is not None and not self._engine.exited

    # -- lifecycle ---------------------------------------------------------------

    async def ensure_engine(self) -> _Engine:
        async with self._spawn_lock:
            engine = self._engine
            if engine is not None and not engine.exited:
                return engine
            if self._task_group is None:
                raise RuntimeError("ProcessBridge must be entered before use")

            logger.info("Starting engine process")
            try:
                process = await self._spawn(self.settings)
            except OSError as e:
                raise ScormMcpError(ErrorCode.ENGINE_UNAVAILABLE, f"Could not start engine: {e}") from e

            engine = _Engine(process=process)
            self._engine = engine
            self._task_group.start_soon(self._read_loop, engine)
            for name, stream in process.output_streams.items():
                self._task_group.start_soon(self._drain_output, name, stream)

            try:
                with anyio.fail_after(self.settings.bridge_startup_timeout):
                    await engine.ready.wait()
            except TimeoutError:
                self._discard(engine)
                self._kill(engine)
                raise ScormMcpError(
                    ErrorCode.ENGINE_UNAVAILABLE,
                    f"Engine not ready after {self.settings.bridge_startup_timeout}s",
                ) from None
            if engine.exited:
                raise ScormMcpError(ErrorCode.ENGINE_UNAVAILABLE, "Engine exited during startup")
            logger.info("Engine process ready")
            return engine

    def _discard(self, engine: _Engine) -> None:
        if self._engine is engine:
            self._engine = None

    @staticmethod
    def _kill(engine: _Engine) -> None:
        engine.exited = True
        engine.process.kill()

    async def _read_loop(self, engine: _Engine) -> None:
        try:
            while True:
                try:
                    message = await engine.process.channel.receive()
                except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError):
                    break
                if message.get("type") == READY:
                    engine.ready.set()
                    continue
                slot = engine.pending.get(message.get("id"))
                if slot is None:
                    logger.debug("Dropping engine response with no waiter: %s", message.get("id"))
                    continue
                try:
                    slot.send_nowait(message)
                except (anyio.WouldBlock, anyio.BrokenResourceError, anyio.ClosedResourceError):
                    # first response for an id wins
                    logger.debug("Duplicate engine response for id %s", message.get("id"))
        finally:
            engine.exited = True
            engine.ready.set()
            self._discard(engine)
            with anyio.CancelScope(shield=True):
                await engine.process.channel.aclose()

        returncode = await engine.process.wait()
        logger.warning("Engine process exited with code %s", returncode)

    async def _drain_output(self, name: str, stream: ByteReceiveStream) -> None:
        buffered = ""
        try:
            async for chunk in TextReceiveStream(stream, errors="replace"):
                buffered += chunk
                *lines, buffered = buffered.split("\n")
                for line in lines:
                    self._log_engine_line(name, line)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
        if buffered:
            self._log_engine_line(name, buffered)

    @staticmethod
    def _log_engine_line(name: str, line: str) -> None:
        line = line.rstrip()
        if not line:
            return
        if _ERROR_LINE.search(line):
            logger.warning("[engine] %s", line)
        else:
            logger.debug("[engine:%s] %s", name, line)

    # -- messaging ---------------------------------------------------------------

    async def send_message(self, message: BridgeMessage) -> Any:
        engine = await self.ensure_engine()
        return await self._exchange(engine, message)

    async def request(self, type: str, payload: dict[str, Any] | None = None) -> Any:
        return await self.send_message(BridgeMessage(id=next(self._ids), type=type, payload=payload or {}))

    async def _exchange(self, engine: _Engine, message: BridgeMessage) -> Any:
        if message.id in engine.pending:
            raise ScormMcpError(ErrorCode.MCP_INVALID_PARAMS, f"Message id {message.id!r} is already in flight")

        send_stream, receive_stream = anyio.create_memory_object_stream(1)
        engine.pending[message.id] = send_stream
        timeout = self.settings.bridge_message_timeout
        try:
            with anyio.fail_after(timeout):
                await engine.process.channel.send(message.model_dump(mode="json"))
                response = await receive_stream.receive()
        except TimeoutError:
            raise ScormMcpError(
                ErrorCode.BRIDGE_TIMEOUT,
                f"Engine did not answer {message.type} within {timeout}s",
                {"id": message.id, "type": message.type},
            ) from None
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            raise ScormMcpError(ErrorCode.ENGINE_UNAVAILABLE, f"Engine channel unavailable: {e}") from e
        finally:
            engine.pending.pop(message.id, None)
            send_stream.close()
            receive_stream.close()

        if response.get("type") == "error":
            raise error_from_payload(response.get("payload"))
        return response.get("payload")

    async def shutdown(self) -> None:
        """Ask the engine to close its pages, give it a moment, then kill it."""
        engine = self._engine
        if engine is None or engine.exited:
            return
        try:
            with anyio.move_on_after(min(self.settings.bridge_message_timeout, 5.0)):
                await self._exchange(engine, BridgeMessage(id=next(self._ids), type="runtime_closeAll"))
        except Exception as e:
            logger.warning("Engine closeAll failed during shutdown: %s", e)
        await anyio.sleep(self.settings.bridge_shutdown_grace)
        self._discard(engine)
        self._kill(engine)
        logger.info("Engine process stopped")
