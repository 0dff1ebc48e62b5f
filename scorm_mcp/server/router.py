# scorm_mcp/server/router.py
from __future__ import annotations as _annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import jsonschema
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import BaseModel

import scorm_mcp.types as types
from scorm_mcp.errors import ErrorCode, ScormMcpError

logger = get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]
ModelT = TypeVar("ModelT", bound=BaseModel)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class RegisteredTool:
    name: str
    handler: ToolHandler
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: dict(_EMPTY_SCHEMA))

    def descriptor(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


class ToolRouter:
    """Registry + dispatch for tool handlers."""

    def __init__(self, warn_on_duplicate_tools: bool = True):
        self._tools: dict[str, RegisteredTool] = {}
        self.warn_on_duplicate_tools = warn_on_duplicate_tools

    def register(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> RegisteredTool:
        """Register a handler under `name`; the first registration of a name wins."""
        if not isinstance(name, str) or not name:
            raise ValueError("Tool name must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler for tool {name!r} must be callable")

        existing = self._tools.get(name)
        if existing:
            if self.warn_on_duplicate_tools:
                logger.warning("Tool already exists: %s", name)
            return existing

        tool = RegisteredTool(
            name=name,
            handler=handler,
            description=description,
            input_schema=input_schema or dict(_EMPTY_SCHEMA),
        )
        self._tools[name] = tool
        return tool

    def tool(
        self,
        name: str,
        *,
        description: str = "",
        input_model: type[ModelT] | None = None,
    ) -> Callable[[Callable[[ModelT], Awaitable[Any]]], Callable[[ModelT], Awaitable[Any]]]:
        """Decorator registering a handler that receives its validated input model.

        Example:
            @router.tool("scorm_echo", description="Echo back", input_model=EchoInput)
            async def echo(args: EchoInput) -> dict:
                return {"echo": args.message}
        """

        def decorator(fn: Callable[[ModelT], Awaitable[Any]]) -> Callable[[ModelT], Awaitable[Any]]:
            if input_model is None:

                async def handler(params: dict[str, Any]) -> Any:
                    return await fn(params)  # type: ignore[arg-type]

                schema = None
            else:

                async def handler(params: dict[str, Any]) -> Any:
                    return await fn(input_model.model_validate(params))

                schema = input_model.model_json_schema()

            self.register(name, handler, description=description or inspect.getdoc(fn) or "", input_schema=schema)
            return fn

        return decorator

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def list_descriptors(self) -> list[types.Tool]:
        return [t.descriptor() for t in self._tools.values()]

    async def dispatch(self, name: str, params: dict[str, Any] | None = None) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ScormMcpError(ErrorCode.MCP_UNKNOWN_TOOL, f"Unknown tool: {name}")

        arguments = params or {}
        try:
            jsonschema.validate(instance=arguments, schema=tool.input_schema)
        except jsonschema.ValidationError as e:
            raise ScormMcpError(ErrorCode.MCP_INVALID_PARAMS, f"Input validation error: {e.message}") from e

        result = tool.handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
