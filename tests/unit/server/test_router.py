# tests/unit/server/test_router.py
import logging

import pytest
from pydantic import BaseModel, Field

from scorm_mcp.errors import ErrorCode, ScormMcpError
from scorm_mcp.server.router import ToolRouter


class GreetInput(BaseModel):
    name: str = Field(min_length=1)
    excited: bool = False


def test_register_rejects_empty_name_and_non_callable():
    """Registration fails fast on an empty name or a handler that cannot be called."""
    router = ToolRouter()

    with pytest.raises(ValueError):
        router.register("", lambda params: params)

    with pytest.raises(TypeError):
        router.register("scorm_bad", "not-a-function")  # type: ignore[arg-type]

    assert router.list_descriptors() == []


def test_duplicate_registration_keeps_first(caplog):
    """A second registration under the same name is ignored with a warning."""
    router = ToolRouter()

    async def first(params):
        return "first"

    async def second(params):
        return "second"

    router.register("scorm_dup", first)
    router.register("scorm_dup", second)

    assert router.get("scorm_dup").handler is first
    assert any(
        r.levelno == logging.WARNING and "scorm_dup" in r.getMessage() for r in caplog.records
    )


@pytest.mark.anyio
async def test_dispatch_unknown_tool():
    router = ToolRouter()

    with pytest.raises(ScormMcpError) as exc_info:
        await router.dispatch("scorm_nope", {})

    assert exc_info.value.code is ErrorCode.MCP_UNKNOWN_TOOL


@pytest.mark.anyio
async def test_decorator_validates_and_passes_model():
    """
    The decorator publishes the model's JSON schema, validates arguments
    against it, and hands the handler a parsed model instance.
    """
    router = ToolRouter()

    @router.tool("scorm_greet", description="Say hello", input_model=GreetInput)
    async def greet(args: GreetInput) -> dict:
        return {"greeting": f"hello {args.name}{'!' if args.excited else ''}"}

    # 1. Descriptor carries the schema
    (descriptor,) = router.list_descriptors()
    assert descriptor.name == "scorm_greet"
    assert descriptor.description == "Say hello"
    assert "name" in descriptor.inputSchema["properties"]
    assert descriptor.inputSchema["required"] == ["name"]

    # 2. Valid call
    result = await router.dispatch("scorm_greet", {"name": "ada", "excited": True})
    assert result == {"greeting": "hello ada!"}

    # 3. Schema violation maps to invalid params
    with pytest.raises(ScormMcpError) as exc_info:
        await router.dispatch("scorm_greet", {"excited": True})
    assert exc_info.value.code is ErrorCode.MCP_INVALID_PARAMS


@pytest.mark.anyio
async def test_dispatch_supports_plain_handlers_and_missing_params():
    router = ToolRouter()
    router.register("scorm_sync", lambda params: {"got": params})

    assert router.has("scorm_sync")
    assert await router.dispatch("scorm_sync", None) == {"got": {}}
