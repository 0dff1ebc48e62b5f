# scorm_mcp/tools/dom.py
from __future__ import annotations as _annotations

from typing import Any, Literal, TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from scorm_mcp.errors import ScormMcpError
from scorm_mcp.server.router import ToolRouter
from .session import SessionIdInput

if TYPE_CHECKING:
    from scorm_mcp.orchestrator import Orchestrator

FieldValue = str | int | float | bool


class DomEvaluateInput(SessionIdInput):
    expression: str = Field(min_length=1)


class ClickOptions(BaseModel):
    click_type: Literal["single", "double", "right"] = "single"
    wait_for_selector: bool = True
    wait_timeout_ms: int = Field(default=5000, ge=0)


class DomClickInput(SessionIdInput):
    selector: str = Field(min_length=1, description="CSS selector of the element to click")
    options: ClickOptions | None = None


class FillOptions(BaseModel):
    wait_for_selector: bool = True
    wait_timeout_ms: int = Field(default=5000, ge=0)


class DomFillInput(SessionIdInput):
    selector: str = Field(min_length=1)
    value: FieldValue
    options: FillOptions | None = None


class DomQueryInput(SessionIdInput):
    selector: str = Field(min_length=1)
    query_type: Literal["all", "text", "attributes", "visibility", "styles", "value"] = "all"


class WaitCondition(BaseModel):
    selector: str | None = None
    visible: bool | None = None
    text: str | None = None
    attribute: str | None = None
    attribute_value: str | None = None
    expression: str | None = None

    @model_validator(mode="after")
    def _needs_target(self) -> WaitCondition:
        if not self.selector and not self.expression:
            raise ValueError("condition needs a selector or an expression")
        return self


class DomWaitForInput(SessionIdInput):
    condition: WaitCondition
    timeout_ms: int = Field(default=10000, ge=0)


class KeyboardOptions(BaseModel):
    selector: str | None = None
    delay_ms: int = Field(default=0, ge=0)


class KeyboardTypeInput(SessionIdInput):
    text: str
    options: KeyboardOptions | None = None


class FormField(BaseModel):
    selector: str = Field(min_length=1)
    value: FieldValue
    options: FillOptions | None = None


class FillFormBatchInput(SessionIdInput):
    fields: list[FormField] = Field(min_length=1)


def register(router: ToolRouter, app: Orchestrator) -> None:
    sessions = app.sessions

    async def fill(session_id: str, selector: str, value: FieldValue, options: FillOptions | None) -> dict[str, Any]:
        opts = options or FillOptions()
        return await app.runtime.dom_fill(
            session_id,
            selector,
            value,
            wait_for_selector=opts.wait_for_selector,
            wait_timeout_ms=opts.wait_timeout_ms,
        )

    @router.tool(
        "scorm_dom_evaluate",
        description="Evaluate a JavaScript expression in the content page and return its value.",
        input_model=DomEvaluateInput,
    )
    async def dom_evaluate(args: DomEvaluateInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        return {"result": await app.runtime.execute_js(args.session_id, args.expression)}

    @router.tool("scorm_dom_click", description="Click an element in the content page.", input_model=DomClickInput)
    async def dom_click(args: DomClickInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        opts = args.options or ClickOptions()
        sessions.emit(args.session_id, "dom:click_start", {"selector": args.selector, "click_type": opts.click_type})
        result = await app.runtime.dom_click(
            args.session_id,
            args.selector,
            click_type=opts.click_type,
            wait_for_selector=opts.wait_for_selector,
            wait_timeout_ms=opts.wait_timeout_ms,
        )
        sessions.emit(args.session_id, "dom:click_done", {"selector": args.selector})
        return result

    @router.tool(
        "scorm_dom_fill",
        description="Set a form control: text input, textarea, select, checkbox or radio.",
        input_model=DomFillInput,
    )
    async def dom_fill(args: DomFillInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        result = await fill(args.session_id, args.selector, args.value, args.options)
        sessions.emit(args.session_id, "dom:fill_done", {"selector": args.selector})
        return result

    @router.tool(
        "scorm_dom_query",
        description="Inspect an element's text, attributes, visibility, styles or value.",
        input_model=DomQueryInput,
    )
    async def dom_query(args: DomQueryInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        return await app.runtime.dom_query(args.session_id, args.selector, args.query_type)

    @router.tool(
        "scorm_dom_wait_for",
        description="Wait until a selector, visibility, text, attribute or expression condition holds.",
        input_model=DomWaitForInput,
    )
    async def dom_wait_for(args: DomWaitForInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        condition = args.condition.model_dump(exclude_none=True)
        return await app.runtime.dom_wait_for(args.session_id, condition, args.timeout_ms)

    @router.tool(
        "scorm_keyboard_type",
        description="Type text with the keyboard, into a selector or the focused element.",
        input_model=KeyboardTypeInput,
    )
    async def keyboard_type(args: KeyboardTypeInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        opts = args.options or KeyboardOptions()
        result = await app.runtime.keyboard_type(
            args.session_id,
            args.text,
            selector=opts.selector,
            delay_ms=opts.delay_ms,
        )
        sessions.emit(args.session_id, "dom:keyboard_type", {"selector": opts.selector, "length": len(args.text)})
        return result

    @router.tool(
        "scorm_dom_find_interactive_elements",
        description="List the forms, buttons, inputs and answer groups on the current page.",
        input_model=SessionIdInput,
    )
    async def find_interactive_elements(args: SessionIdInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        return await app.runtime.find_interactive_elements(args.session_id)

    @router.tool(
        "scorm_dom_fill_form_batch",
        description="Fill several form fields in order; a failing field does not stop the rest.",
        input_model=FillFormBatchInput,
    )
    async def fill_form_batch(args: FillFormBatchInput) -> dict[str, Any]:
        sessions.require_ready(args.session_id)
        results: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        for index, field in enumerate(args.fields):
            try:
                outcome = await fill(args.session_id, field.selector, field.value, field.options)
            except ScormMcpError as e:
                errors.append({"index": index, "selector": field.selector, **e.error.wire()})
                results.append({"index": index, "selector": field.selector, "success": False})
                continue
            results.append({"index": index, "selector": field.selector, "success": True, "element": outcome.get("element")})

        successful = sum(1 for r in results if r["success"])
        sessions.emit(args.session_id, "dom:fill_batch_done", {"successful": successful, "failed": len(errors)})
        response: dict[str, Any] = {
            "total_fields": len(args.fields),
            "successful": successful,
            "failed": len(errors),
            "results": results,
        }
        if errors:
            response["errors"] = errors
        return response
