# scorm_mcp/tools/validate.py
from __future__ import annotations as _annotations

from typing import Any, Literal, TYPE_CHECKING

from pydantic import BaseModel, Field

from scorm_mcp import validation
from scorm_mcp.server.router import ToolRouter
from .runtime import _package_dir

if TYPE_CHECKING:
    from scorm_mcp.orchestrator import Orchestrator

REPORT_NAME = "scorm_report.html"


class WorkspaceInput(BaseModel):
    workspace_path: str = Field(min_length=1, description="Unpacked package directory")


class ReportInput(WorkspaceInput):
    format: Literal["json", "html"] = "json"
    session_id: str | None = Field(default=None, description="Store an html report as an artifact of this session")


def register(router: ToolRouter, app: Orchestrator) -> None:
    sessions = app.sessions

    @router.tool(
        "scorm_lint_manifest",
        description="Check imsmanifest.xml for errors that keep the package from launching.",
        input_model=WorkspaceInput,
    )
    async def lint_manifest(args: WorkspaceInput) -> dict[str, Any]:
        return validation.lint_manifest(_package_dir(args.workspace_path))

    @router.tool(
        "scorm_lint_api_usage",
        description="Scan content HTML and JS for data calls made without Initialize or Terminate.",
        input_model=WorkspaceInput,
    )
    async def lint_api_usage(args: WorkspaceInput) -> dict[str, Any]:
        return validation.lint_api_usage(_package_dir(args.workspace_path))

    @router.tool(
        "scorm_lint_sequencing",
        description="Find organization items that can never be delivered.",
        input_model=WorkspaceInput,
    )
    async def lint_sequencing(args: WorkspaceInput) -> dict[str, Any]:
        return validation.lint_sequencing(_package_dir(args.workspace_path))

    @router.tool(
        "scorm_validate_workspace",
        description="Manifest and API-usage checks with a 0-100 score and a list of fixes.",
        input_model=WorkspaceInput,
    )
    async def validate_workspace(args: WorkspaceInput) -> dict[str, Any]:
        return validation.validate_workspace(_package_dir(args.workspace_path))

    @router.tool(
        "scorm_validate_compliance",
        description="Manifest, API-usage and sequencing checks combined into a compliance score.",
        input_model=WorkspaceInput,
    )
    async def validate_compliance(args: WorkspaceInput) -> dict[str, Any]:
        return validation.validate_compliance(_package_dir(args.workspace_path))

    @router.tool(
        "scorm_report",
        description="Compliance report as JSON, or as HTML stored in the session workspace.",
        input_model=ReportInput,
    )
    async def report(args: ReportInput) -> dict[str, Any]:
        if args.session_id:
            sessions.require_ready(args.session_id)
        compliance = validation.validate_compliance(_package_dir(args.workspace_path))
        if args.format == "json":
            return {"format": "json", "compliance_score": compliance["compliance_score"], "report": compliance}

        document = validation.render_html_report(compliance)
        result: dict[str, Any] = {"format": "html", "compliance_score": compliance["compliance_score"]}
        if args.session_id:
            path = sessions.write_artifact(args.session_id, REPORT_NAME, document, "report")
            result["artifact_path"] = str(path)
        else:
            result["html"] = document
        return result
