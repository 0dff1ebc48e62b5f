# scorm_mcp/validation.py
"""
Static checks over an unpacked package: manifest shape, how content scripts use the
SCORM API, and which organization items can never launch.

Everything here reads files only; no browser is involved.
"""

from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Any

from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import BaseModel

from scorm_mcp.errors import ScormMcpError
from scorm_mcp.runtime.manifest import ManifestItem, ManifestOrganization, iter_items, parse_manifest, resolve_entry_path

logger = get_logger(__name__)

MANIFEST_NAME = "imsmanifest.xml"

_CONTENT_FILE = re.compile(r"\.(html?|js)$", re.IGNORECASE)
_INITIALIZE = re.compile(r"\bInitialize\s*\(")
_TERMINATE = re.compile(r"\bTerminate\s*\(")
_DATA_CALL = re.compile(r"\b(?:GetValue|SetValue)\s*\(")


class ApiUsageIssue(BaseModel):
    file: str
    line: int
    issue: str
    fix_suggestion: str


class SequencingIssue(BaseModel):
    rule: str
    severity: str = "warning"
    item_identifier: str
    path: str
    issue: str
    fix_suggestion: str


def lint_manifest(package_dir: Path) -> dict[str, Any]:
    """Parse the manifest and report what keeps the package from launching."""
    errors: list[str] = []
    warnings: list[str] = []
    manifest_path = package_dir / MANIFEST_NAME
    if not manifest_path.is_file():
        return {"valid": False, "errors": [f"{MANIFEST_NAME} not found in {package_dir}"], "warnings": []}

    try:
        manifest = parse_manifest(manifest_path)
    except ScormMcpError as e:
        return {"valid": False, "errors": [e.error.message], "warnings": []}

    if not manifest.organizations:
        warnings.append("No organizations declared; content launches from the first resource")
    elif manifest.default_organization and manifest.organization().identifier != manifest.default_organization:
        warnings.append(f"Default organization {manifest.default_organization!r} is not declared")
    if not manifest.schemaversion:
        warnings.append("No schemaversion in manifest metadata")
    for item in _org_items(manifest.organization()):
        if item.identifierref and item.identifierref not in manifest.resources:
            errors.append(f"Item {item.identifier!r} references unknown resource {item.identifierref!r}")

    try:
        entry = resolve_entry_path(package_dir)
    except ScormMcpError as e:
        errors.append(e.error.message)
        entry = None

    return {
        "valid": not errors,
        "scorm_version": manifest.schemaversion,
        "entry_path": str(entry) if entry else None,
        "errors": errors,
        "warnings": warnings,
    }


def _org_items(org: ManifestOrganization | None) -> list[ManifestItem]:
    return list(iter_items(org.items)) if org is not None else []


def content_files(package_dir: Path) -> list[Path]:
    """HTML and script files inside the package, never following links out of it."""
    root = package_dir.resolve()
    found = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or not _CONTENT_FILE.search(path.name):
            continue
        if not path.resolve().is_relative_to(root):
            logger.debug("Skipping %s, it resolves outside the package", path)
            continue
        found.append(path)
    return found


def lint_api_usage(package_dir: Path) -> dict[str, Any]:
    """Flag content files that read or write CMI data without opening or closing the attempt."""
    root = package_dir.resolve()
    issues: list[ApiUsageIssue] = []
    scanned: list[str] = []
    for path in content_files(root):
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Could not read %s: %s", path, e)
            continue
        relative = path.relative_to(root).as_posix()
        scanned.append(relative)

        lines = text.splitlines()
        data_lines = [n for n, line in enumerate(lines, start=1) if _DATA_CALL.search(line)]
        if not data_lines:
            continue
        if not _INITIALIZE.search(text):
            issues.append(
                ApiUsageIssue(
                    file=relative,
                    line=data_lines[0],
                    issue="GetValue/SetValue used without Initialize",
                    fix_suggestion="Call API_1484_11.Initialize('') before reading or writing data",
                )
            )
        if not _TERMINATE.search(text):
            issues.append(
                ApiUsageIssue(
                    file=relative,
                    line=data_lines[-1],
                    issue="Attempt is never terminated",
                    fix_suggestion="Call API_1484_11.Terminate('') when the learner leaves the SCO",
                )
            )
    return {"scanned_files": scanned, "issues": [i.model_dump() for i in issues]}


def lint_sequencing(package_dir: Path) -> dict[str, Any]:
    """Leaf items of the default organization that point at no resource can never be delivered."""
    manifest = parse_manifest(package_dir / MANIFEST_NAME)
    org = manifest.organization()
    issues: list[SequencingIssue] = []

    def walk(items: list[ManifestItem], trail: list[str]) -> int:
        count = 0
        for item in items:
            count += 1
            path = [*trail, item.identifier]
            if item.children:
                count += walk(item.children, path)
            elif not item.identifierref:
                issues.append(
                    SequencingIssue(
                        rule="leaf-without-resource",
                        item_identifier=item.identifier,
                        path="/".join(path),
                        issue=f"Leaf item {item.identifier!r} has no identifierref",
                        fix_suggestion="Point the item at a SCO or asset resource, or give it child items",
                    )
                )
        return count

    scanned = walk(org.items, []) if org is not None else 0
    return {
        "issues": [i.model_dump() for i in issues],
        "stats": {
            "items_scanned": scanned,
            "organizations": len(manifest.organizations),
            "default_organization": org.identifier if org is not None else None,
        },
    }


def validate_workspace(package_dir: Path) -> dict[str, Any]:
    manifest = lint_manifest(package_dir)
    api = lint_api_usage(package_dir)
    score = max(0, 100 - 25 * len(manifest["errors"]) - 10 * len(api["issues"]))
    fixes = [f"Manifest: {error}" for error in manifest["errors"]]
    fixes += [f"{issue['file']}:{issue['line']}: {issue['fix_suggestion']}" for issue in api["issues"]]
    return {
        "score": score,
        "manifest": manifest,
        "api_usage": api,
        "actionable_fixes": fixes,
    }


def validate_compliance(package_dir: Path) -> dict[str, Any]:
    """Combined score: 20 points per manifest error, 5 per API or sequencing issue."""
    manifest = lint_manifest(package_dir)
    api = lint_api_usage(package_dir)
    if manifest["valid"]:
        sequencing = lint_sequencing(package_dir)
    else:
        sequencing = {"issues": [], "stats": {}}

    errors = list(manifest["errors"])
    warnings = list(manifest["warnings"]) + [i["issue"] for i in sequencing["issues"]]
    suggestions = [i["fix_suggestion"] for i in api["issues"]]
    suggestions += [i["fix_suggestion"] for i in sequencing["issues"]]
    score = max(0, 100 - 20 * len(errors) - 5 * len(api["issues"]) - 5 * len(sequencing["issues"]))
    return {
        "compliance_score": score,
        "errors": errors,
        "warnings": warnings,
        "suggestions": suggestions,
        "validation_report": {
            "package_path": str(package_dir),
            "manifest": manifest,
            "api_usage": api,
            "sequencing": sequencing,
        },
    }


def render_html_report(compliance: dict[str, Any]) -> str:
    report = compliance["validation_report"]

    def section(title: str, entries: list[str]) -> str:
        if not entries:
            return f"<h2>{html.escape(title)}</h2><p>None</p>"
        rows = "".join(f"<li>{html.escape(str(entry))}</li>" for entry in entries)
        return f"<h2>{html.escape(title)}</h2><ul>{rows}</ul>"

    api_rows = [f"{i['file']}:{i['line']} {i['issue']}" for i in report["api_usage"]["issues"]]
    return (
        "<!doctype html>\n"
        '<html><head><meta charset="utf-8"><title>SCORM compliance report</title></head><body>'
        "<h1>SCORM compliance report</h1>"
        f"<p>Package: {html.escape(report['package_path'])}</p>"
        f"<p>Score: <strong>{compliance['compliance_score']}</strong> / 100</p>"
        + section("Errors", compliance["errors"])
        + section("Warnings", compliance["warnings"])
        + section("API usage", api_rows)
        + section("Suggestions", compliance["suggestions"])
        + "</body></html>\n"
    )
