# tests/unit/tools/test_validate_tools.py
"""Static package checks, through the tools and directly."""
from pathlib import Path

import pytest

from scorm_mcp import validation
from scorm_mcp.orchestrator import Orchestrator

CHATTY_SCRIPT = """\
var api = window.API_1484_11;
api.Initialize("");
api.SetValue("cmi.location", "2");
"""

SILENT_SCRIPT = """\
function save() {
  window.API_1484_11.SetValue("cmi.suspend_data", "x");
}
"""


@pytest.fixture
async def app(settings, fake_runtime):
    async with Orchestrator(settings, runtime=fake_runtime) as orchestrator:
        yield orchestrator


@pytest.fixture
def server(app):
    return app.create_server()


async def call(server, name, arguments=None):
    response = await server.handle_message(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": name, "arguments": arguments or {}}}
    )
    result = response["result"]
    return result["structuredContent"], result["isError"]


@pytest.fixture
def scripted_package(package_dir: Path) -> Path:
    """The two-SCO package plus content scripts with incomplete attempt handling."""
    (package_dir / "js").mkdir()
    (package_dir / "js" / "chatty.js").write_text(CHATTY_SCRIPT, encoding="utf-8")
    (package_dir / "js" / "silent.js").write_text(SILENT_SCRIPT, encoding="utf-8")
    (package_dir / "notes.txt").write_text("SetValue(", encoding="utf-8")
    return package_dir


@pytest.fixture
def orphan_item_package(package_dir: Path) -> Path:
    manifest = (package_dir / "imsmanifest.xml").read_text(encoding="utf-8").replace(
        '<item identifier="ITEM-2" identifierref="RES-2"><title>Lesson 2</title></item>',
        '<item identifier="MODULE-2"><title>Module 2</title>'
        '<item identifier="ITEM-3"><title>Placeholder</title></item></item>',
    )
    (package_dir / "imsmanifest.xml").write_text(manifest, encoding="utf-8")
    return package_dir


def test_clean_package_scores_full_marks(package_dir):
    manifest = validation.lint_manifest(package_dir)
    assert manifest["valid"] is True
    assert manifest["scorm_version"] == "2004 4th Edition"
    assert manifest["warnings"] == []

    result = validation.validate_workspace(package_dir)
    assert result["score"] == 100
    assert result["actionable_fixes"] == []
    assert result["api_usage"]["scanned_files"] == ["index.html", "lesson2.html"]


def test_api_usage_flags_missing_initialize_and_terminate(scripted_package):
    result = validation.lint_api_usage(scripted_package)

    assert "notes.txt" not in result["scanned_files"]
    issues = [(i["file"], i["line"], i["issue"]) for i in result["issues"]]
    assert issues == [
        ("js/chatty.js", 3, "Attempt is never terminated"),
        ("js/silent.js", 2, "GetValue/SetValue used without Initialize"),
        ("js/silent.js", 2, "Attempt is never terminated"),
    ]

    workspace = validation.validate_workspace(scripted_package)
    assert workspace["score"] == 70
    assert workspace["actionable_fixes"][0].startswith("js/chatty.js:3: ")


def test_manifest_errors(package_dir):
    # 1. Launch file missing
    (package_dir / "index.html").unlink()
    result = validation.lint_manifest(package_dir)
    assert result["valid"] is False
    assert any("Launch file not found" in e for e in result["errors"])

    # 2. Item pointing at an undeclared resource
    original = (package_dir / "imsmanifest.xml").read_text(encoding="utf-8")
    (package_dir / "imsmanifest.xml").write_text(original.replace('identifierref="RES-2"', 'identifierref="RES-9"'))
    (package_dir / "index.html").write_text("<html></html>")
    result = validation.lint_manifest(package_dir)
    assert result["errors"] == ["Item 'ITEM-2' references unknown resource 'RES-9'"]

    # 3. Not XML at all
    (package_dir / "imsmanifest.xml").write_text("<manifest")
    result = validation.lint_manifest(package_dir)
    assert result["valid"] is False
    assert validation.validate_workspace(package_dir)["score"] == 75


def test_sequencing_lint_finds_leaf_without_resource(orphan_item_package):
    result = validation.lint_sequencing(orphan_item_package)

    assert result["stats"] == {"items_scanned": 3, "organizations": 1, "default_organization": "ORG-1"}
    assert [(i["item_identifier"], i["path"]) for i in result["issues"]] == [("ITEM-3", "MODULE-2/ITEM-3")]


def test_compliance_score(orphan_item_package):
    (orphan_item_package / "js").mkdir()
    (orphan_item_package / "js" / "silent.js").write_text(SILENT_SCRIPT, encoding="utf-8")

    result = validation.validate_compliance(orphan_item_package)

    # two API issues and one sequencing issue, 5 points each
    assert result["compliance_score"] == 85
    assert result["errors"] == []
    assert "Leaf item 'ITEM-3' has no identifierref" in result["warnings"]
    assert len(result["suggestions"]) == 3


@pytest.mark.anyio
async def test_validation_tools(server, scripted_package):
    payload, is_error = await call(server, "scorm_lint_manifest", {"workspace_path": str(scripted_package)})
    assert not is_error
    assert payload["valid"] is True

    payload, _ = await call(server, "scorm_lint_api_usage", {"workspace_path": str(scripted_package)})
    assert len(payload["issues"]) == 3

    payload, _ = await call(server, "scorm_lint_sequencing", {"workspace_path": str(scripted_package)})
    assert payload["issues"] == []

    payload, _ = await call(server, "scorm_validate_workspace", {"workspace_path": str(scripted_package)})
    assert payload["score"] == 70

    payload, _ = await call(server, "scorm_validate_compliance", {"workspace_path": str(scripted_package)})
    assert payload["compliance_score"] == 85

    payload, is_error = await call(server, "scorm_lint_manifest", {"workspace_path": str(scripted_package / "nope")})
    assert is_error
    assert payload["error_code"] == "CONTENT_FILE_MISSING"


@pytest.mark.anyio
async def test_report_formats(server, app, scripted_package):
    # 1. JSON inline
    payload, is_error = await call(server, "scorm_report", {"workspace_path": str(scripted_package)})
    assert not is_error
    assert payload["format"] == "json"
    assert payload["report"]["compliance_score"] == payload["compliance_score"] == 85

    # 2. HTML without a session is returned inline, escaped
    (scripted_package / "js" / "<b>.js").write_text(SILENT_SCRIPT, encoding="utf-8")
    payload, _ = await call(server, "scorm_report", {"workspace_path": str(scripted_package), "format": "html"})
    assert payload["html"].startswith("<!doctype html>")
    assert "js/&lt;b&gt;.js:2" in payload["html"]
    assert "<b>.js" not in payload["html"]

    # 3. HTML with a session becomes a report artifact
    session_id = app.sessions.open(str(scripted_package))["session_id"]
    payload, _ = await call(
        server, "scorm_report", {"workspace_path": str(scripted_package), "format": "html", "session_id": session_id}
    )
    report = Path(payload["artifact_path"])
    assert report.name == "scorm_report.html"
    assert report.parent == app.sessions.get(session_id).workspace_path
    assert "Score: <strong>" in report.read_text()
    last = app.sessions.events(session_id)["events"][-1]
    assert last["type"] == "artifact:written"
    assert last["payload"]["type"] == "report"
