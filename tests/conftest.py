# tests/conftest.py
import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import anyio
import pytest

from scorm_mcp.settings import Settings

# ------------------------------------------------------------------------------
# 1. Global Configuration
# ------------------------------------------------------------------------------

@pytest.fixture(scope="session")
def anyio_backend():
    """
    Tells pytest to use 'asyncio' as the backend for anyio tests.
    Playwright only ships an asyncio driver, so that is the only backend we run.
    """
    return "asyncio"


@pytest.fixture(autouse=True)
def setup_test_logging(caplog):
    """
    Automatically captures logging at DEBUG level for every test.
    If a test fails, pytest will show the logs.
    """
    caplog.set_level(logging.DEBUG)


# ------------------------------------------------------------------------------
# 2. Shared Transport Fixtures
# ------------------------------------------------------------------------------

@pytest.fixture
async def memory_channel_pair():
    """
    Creates a bidirectional memory stream pair standing in for stdin/stdout.

    Yields:
        tuple: `((client_read, client_write), (server_read, server_write))`
    """
    # Stream A: lines going TO the server
    client_write, server_read = anyio.create_memory_object_stream(100)

    # Stream B: lines going TO the client
    server_write, client_read = anyio.create_memory_object_stream(100)

    yield (client_read, client_write), (server_read, server_write)

    with anyio.move_on_after(1, shield=True):
        await client_write.aclose()
        await server_write.aclose()
        await client_read.aclose()
        await server_read.aclose()


# ------------------------------------------------------------------------------
# 3. Domain Fixtures
# ------------------------------------------------------------------------------

MANIFEST_XML = """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="com.example.course" version="1"
          xmlns="http://www.imsglobal.org/xsd/imscp_v1p1"
          xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>2004 4th Edition</schemaversion>
  </metadata>
  <organizations default="ORG-1">
    <organization identifier="ORG-1">
      <title>Example Course</title>
      <item identifier="ITEM-1" identifierref="RES-1"><title>Lesson 1</title></item>
      <item identifier="ITEM-2" identifierref="RES-2"><title>Lesson 2</title></item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="RES-1" type="webcontent" adlcp:scormType="sco" href="index.html">
      <file href="index.html"/>
    </resource>
    <resource identifier="RES-2" type="webcontent" adlcp:scormType="sco" href="lesson2.html">
      <file href="lesson2.html"/>
    </resource>
  </resources>
</manifest>
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        temp_root=tmp_path / "scorm-tester",
        topology="inprocess",
        bridge_startup_timeout=1.0,
        bridge_message_timeout=1.0,
        bridge_shutdown_grace=0,
        max_course_captures=3,
    )


@pytest.fixture
def package_dir(tmp_path: Path) -> Path:
    """A minimal two-SCO package directory."""
    pkg = tmp_path / "course"
    pkg.mkdir()
    (pkg / "imsmanifest.xml").write_text(MANIFEST_XML, encoding="utf-8")
    (pkg / "index.html").write_text("<html><body>Lesson 1</body></html>", encoding="utf-8")
    (pkg / "lesson2.html").write_text("<html><body>Lesson 2</body></html>", encoding="utf-8")
    return pkg


@pytest.fixture
def fake_runtime():
    """A runtime backend double with closed-runtime defaults."""
    runtime = MagicMock()
    runtime.__aenter__ = AsyncMock(return_value=runtime)
    runtime.__aexit__ = AsyncMock(return_value=None)
    runtime.open_persistent = AsyncMock(
        side_effect=lambda session_id, entry_path, *a, **kw: {
            "session_id": session_id,
            "url": Path(entry_path).as_uri(),
            "entry_path": entry_path,
        }
    )
    runtime.close_persistent = AsyncMock(return_value=True)
    runtime.get_status = AsyncMock(
        return_value={
            "open": False,
            "url": None,
            "initialize_state": "none",
            "last_api_method": None,
            "last_api_ts": None,
        }
    )
    runtime.call_api = AsyncMock(return_value="true")
    runtime.get_captured_calls = AsyncMock(return_value=[])
    runtime.capture = AsyncMock(return_value=b"\xff\xd8\xff\xe0fake-jpeg")
    runtime.execute_js = AsyncMock(return_value=None)
    runtime.sn_invoke = AsyncMock(return_value=None)
    runtime.dom_click = AsyncMock(return_value={"success": True, "click_type": "single", "element": {"tagName": "button"}})
    runtime.dom_fill = AsyncMock(return_value={"success": True, "element": {"tagName": "input"}})
    runtime.dom_query = AsyncMock(return_value={"found": False})
    runtime.dom_wait_for = AsyncMock(return_value={"success": True, "elapsed_ms": 12})
    runtime.keyboard_type = AsyncMock(
        side_effect=lambda session_id, text, *a, **kw: {"success": True, "characters_typed": len(text), "element": None}
    )
    runtime.find_interactive_elements = AsyncMock(
        return_value={"forms": [], "buttons": [], "inputs": [], "assessments": [], "counts": {}}
    )
    runtime.test_api_integration = AsyncMock(
        return_value={"api_available": True, "steps": [], "initialize_state": "none", "api_calls": []}
    )
    runtime.screenshot_page = AsyncMock(return_value=b"\x89PNGfake")
    runtime.close_all = AsyncMock(return_value=0)
    return runtime
