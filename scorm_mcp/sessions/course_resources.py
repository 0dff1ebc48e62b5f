# scorm_mcp/sessions/course_resources.py
"""Per-course capture folders shared by every session opened on the same package."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

CAPTURE_SUFFIXES = frozenset({".png", ".jpg", ".jpeg"})


def course_key(package_path: str | os.PathLike[str]) -> str:
    """Stable 16-hex-char key for a package location."""
    normalized = os.path.normcase(os.path.realpath(os.fspath(package_path)))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


class CourseResources:
    def __init__(self, root: Path, max_files: int = 20):
        self.root = root
        self.max_files = max_files

    def folder(self, key: str) -> Path:
        path = self.root / key
        path.mkdir(parents=True, exist_ok=True)
        return path

    def store(self, key: str, name: str, data: bytes) -> Path:
        """Write one capture into the course folder, then rotate the folder."""
        path = self.folder(key) / name
        path.write_bytes(data)
        self.rotate(key)
        return path

    def rotate(self, key: str, max_files: int | None = None) -> list[Path]:
        """Keep only the newest captures; returns what was removed.

        Concurrent rotations from separate processes may race; a file already
        removed by another rotation is skipped.
        """
        limit = self.max_files if max_files is None else max_files
        folder = self.root / key
        if not folder.is_dir():
            return []

        captures: list[tuple[int, str, Path]] = []
        for entry in folder.iterdir():
            if entry.suffix.lower() not in CAPTURE_SUFFIXES:
                continue
            try:
                captures.append((entry.stat().st_mtime_ns, entry.name, entry))
            except FileNotFoundError:
                continue

        captures.sort(reverse=True)
        removed: list[Path] = []
        for _, _, path in captures[max(limit, 0):]:
            try:
                path.unlink()
                removed.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not rotate capture %s: %s", path, e)
        if removed:
            logger.debug("Rotated %d capture(s) out of %s", len(removed), folder)
        return removed
