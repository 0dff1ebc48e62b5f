# tests/unit/sessions/test_course_resources.py
import os
import re

from scorm_mcp.sessions import CourseResources, course_key


def test_course_key_is_stable_per_location(tmp_path):
    pkg = tmp_path / "pkg"
    pkg.mkdir()
    other = tmp_path / "other"
    other.mkdir()

    key = course_key(pkg)
    assert re.fullmatch(r"[0-9a-f]{16}", key)
    assert course_key(str(pkg)) == key
    assert course_key(tmp_path / "pkg" / ".." / "pkg") == key
    assert course_key(other) != key


def test_rotation_keeps_newest_captures(tmp_path):
    """
    With a limit of 3, storing 5 captures leaves the 3 most recent by
    modification time, regardless of the names they were given.
    """
    resources = CourseResources(tmp_path / "courses", max_files=3)
    folder = resources.folder("abc")

    # 1. Seed five captures with explicit, increasing mtimes
    for i, name in enumerate(["e.jpg", "d.png", "c.jpeg", "b.jpg", "a.jpg"]):
        path = folder / name
        path.write_bytes(b"x")
        os.utime(path, ns=(1_000_000_000 * (i + 1), 1_000_000_000 * (i + 1)))

    # 2. Rotate
    removed = resources.rotate("abc")

    # 3. The two oldest went away
    assert sorted(p.name for p in removed) == ["d.png", "e.jpg"]
    assert sorted(p.name for p in folder.iterdir()) == ["a.jpg", "b.jpg", "c.jpeg"]


def test_rotation_ignores_other_files_and_missing_folders(tmp_path):
    resources = CourseResources(tmp_path / "courses", max_files=1)
    folder = resources.folder("abc")
    (folder / "notes.txt").write_text("keep me")
    (folder / "one.jpg").write_bytes(b"x")
    (folder / "two.jpg").write_bytes(b"x")

    resources.rotate("abc")

    names = sorted(p.name for p in folder.iterdir())
    assert "notes.txt" in names
    assert len([n for n in names if n.endswith(".jpg")]) == 1

    assert resources.rotate("never-created") == []


def test_store_writes_then_rotates(tmp_path):
    resources = CourseResources(tmp_path / "courses", max_files=2)

    for i in range(4):
        path = resources.store("abc", f"shot_{i}.jpg", b"data")
        os.utime(path, ns=(1_000_000_000 * (i + 1), 1_000_000_000 * (i + 1)))

    remaining = sorted(p.name for p in (tmp_path / "courses" / "abc").iterdir())
    assert len(remaining) == 2
    assert "shot_3.jpg" in remaining
