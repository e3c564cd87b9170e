from __future__ import annotations

from pathlib import Path

from helpers import FakeRunner

from codesentry.gitdiff import (
    changed_files,
    file_diff,
    map_line_to_position,
    parse_diff,
)

SINGLE_HUNK = """\
diff --git a/app.js b/app.js
index 1111111..2222222 100644
--- a/app.js
+++ b/app.js
@@ -9,2 +9,5 @@ function main() {
 const a = 1;
+const b = 2;
+const c = 3;
+const d = 4;
 return a;
"""

TWO_HUNKS = SINGLE_HUNK + """\
@@ -20,1 +23,2 @@
 end();
+extra();
"""


def test_single_hunk_positions_follow_hunk_offsets() -> None:
    diff = parse_diff(SINGLE_HUNK)

    assert diff.path == "app.js"
    assert diff.old_path == "app.js"
    assert [ln.new_line for ln in diff.iter_lines() if ln.kind == "added"] == [10, 11, 12]
    assert diff.position_for_line(9) == 1
    assert diff.position_for_line(11) == 3
    assert diff.position_for_line(13) == 5


def test_line_outside_the_diff_has_no_position() -> None:
    assert map_line_to_position(SINGLE_HUNK, 500) is None
    assert map_line_to_position(SINGLE_HUNK, 8) is None


def test_later_hunk_headers_count_only_when_enabled() -> None:
    assert map_line_to_position(TWO_HUNKS, 24) == 7
    assert map_line_to_position(TWO_HUNKS, 24, count_hunk_headers=True) == 8
    # The first hunk header never takes a position.
    assert map_line_to_position(TWO_HUNKS, 11, count_hunk_headers=True) == 3

    diff = parse_diff(TWO_HUNKS)
    assert [(h.new_start, h.new_count) for h in diff.hunks] == [(9, 5), (23, 2)]
    assert [(ln.kind, ln.new_line) for ln in diff.hunks[1].lines] == [("context", 23), ("added", 24)]


def test_removed_lines_take_positions_but_have_no_new_line() -> None:
    text = "--- a/x.py\n+++ b/x.py\n@@ -1,3 +1,2 @@\n a = 1\n-b = 2\n c = 3\n"
    diff = parse_diff(text)

    kinds = [(ln.kind, ln.old_line, ln.new_line, ln.position) for ln in diff.iter_lines()]
    assert kinds == [
        ("context", 1, 1, 1),
        ("removed", 2, None, 2),
        ("context", 3, 2, 3),
    ]
    assert diff.position_for_line(2) == 3


def test_no_newline_marker_takes_no_position() -> None:
    text = (
        "--- a/x.txt\n+++ b/x.txt\n@@ -1 +1 @@\n-old\n\\ No newline at end of file\n"
        "+new\n\\ No newline at end of file\n"
    )
    diff = parse_diff(text)
    assert diff.position_for_line(1) == 2
    assert [ln.kind for ln in diff.iter_lines()] == ["removed", "added"]


def test_new_file_diff_has_no_old_path() -> None:
    text = "--- /dev/null\n+++ b/new.py\n@@ -0,0 +1,2 @@\n+a = 1\n+b = 2\n"
    diff = parse_diff(text)
    assert diff.old_path is None
    assert diff.path == "new.py"
    assert [ln.new_line for ln in diff.iter_lines() if ln.kind == "added"] == [1, 2]


def test_changed_files_and_file_diff_use_the_runner(tmp_path: Path) -> None:
    runner = FakeRunner()
    runner.add(["git", "diff", "--name-only", "--diff-filter=AM", "main...HEAD"], stdout="app.js\n\nlib/b.py\n")
    runner.add(["git", "diff", "--no-color", "main...HEAD", "--", "app.js"], stdout=SINGLE_HUNK)

    assert changed_files("main", "HEAD", cwd=tmp_path, runner=runner) == ["app.js", "lib/b.py"]
    assert file_diff("main", "HEAD", "app.js", cwd=tmp_path, runner=runner) == SINGLE_HUNK
    assert len(runner.calls) == 2
