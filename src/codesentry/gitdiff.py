from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from codesentry.git import CommandRunner, git_check_output


DiffLineKind = Literal["context", "added", "removed"]


@dataclass(frozen=True, slots=True)
class DiffLine:
    kind: DiffLineKind
    text: str
    old_line: int | None
    new_line: int | None
    # 1-based index of this line in the file's diff, as used by review comment APIs.
    position: int


@dataclass(frozen=True, slots=True)
class DiffHunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str
    lines: tuple[DiffLine, ...] = ()


@dataclass(frozen=True, slots=True)
class DiffFile:
    path: str | None
    old_path: str | None = None
    hunks: tuple[DiffHunk, ...] = field(default=())

    def iter_lines(self) -> Iterator[DiffLine]:
        for hunk in self.hunks:
            yield from hunk.lines

    def position_for_line(self, line: int) -> int | None:
        """
        Return the diff position of new-file line `line`, or None when the line
        is not part of any hunk (it cannot carry an inline comment).
        """

        for diff_line in self.iter_lines():
            if diff_line.new_line == line:
                return diff_line.position
        return None


_HUNK_RE = re.compile(r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@")
_DIFF_GIT_RE = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+)$")


def _strip_prefix(raw: str) -> str | None:
    value = raw.strip().split("\t", 1)[0]
    if value == "/dev/null":
        return None
    if value.startswith(("a/", "b/")):
        return value[2:]
    return value


def parse_diff(diff_text: str, *, count_hunk_headers: bool = False) -> DiffFile:
    """
    Parse the unified diff of a single file.

    Positions start at 1 on the first line after the first hunk header and
    advance on every context, added and removed line. With
    `count_hunk_headers=True`, each later hunk header also takes one position
    (the layout GitHub uses for multi-hunk diffs). "\\ No newline at end of
    file" markers take no position.
    """

    path: str | None = None
    old_path: str | None = None
    hunks: list[DiffHunk] = []

    current: dict[str, object] | None = None
    current_lines: list[DiffLine] = []
    old_remaining = new_remaining = 0
    old_no = new_no = 0
    position = 0

    def _close() -> None:
        nonlocal current, current_lines
        if current is not None:
            hunks.append(DiffHunk(lines=tuple(current_lines), **current))  # type: ignore[arg-type]
        current = None
        current_lines = []

    for raw in diff_text.splitlines():
        in_hunk = current is not None and (old_remaining > 0 or new_remaining > 0)

        if not in_hunk:
            m = _HUNK_RE.match(raw)
            if m:
                _close()
                old_start = int(m.group("old_start"))
                old_count = int(m.group("old_count") or "1")
                new_start = int(m.group("new_start"))
                new_count = int(m.group("new_count") or "1")
                if hunks and count_hunk_headers:
                    position += 1
                current = {
                    "old_start": old_start,
                    "old_count": old_count,
                    "new_start": new_start,
                    "new_count": new_count,
                    "header": raw,
                }
                old_remaining, new_remaining = old_count, new_count
                old_no, new_no = old_start, new_start
                continue
            if raw.startswith("--- "):
                old_path = _strip_prefix(raw[4:])
                continue
            if raw.startswith("+++ "):
                path = _strip_prefix(raw[4:])
                continue
            git_header = _DIFF_GIT_RE.match(raw)
            if git_header:
                old_path = old_path or git_header.group("old")
                path = path or git_header.group("new")
            continue

        if raw.startswith("\\"):
            continue

        marker = raw[:1]
        text = raw[1:]
        if marker == "+":
            position += 1
            current_lines.append(DiffLine("added", text, None, new_no, position))
            new_no += 1
            new_remaining -= 1
        elif marker == "-":
            position += 1
            current_lines.append(DiffLine("removed", text, old_no, None, position))
            old_no += 1
            old_remaining -= 1
        else:
            # " " context; an empty line is context whose leading space was stripped.
            position += 1
            current_lines.append(DiffLine("context", text, old_no, new_no, position))
            old_no += 1
            new_no += 1
            old_remaining -= 1
            new_remaining -= 1

    _close()
    return DiffFile(path=path, old_path=old_path, hunks=tuple(hunks))


def map_line_to_position(diff_text: str, line: int, *, count_hunk_headers: bool = False) -> int | None:
    return parse_diff(diff_text, count_hunk_headers=count_hunk_headers).position_for_line(line)


def changed_files(base: str, head: str, *, cwd: Path, runner: CommandRunner | None = None) -> list[str]:
    """Added or modified files between `base...head`, as repository-relative paths."""

    out = git_check_output(
        ["diff", "--name-only", "--diff-filter=AM", f"{base}...{head}"],
        cwd=cwd,
        runner=runner,
    )
    return [line.strip() for line in out.splitlines() if line.strip()]


def file_diff(base: str, head: str, path: str, *, cwd: Path, runner: CommandRunner | None = None) -> str:
    return git_check_output(["diff", "--no-color", f"{base}...{head}", "--", path], cwd=cwd, runner=runner)
