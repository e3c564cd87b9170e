from __future__ import annotations

from pathlib import Path


def safe_relpath(path: Path, root: Path) -> str:
    """
    Return a stable, POSIX-style path relative to `root` for reports and PR comments.

    Relative inputs are taken as relative to `root` (tools such as flake8 print
    paths relative to the directory they ran in). Paths outside the root, or
    paths that cannot be resolved, fall back to `path.as_posix()`.
    """

    candidate = path if path.is_absolute() else root / path
    try:
        resolved_path = candidate.resolve()
        resolved_root = root.resolve()
    except OSError:
        return path.as_posix()

    try:
        return resolved_path.relative_to(resolved_root).as_posix()
    except ValueError:
        return path.as_posix()
