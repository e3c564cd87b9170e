from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path, PurePath
from typing import Any

from codesentry.config import LintersConfig
from codesentry.engine.types import Issue, Severity
from codesentry.git import CommandError, CommandRunner
from codesentry.utils import safe_relpath

logger = logging.getLogger(__name__)

LINTER_CONFIDENCE = 0.8

_ESLINT_EXTENSIONS = frozenset({".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx"})
_FLAKE8_EXTENSIONS = frozenset({".py"})

_ESLINT_SEVERITY = {2: Severity.HIGH, 1: Severity.MEDIUM}
# Default flake8 format: path:line:col: CODE text
_FLAKE8_LINE = re.compile(r"^(?P<path>.+?):(?P<line>\d+):(?P<col>\d+):\s+(?P<code>[A-Z]+\d+)\s+(?P<text>.*)$")


def _flake8_severity(code: str) -> Severity:
    if code.startswith("F") or code.startswith("E9"):
        return Severity.HIGH
    if code.startswith(("E", "C")):
        return Severity.MEDIUM
    return Severity.LOW


def _linter_issue(source: str, *, line: int, column: int, message: str, severity: Severity, rule: str) -> Issue:
    return Issue(
        source=source,
        category="ESLint" if source == "eslint" else "flake8",
        severity=severity,
        line=max(1, line),
        column=max(1, column),
        message=message,
        confidence=LINTER_CONFIDENCE,
        sub_category="lint",
        category_key=rule,
        impact="general",
        kind="quality",
    )


def parse_eslint_output(output: str, *, root: Path) -> dict[str, list[Issue]]:
    """Parse `eslint -f json` output into issues keyed by root-relative path."""

    data = json.loads(output)
    if not isinstance(data, list):
        raise ValueError("eslint JSON output must be a list")

    result: dict[str, list[Issue]] = {}
    for file_result in data:
        if not isinstance(file_result, dict):
            continue
        file_path = file_result.get("filePath")
        messages = file_result.get("messages")
        if not isinstance(file_path, str) or not isinstance(messages, list):
            continue
        rel = safe_relpath(Path(file_path), root)
        for msg in messages:
            if not isinstance(msg, dict) or not isinstance(msg.get("line"), int):
                continue
            rule = str(msg.get("ruleId") or "eslint")
            result.setdefault(rel, []).append(
                _linter_issue(
                    "eslint",
                    line=msg["line"],
                    column=int(msg.get("column") or 1),
                    message=f"{msg.get('message', '')} ({rule})",
                    severity=_ESLINT_SEVERITY.get(msg.get("severity"), Severity.LOW),
                    rule=rule,
                )
            )
    return result


def parse_flake8_output(output: str, *, root: Path) -> dict[str, list[Issue]]:
    result: dict[str, list[Issue]] = {}
    for raw in output.splitlines():
        m = _FLAKE8_LINE.match(raw.strip())
        if m is None:
            continue
        rel = safe_relpath(Path(m.group("path")), root)
        code = m.group("code")
        result.setdefault(rel, []).append(
            _linter_issue(
                "flake8",
                line=int(m.group("line")),
                column=int(m.group("col")),
                message=f"{code}: {m.group('text').strip()}",
                severity=_flake8_severity(code),
                rule=code,
            )
        )
    return result


def _with_suffix(paths: Iterable[str], suffixes: frozenset[str]) -> list[str]:
    return [p for p in paths if PurePath(p).suffix.lower() in suffixes]


def run_linters(
    paths: Sequence[str],
    *,
    config: LintersConfig,
    cwd: Path,
    runner: CommandRunner,
) -> dict[str, list[Issue]]:
    """
    Run the enabled external linters over `paths` (relative to `cwd`).

    A linter that fails to run or produces unparseable output contributes no
    issues; the failure is logged.
    """

    merged: dict[str, list[Issue]] = {}

    def _absorb(found: dict[str, list[Issue]]) -> None:
        for path, issues in found.items():
            merged.setdefault(path, []).extend(issues)

    if config.eslint:
        targets = _with_suffix(paths, _ESLINT_EXTENSIONS)
        if targets:
            _absorb(_run_one("eslint", ["npx", "eslint", "-f", "json", *targets], parse_eslint_output, cwd, runner))

    if config.flake8:
        targets = _with_suffix(paths, _FLAKE8_EXTENSIONS)
        if targets:
            _absorb(_run_one("flake8", ["flake8", *targets], parse_flake8_output, cwd, runner))

    return merged


def _run_one(name: str, args: list[str], parse: Any, cwd: Path, runner: CommandRunner) -> dict[str, list[Issue]]:
    try:
        # Linters exit non-zero when they report findings.
        result = runner.run(args, cwd=cwd, check=False)
    except CommandError as exc:
        logger.warning("%s could not run: %s", name, exc)
        return {}

    if not result.stdout.strip():
        if not result.ok:
            logger.warning("%s failed (exit %d): %s", name, result.returncode, result.stderr.strip())
        return {}

    try:
        found: dict[str, list[Issue]] = parse(result.stdout, root=cwd)
    except (ValueError, TypeError) as exc:
        logger.warning("%s output could not be parsed: %s", name, exc)
        return {}

    logger.info("%s: %d finding(s)", name, sum(len(v) for v in found.values()))
    return found
