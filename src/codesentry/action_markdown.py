from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path

from codesentry.engine.aggregation import prioritize, severity_breakdown
from codesentry.engine.types import Issue, Severity

_ICONS = {
    Severity.CRITICAL: "🛑",
    Severity.HIGH: "✖",
    Severity.MEDIUM: "⚠",
    Severity.LOW: "ℹ",
}

_MAX_ITEMS_PER_COMMENT = 6


def _issue_line(issue: Issue) -> str:
    icon = _ICONS.get(issue.severity, "•")
    fix = f" Fix: {issue.fix}" if issue.fix else ""
    return f"- {icon} **{issue.severity.value}** {issue.message} (confidence {issue.confidence:.2f}).{fix}"


def render_comment_body(items: Sequence[Issue], *, marker: str) -> str:
    ordered = prioritize(items)
    lines: list[str] = ["**CodeSentry** found the following issue(s):"]
    for issue in ordered[:_MAX_ITEMS_PER_COMMENT]:
        lines.append(_issue_line(issue))
    if len(ordered) > _MAX_ITEMS_PER_COMMENT:
        lines.append(f"- …and {len(ordered) - _MAX_ITEMS_PER_COMMENT} more finding(s) on this line.")
    lines.append("")
    lines.append(marker)
    return "\n".join(lines)


def render_summary_body(findings: Sequence[tuple[str, Issue]], *, marker: str, limit: int = 10) -> str:
    """
    Summary comment posted when no finding could be placed on a diff line.
    """

    ordered = sorted(findings, key=lambda f: (-f[1].severity.rank, -f[1].confidence))
    counts = severity_breakdown(issue for _, issue in findings)

    lines: list[str] = ["## CodeSentry review", ""]
    lines.append(
        f"Found **{len(findings)}** issue(s) outside the changed lines: "
        f"{counts.critical} critical, {counts.high} high, {counts.medium} medium, {counts.low} low."
    )
    lines.append("")
    lines.append("| Severity | Location | Finding |")
    lines.append("|---|---|---|")
    for path, issue in ordered[:limit]:
        message = issue.message.replace("|", "\\|")
        lines.append(f"| {issue.severity.value} | `{path}:{issue.line}` | {message} |")
    if len(ordered) > limit:
        lines.append("")
        lines.append(f"…and {len(ordered) - limit} more.")
    lines.append("")
    lines.append(marker)
    return "\n".join(lines)


def write_step_summary(*, files_analyzed: int, findings: Sequence[tuple[str, Issue]], comments_posted: int) -> None:
    path = os.environ.get("GITHUB_STEP_SUMMARY")
    if not path:
        return

    counts = severity_breakdown(issue for _, issue in findings)
    md: list[str] = []
    md.append("## CodeSentry report")
    md.append("")
    md.append(f"- Files analyzed: **{files_analyzed}**")
    md.append(f"- Findings: **{len(findings)}**")
    md.append(f"- By severity: critical={counts.critical}, high={counts.high}, medium={counts.medium}, low={counts.low}")
    md.append(f"- Inline comments posted: {comments_posted}")
    md.append("")

    Path(path).write_text("\n".join(md) + "\n", encoding="utf-8")
