from __future__ import annotations

from collections.abc import Sequence

from codesentry.engine.aggregation import severity_breakdown
from codesentry.engine.types import FileReport, Issue


def render_markdown(reports: Sequence[FileReport]) -> str:
    all_issues = [issue for r in reports for issue in r.result.issues]
    counts = severity_breakdown(all_issues)

    lines: list[str] = []
    lines.append("# CodeSentry report")
    lines.append("")
    lines.append(f"- Files analyzed: {len(reports)}")
    lines.append(f"- Findings: {len(all_issues)}")
    lines.append(
        f"- By severity: critical={counts.critical}, high={counts.high}, medium={counts.medium}, low={counts.low}"
    )
    lines.append("")

    lines.append("## Issues")
    lines.append("")
    if not all_issues:
        lines.append("No issues found.")
        lines.append("")
        return "\n".join(lines)

    lines.append("| File | Line | Severity | Type | Category | Confidence | Message |")
    lines.append("| --- | ---: | --- | --- | --- | ---: | --- |")

    for report in reports:
        for issue in report.result.issues:
            lines.append(_row(report.path, issue))

    lines.append("")
    return "\n".join(lines)


def _row(path: str, issue: Issue) -> str:
    message_cell = _md_escape_cell(issue.message)
    if issue.fix:
        message_cell = f"{message_cell}<br/><span style=\"opacity:0.75\">{_md_escape_cell(issue.fix)}</span>"
    return (
        f"| {_md_escape_cell(path)} | {issue.line} | {issue.severity.value} | {issue.kind} | "
        f"{_md_escape_cell(issue.category)} | {issue.confidence:.2f} | {message_cell} |"
    )


def _md_escape_cell(text: str) -> str:
    # Markdown tables break on pipes/newlines.
    return text.replace("\\", "\\\\").replace("|", "\\|").replace("\n", " ").strip()
