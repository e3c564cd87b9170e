from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from codesentry import __version__
from codesentry.engine.aggregation import severity_breakdown
from codesentry.engine.types import FileReport, Issue, Severity

_SEVERITY_ICON = {
    Severity.CRITICAL: "🛑",
    Severity.HIGH: "✖",
    Severity.MEDIUM: "⚠",
    Severity.LOW: "ℹ",
}
_SEVERITY_STYLE = {
    Severity.CRITICAL: "bold white on red",
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


def render_terminal(reports: Sequence[FileReport], *, console: Console, show_details: bool = True) -> None:
    header = Text()
    header.append("CodeSentry ", style="bold")
    header.append(f"v{__version__}", style="dim")
    header.append(" · quality & security analysis", style="dim")

    console.print(
        Panel(
            header,
            subtitle=f"Analyzed {len(reports)} file(s)",
            border_style="cyan",
        )
    )

    if show_details:
        for report in reports:
            _print_report(report, console=console)

    _print_summary([i for r in reports for i in r.result.issues], console=console)


def _print_report(report: FileReport, *, console: Console) -> None:
    result = report.result
    title = Text(report.path, style="bold")
    title.append(f"  [{result.language}", style="dim")
    if result.frameworks:
        title.append(f" · {', '.join(result.frameworks)}", style="dim")
    title.append("]", style="dim")
    console.print(title)

    if not result.issues:
        console.print("  No issues found.", style="green")
        console.print()
        return

    for issue in result.issues:
        _print_issue(console, issue)
    console.print()


def _print_issue(console: Console, issue: Issue) -> None:
    icon = _SEVERITY_ICON.get(issue.severity, "•")
    style = _SEVERITY_STYLE.get(issue.severity, "")

    line = Text()
    line.append(f"  {icon} ", style=style)
    line.append(issue.severity.value, style=style)
    line.append(f"  ({issue.line}:{issue.column})", style="dim")
    line.append(f"  {issue.message}")
    line.append(f"  [{issue.confidence:.2f}]", style="dim")
    console.print(line)

    if issue.fix:
        console.print(f"     → {issue.fix}", style="dim")


def _print_summary(issues: Sequence[Issue], *, console: Console) -> None:
    counts = severity_breakdown(issues)
    console.print(Text("─" * 60, style="dim"))
    console.print(Text(f"Issues: {len(issues)}", style="bold"))
    console.print(
        Text(
            f"critical={counts.critical} high={counts.high} medium={counts.medium} low={counts.low}",
            style="dim",
        )
    )
    console.print(Text("─" * 60, style="dim"))
