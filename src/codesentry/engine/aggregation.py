from __future__ import annotations

from collections.abc import Iterable

from codesentry.engine.types import Issue, Severity, SeverityBreakdown


def severity_rank(issue: Issue) -> int:
    return issue.severity.rank


def deduplicate(issues: Iterable[Issue]) -> list[Issue]:
    """Keep the first issue for each `(line, message)` pair, whatever its source."""

    seen: set[tuple[int, str]] = set()
    unique: list[Issue] = []
    for issue in issues:
        key = (issue.line, issue.message)
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique


def prioritize(issues: Iterable[Issue]) -> list[Issue]:
    # sorted() is stable, so equal keys keep their input order.
    return sorted(issues, key=lambda i: (-severity_rank(i), -i.confidence))


def merge(*issue_lists: Iterable[Issue]) -> list[Issue]:
    """
    Concatenate, deduplicate and order issue lists.

    The result is a fixed point: merging it again returns the same list.
    """

    combined: list[Issue] = []
    for issues in issue_lists:
        combined.extend(issues)
    return prioritize(deduplicate(combined))


def severity_breakdown(issues: Iterable[Issue]) -> SeverityBreakdown:
    counts = {s: 0 for s in Severity}
    for issue in issues:
        counts[issue.severity] += 1
    return SeverityBreakdown(
        critical=counts[Severity.CRITICAL],
        high=counts[Severity.HIGH],
        medium=counts[Severity.MEDIUM],
        low=counts[Severity.LOW],
    )


def at_or_above(issues: Iterable[Issue], threshold: Severity) -> list[Issue]:
    return [i for i in issues if i.severity.rank >= threshold.rank]
