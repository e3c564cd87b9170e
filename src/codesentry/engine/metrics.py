from __future__ import annotations

import re

from codesentry.config import MetricsConfig
from codesentry.engine.types import Issue, Metrics, Severity

# Applied to the whole text, case-sensitive. `else if` also counts as an `if`.
_COMPLEXITY_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\bif\b",
        r"\belse\s+if\b",
        r"\bwhile\b",
        r"\bfor\b",
        r"\bswitch\b",
        r"\bcase\b",
        r"\bcatch\b",
        r"&&",
        r"\|\|",
        r"\?.*:",
    )
)

_FUNCTION_COUNT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"function\s+\w+",
        r"=\s*\([^)]*\)\s*=>",
        r"def\s+\w+",
        r"public\s+\w+\s+\w+\s*\(",
    )
)

# Brace-bodied functions; bodies containing nested braces are cut at the first `}`.
_BRACE_FUNCTION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"function\s+\w+[^{]*\{[^}]*\}",
        r"\w+\s*=\s*\([^)]*\)\s*=>\s*\{[^}]*\}",
    )
)

_DEF_LINE = re.compile(r"^([ \t]*)(?:async\s+)?def\s+\w+")

COMMENT_MARKERS: tuple[str, ...] = ("//", "/*", "*", "#", '"""', "'''")

# Lines this short are too generic to count as duplication.
_MIN_DUPLICATE_LENGTH = 10


def is_comment_line(line: str) -> bool:
    return line.strip().startswith(COMMENT_MARKERS)


def cyclomatic_complexity(code: str) -> int:
    return 1 + sum(len(p.findall(code)) for p in _COMPLEXITY_PATTERNS)


def max_nesting_depth(code: str) -> int:
    """
    Deepest `{` nesting seen in a single pass.

    Braces inside strings and comments are counted too. A stray `}` never
    drives the running depth below zero.
    """

    depth = 0
    deepest = 0
    for ch in code:
        if ch == "{":
            depth += 1
            deepest = max(deepest, depth)
        elif ch == "}" and depth > 0:
            depth -= 1
    return deepest


def _def_block_lengths(lines: list[str]) -> list[int]:
    lengths: list[int] = []
    for start, line in enumerate(lines):
        m = _DEF_LINE.match(line)
        if m is None:
            continue
        indent = len(m.group(1).expandtabs())
        end = start
        for idx in range(start + 1, len(lines)):
            candidate = lines[idx]
            if not candidate.strip():
                continue
            if len(candidate) - len(candidate.lstrip()) <= indent:
                break
            end = idx
        lengths.append(end - start + 1)
    return lengths


def average_lines_per_function(code: str) -> int:
    spans = [m.group(0).count("\n") + 1 for p in _BRACE_FUNCTION_PATTERNS for m in p.finditer(code)]
    spans.extend(_def_block_lengths(code.split("\n")))
    if not spans:
        return 0
    # Half rounds up.
    return int(sum(spans) / len(spans) + 0.5)


def function_count(code: str) -> int:
    return sum(len(p.findall(code)) for p in _FUNCTION_COUNT_PATTERNS)


def duplicated_lines(lines: list[str]) -> int:
    seen: set[str] = set()
    duplicates = 0
    for line in lines:
        normalized = line.strip().lower()
        if len(normalized) <= _MIN_DUPLICATE_LENGTH:
            continue
        if normalized in seen:
            duplicates += 1
        else:
            seen.add(normalized)
    return duplicates


def calculate_metrics(code: str) -> Metrics:
    lines = code.split("\n")
    total = len(lines)
    comments = sum(1 for line in lines if is_comment_line(line))
    code_lines = sum(1 for line in lines if line.strip() and not is_comment_line(line))
    return Metrics(
        total_lines=total,
        code_lines=code_lines,
        comment_lines=comments,
        cyclomatic_complexity=cyclomatic_complexity(code),
        average_lines_per_function=average_lines_per_function(code),
        max_nesting_depth=max_nesting_depth(code),
        function_count=function_count(code),
        duplicated_lines=duplicated_lines(lines),
        comment_ratio=comments / total if total else 0.0,
    )


def _metric_issue(severity: Severity, title: str, message: str, fix: str) -> Issue:
    return Issue(
        source="metrics",
        category=title,
        severity=severity,
        line=1,
        column=1,
        message=message,
        confidence=0.9,
        sub_category="metrics",
        category_key="metrics",
        impact="maintainability",
        kind="quality",
        fix=fix,
    )


def analyze_metrics(
    code: str,
    thresholds: MetricsConfig | None = None,
    *,
    metrics: Metrics | None = None,
) -> list[Issue]:
    """Synthesize threshold-based issues from whole-snippet metrics."""

    t = thresholds or MetricsConfig()
    m = metrics if metrics is not None else calculate_metrics(code)
    issues: list[Issue] = []

    if m.cyclomatic_complexity > t.complexity_critical:
        issues.append(
            _metric_issue(
                Severity.CRITICAL,
                "Extremely High Complexity",
                f"Cyclomatic complexity of {m.cyclomatic_complexity} is extremely high",
                "Break down into smaller functions immediately",
            )
        )
    elif m.cyclomatic_complexity > t.complexity_high:
        issues.append(
            _metric_issue(
                Severity.HIGH,
                "High Complexity",
                f"Cyclomatic complexity of {m.cyclomatic_complexity} is high",
                "Consider refactoring into smaller functions",
            )
        )

    if m.average_lines_per_function > t.function_length:
        issues.append(
            _metric_issue(
                Severity.HIGH,
                "Very Long Functions",
                f"Functions average {m.average_lines_per_function} lines",
                "Break large functions into smaller, focused functions",
            )
        )

    if m.max_nesting_depth > t.nesting_depth:
        issues.append(
            _metric_issue(
                Severity.HIGH,
                "Deep Nesting",
                f"Maximum nesting depth of {m.max_nesting_depth}",
                "Use early returns and extract methods",
            )
        )

    if m.duplicated_lines > m.total_lines * t.duplication_ratio:
        percent = int(m.duplicated_lines / m.total_lines * 100 + 0.5)
        issues.append(
            _metric_issue(
                Severity.MEDIUM,
                "Code Duplication",
                f"{percent}% code duplication detected",
                "Extract common code into reusable functions",
            )
        )

    if m.comment_ratio < t.comment_ratio and m.total_lines > t.comment_min_lines:
        percent = int(m.comment_ratio * 100 + 0.5)
        issues.append(
            _metric_issue(
                Severity.LOW,
                "Insufficient Comments",
                f"Only {percent}% of code is commented",
                "Add explanatory comments for complex logic",
            )
        )

    return issues
