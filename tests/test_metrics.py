from __future__ import annotations

from codesentry.config import MetricsConfig
from codesentry.engine.metrics import (
    analyze_metrics,
    average_lines_per_function,
    calculate_metrics,
    cyclomatic_complexity,
    duplicated_lines,
    function_count,
    is_comment_line,
    max_nesting_depth,
)
from codesentry.engine.types import Severity


def test_nesting_depth_of_nested_ifs() -> None:
    code = "if (a > 0) { if (b > 0) { if (c > 0) { return a; } } }"
    assert calculate_metrics(code).max_nesting_depth == 3


def test_nesting_depth_ignores_stray_closing_braces() -> None:
    assert max_nesting_depth("} } { }") == 1
    assert max_nesting_depth("no braces") == 0


def test_cyclomatic_complexity_counts_decision_points() -> None:
    assert cyclomatic_complexity("x = 1") == 1
    # `else if` counts as both an `if` and an `else if`.
    assert cyclomatic_complexity("if (a) {} else if (b) {}") == 4
    assert cyclomatic_complexity("ok = a && b || c") == 3
    assert cyclomatic_complexity("for (;;) { while (x) {} }") == 3


def test_comment_lines_and_ratio() -> None:
    m = calculate_metrics("# header\nvalue = 1\n// note\n\n")
    assert m.total_lines == 5
    assert m.comment_lines == 2
    assert m.code_lines == 1
    assert m.comment_ratio == 2 / 5
    assert is_comment_line("   * continued")
    assert not is_comment_line("x = 1  # trailing")


def test_duplicated_lines_skip_short_lines_and_normalize() -> None:
    lines = ["result = compute(1)", "  RESULT = COMPUTE(1)  ", "x = 1", "x = 1", "}"]
    assert duplicated_lines(lines) == 1


def test_function_count_and_average_length() -> None:
    code = "def f():\n    a = 1\n    return a\n\ndef g():\n    pass\n"
    assert function_count(code) == 2
    # (3 + 2) / 2 rounds half up.
    assert average_lines_per_function(code) == 3


def test_average_length_for_brace_functions() -> None:
    code = "function add(a, b) {\n  return a + b;\n}\n"
    assert average_lines_per_function(code) == 3
    assert average_lines_per_function("x = 1") == 0


def test_only_named_arrow_functions_are_measured() -> None:
    named = "const add = (a, b) => {\n  return a + b;\n};\n"
    assert function_count(named) == 1
    assert average_lines_per_function(named) == 3

    anonymous = "items.map((x) => {\n  return x;\n});\n"
    assert function_count(anonymous) == 0
    assert average_lines_per_function(anonymous) == 0


def test_def_span_ends_at_the_first_dedented_line() -> None:
    code = "def f():\n    a = 1\n\n    return a\nprint(f())\n"
    assert average_lines_per_function(code) == 4


def test_no_metric_issues_for_small_clean_code() -> None:
    assert analyze_metrics("const x = 1;\n") == []


def test_high_and_critical_complexity() -> None:
    high = "\n".join(f"if (a{i}) {{}}" for i in range(11))
    critical = "\n".join(f"if (a{i}) {{}}" for i in range(20))

    (issue,) = [i for i in analyze_metrics(high) if "Complexity" in i.category]
    assert issue.severity is Severity.HIGH
    assert issue.message == "Cyclomatic complexity of 12 is high"

    (issue,) = [i for i in analyze_metrics(critical) if "Complexity" in i.category]
    assert issue.severity is Severity.CRITICAL
    assert issue.category == "Extremely High Complexity"


def test_deep_nesting_uses_configured_threshold() -> None:
    code = "if (a > 0) { if (b > 0) { if (c > 0) { return a; } } }"
    assert not [i for i in analyze_metrics(code) if i.category == "Deep Nesting"]

    (issue,) = [i for i in analyze_metrics(code, MetricsConfig(nesting_depth=2)) if i.category == "Deep Nesting"]
    assert issue.message == "Maximum nesting depth of 3"
    assert issue.line == 1
    assert issue.confidence == 0.9
    assert issue.impact == "maintainability"
    assert issue.source == "metrics"


def test_duplication_issue_reports_percentage() -> None:
    code = "\n".join(["total = total + 1"] * 4)
    (issue,) = [i for i in analyze_metrics(code) if i.category == "Code Duplication"]
    assert issue.severity is Severity.MEDIUM
    assert issue.message == "75% code duplication detected"


def test_insufficient_comments_only_for_longer_files() -> None:
    short = "\n".join(f"value_{i} = {i}" for i in range(10))
    long = "\n".join(f"value_{i} = {i}" for i in range(60))

    assert not [i for i in analyze_metrics(short) if i.category == "Insufficient Comments"]
    (issue,) = [i for i in analyze_metrics(long) if i.category == "Insufficient Comments"]
    assert issue.severity is Severity.LOW
    assert issue.message == "Only 0% of code is commented"
