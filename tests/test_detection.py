from __future__ import annotations

from pathlib import Path
from types import MappingProxyType

import pytest

from codesentry.config import CodeSentryConfig, MetricsConfig, RulesConfig
from codesentry.engine.detection import Analyzer, build_analyzer, iter_source_files
from codesentry.engine.types import Issue, Severity
from codesentry.rules.base import count_rules
from codesentry.rules.registry import RuleRepository, RuleSource


def _names(collections) -> list[str]:
    return [c.name for c in collections]


def test_analyzer_is_immutable(analyzer: Analyzer) -> None:
    with pytest.raises(AttributeError):
        analyzer.collections = ()  # type: ignore[misc]


def test_general_collections_always_apply(analyzer: Analyzer) -> None:
    selected = analyzer.collections_for("x = 1", "python", ())
    assert _names(selected) == ["core", "extended", "owasp"]


def test_framework_collection_is_restricted_to_detected_frameworks(analyzer: Analyzer) -> None:
    (framework,) = [c for c in analyzer.collections_for("x", "javascript", ("react",)) if c.framework_scoped]
    assert list(framework.categories) == ["react"]


def test_database_patterns_added_when_database_code_present(analyzer: Analyzer) -> None:
    (framework,) = [
        c for c in analyzer.collections_for("db.query('SELECT 1')", "javascript", ()) if c.framework_scoped
    ]
    assert list(framework.categories) == ["database_patterns"]


def test_language_collection_applies_for_language_or_web_framework(analyzer: Analyzer) -> None:
    assert "language:csharp" in _names(analyzer.collections_for("x", "csharp", ()))
    assert "language:csharp" not in _names(analyzer.collections_for("x", "java", ()))
    assert "language:csharp" in _names(analyzer.collections_for("x", "javascript", ("csharp-web",)))


def test_analyze_reports_language_frameworks_and_rules_applied(analyzer: Analyzer) -> None:
    code = "import React from 'react';\nconst App = () => { eval(userInput); };\n"
    result = analyzer.analyze(code, file_path="App.jsx")

    assert result.language == "javascript"
    assert result.frameworks == ("react",)
    expected = sum(count_rules(c) for c in analyzer.collections_for(code, "javascript", ("react",)))
    assert result.rules_applied == expected
    assert result.metrics.total_lines == 3


def test_analyze_splits_quality_and_security_issues(analyzer: Analyzer) -> None:
    code = 'const q = "SELECT * FROM users WHERE id = " + req.params.id;\n'
    result = analyzer.analyze(code, "javascript")

    assert all(i.kind == "security" for i in result.security_issues)
    assert all(i.kind == "quality" for i in result.quality_issues)
    assert set(result.issues) <= set(result.quality_issues) | set(result.security_issues)
    assert analyzer.analyze_security(code, "javascript") == result.security_issues
    assert analyzer.analyze_quality(code, "javascript") == result.quality_issues


def test_extra_issues_are_merged_into_quality(analyzer: Analyzer) -> None:
    extra = Issue(
        source="flake8",
        category="Lint",
        severity=Severity.HIGH,
        line=1,
        column=1,
        message="F401: 'os' imported but unused",
        confidence=0.8,
    )
    result = analyzer.analyze("import os\n", "python", extra_issues=[extra])
    assert extra in result.quality_issues
    assert extra in result.issues


def test_metric_thresholds_come_from_config() -> None:
    config = CodeSentryConfig(metrics=MetricsConfig(nesting_depth=1))
    analyzer = build_analyzer(config, repository=RuleRepository([]))
    result = analyzer.analyze("if (a) { if (b) { go(); } }", "javascript")
    assert [i.category for i in result.issues] == ["Deep Nesting"]
    assert result.rules_applied == 0


def test_reload_builds_a_fresh_analyzer(tmp_path: Path) -> None:
    rules = tmp_path / "team.json"
    rules.write_text('{"team": {"patterns": [{"pattern": "todo", "description": "Todo"}]}}', encoding="utf-8")
    config = CodeSentryConfig(
        rules=RulesConfig(
            sources=(), extra=MappingProxyType({"team": str(rules)})
        ),
    )
    first = build_analyzer(config)
    assert count_rules(first.collections[0]) == 1

    rules.write_text(
        '{"team": {"patterns": [{"pattern": "todo", "description": "Todo"}, {"pattern": "fixme", "description": "Fixme"}]}}',
        encoding="utf-8",
    )
    assert count_rules(first.collections[0]) == 1
    assert count_rules(first.reload().collections[0]) == 2


def test_analyze_files_skips_unreadable_and_reports_progress(tmp_path: Path) -> None:
    a = tmp_path / "a.py"
    a.write_text("x = 1\n", encoding="utf-8")
    missing = tmp_path / "missing.py"
    analyzer = build_analyzer(repository=RuleRepository([]))

    seen: list[Path] = []
    results = analyzer.analyze_files([a, missing], workers=2, on_file_done=seen.append)

    assert [p for p, _ in results] == [a]
    assert results[0][1].language == "python"
    assert seen == [a, missing]


def test_iter_source_files_skips_hidden_and_vendored(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.ts").write_text("", encoding="utf-8")
    (tmp_path / "src" / "notes.md").write_text("", encoding="utf-8")
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)
    (tmp_path / "node_modules" / "lib" / "index.js").write_text("", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "hook.py").write_text("", encoding="utf-8")

    found = [p.relative_to(tmp_path).as_posix() for p in iter_source_files(tmp_path, extensions={".ts", ".js", ".py"})]
    assert found == ["src/app.ts"]


def test_missing_source_yields_no_applicable_collections(tmp_path: Path) -> None:
    repo = RuleRepository([RuleSource("missing", tmp_path / "nope.json")])
    analyzer = build_analyzer(repository=repo)
    assert analyzer.collections_for("x", "javascript", ()) == ()
