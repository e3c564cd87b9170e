from __future__ import annotations

import json
from pathlib import Path

import pytest
from helpers import FakeRunner

from codesentry.action import (
    RecordingSink,
    _as_bool,
    _as_int,
    _ensure_git_object,
    _get_input,
    _load_event,
    main,
    review_pull_request,
)
from codesentry.action_github import comment_key
from codesentry.config import CodeSentryConfig
from codesentry.engine.detection import Analyzer, build_analyzer
from codesentry.git import GitError
from codesentry.rules.registry import RuleRepository, RuleSource

CHANGED = ["git", "diff", "--name-only", "--diff-filter=AM", "main...HEAD"]
APP_DIFF = ["git", "diff", "--no-color", "main...HEAD", "--", "app.js"]

APP_SOURCE = "const a = 1;\neval(x);\neval(y);\n"
NEW_FILE_DIFF = (
    "diff --git a/app.js b/app.js\n--- /dev/null\n+++ b/app.js\n@@ -0,0 +1,3 @@\n"
    "+const a = 1;\n+eval(x);\n+eval(y);\n"
)
FIRST_LINE_DIFF = "--- a/app.js\n+++ b/app.js\n@@ -1 +1 @@\n-let a = 1;\n+const a = 1;\n"


@pytest.fixture
def team_analyzer(tmp_path: Path) -> Analyzer:
    rules = tmp_path / "rules" / "team.json"
    rules.parent.mkdir()
    rules.write_text(
        json.dumps(
            {
                "team": {
                    "severity": "HIGH",
                    "patterns": [
                        {"pattern": r"eval\(", "description": "Use of eval", "fix": "Avoid eval"},
                        {"pattern": r"\(x\)", "description": "Argument named x"},
                    ],
                }
            }
        ),
        encoding="utf-8",
    )
    return build_analyzer(CodeSentryConfig(), repository=RuleRepository([RuleSource("team", rules)]))


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "app.js").write_text(APP_SOURCE, encoding="utf-8")
    return ws


def _runner(diff: str) -> FakeRunner:
    runner = FakeRunner()
    runner.add(CHANGED, stdout="app.js\nREADME.md\nmissing.js\n")
    runner.add(APP_DIFF, stdout=diff)
    return runner


def test_findings_on_diff_lines_become_grouped_inline_comments(team_analyzer: Analyzer, workspace: Path) -> None:
    sink = RecordingSink()
    result = review_pull_request(
        team_analyzer, base="main", head="HEAD", workspace=workspace, sink=sink, runner=_runner(NEW_FILE_DIFF)
    )

    assert result.files_analyzed == 1
    assert result.skipped_files == ("missing.js",)
    assert len(result.findings) == 3
    assert result.comments_posted == 2
    assert not result.summary_posted

    assert [(c["path"], c["position"]) for c in sink.review_comments] == [("app.js", 2), ("app.js", 3)]
    first = sink.review_comments[0]["body"]
    assert "Team: Use of eval" in first
    assert "Team: Argument named x" in first
    assert "Fix: Avoid eval" in first
    assert "<!-- codesentry:v1 key=" in first
    assert sink.summary_comments == []


def test_existing_comments_are_not_reposted(team_analyzer: Analyzer, workspace: Path) -> None:
    sink = RecordingSink(keys={comment_key(path="app.js", line=2)})
    result = review_pull_request(
        team_analyzer, base="main", head="HEAD", workspace=workspace, sink=sink, runner=_runner(NEW_FILE_DIFF)
    )

    assert result.comments_posted == 1
    assert [c["position"] for c in sink.review_comments] == [3]


def test_comment_limit(team_analyzer: Analyzer, workspace: Path) -> None:
    sink = RecordingSink()
    result = review_pull_request(
        team_analyzer,
        base="main",
        head="HEAD",
        workspace=workspace,
        sink=sink,
        runner=_runner(NEW_FILE_DIFF),
        max_comments=1,
    )
    assert result.comments_posted == 1
    assert len(result.mapped) == 3


def test_summary_comment_when_no_finding_maps_to_the_diff(team_analyzer: Analyzer, workspace: Path) -> None:
    sink = RecordingSink()
    result = review_pull_request(
        team_analyzer, base="main", head="HEAD", workspace=workspace, sink=sink, runner=_runner(FIRST_LINE_DIFF)
    )

    assert result.mapped == ()
    assert result.summary_posted
    assert result.comments_posted == 0
    assert sink.review_comments == []
    (body,) = sink.summary_comments
    assert "Found **3** issue(s)" in body
    assert "`app.js:2`" in body

    again = review_pull_request(
        team_analyzer, base="main", head="HEAD", workspace=workspace, sink=sink, runner=_runner(FIRST_LINE_DIFF)
    )
    assert not again.summary_posted
    assert len(sink.summary_comments) == 1


def test_unreadable_diff_skips_the_file(team_analyzer: Analyzer, workspace: Path) -> None:
    runner = FakeRunner()
    runner.add(CHANGED, stdout="app.js\n")
    runner.fail(APP_DIFF, "bad revision")

    result = review_pull_request(
        team_analyzer, base="main", head="HEAD", workspace=workspace, sink=RecordingSink(), runner=runner
    )
    assert result.files_analyzed == 0
    assert result.skipped_files == ("app.js",)


def test_changed_file_listing_failure_propagates(team_analyzer: Analyzer, workspace: Path) -> None:
    with pytest.raises(GitError):
        review_pull_request(
            team_analyzer, base="main", head="HEAD", workspace=workspace, sink=RecordingSink(), runner=FakeRunner()
        )


def test_ensure_git_object_fetches_missing_commit(tmp_path: Path) -> None:
    runner = FakeRunner()
    runner.fail(["git", "cat-file", "-e", "abc^{commit}"], "missing")
    runner.add(["git", "remote"], stdout="upstream\norigin\n")
    runner.add(["git", "fetch", "--no-tags", "--depth=1", "origin", "abc"])

    _ensure_git_object("abc", cwd=tmp_path, runner=runner)

    assert runner.calls[-1] == ("git", "fetch", "--no-tags", "--depth=1", "origin", "abc")


def test_input_helpers(monkeypatch) -> None:
    monkeypatch.setenv("INPUT_MAX_COMMENTS", "7")
    assert _get_input("max-comments", "50") == "7"
    assert _get_input("comment", "true") == "true"
    assert _as_bool("Yes", default=False) is True
    assert _as_bool("maybe", default=False) is False
    assert _as_int("0", default=50) == 50
    assert _as_int("x", default=50) == 50
    assert _as_int(" 12 ", default=50) == 12


def test_load_event(tmp_path: Path) -> None:
    event = tmp_path / "event.json"
    event.write_text(json.dumps({"pull_request": {"number": 1}}), encoding="utf-8")
    assert _load_event(event) == {"pull_request": {"number": 1}}

    event.write_text("[]", encoding="utf-8")
    assert _load_event(event) is None
    assert _load_event(tmp_path / "missing.json") is None


def test_main_without_pull_request_event_is_a_no_op(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GITHUB_WORKSPACE", str(tmp_path))
    monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)
    main()


def test_main_exits_on_invalid_config(monkeypatch, tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("[tool.codesentry]\ndefault-language = 'cobol'\n", encoding="utf-8")
    monkeypatch.setenv("GITHUB_WORKSPACE", str(tmp_path))

    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 2
