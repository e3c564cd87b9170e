from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Protocol, cast

from codesentry.action_github import (
    GitHubReviewSink,
    comment_key,
    comment_marker,
    summary_key,
    summary_marker,
)
from codesentry.action_markdown import render_comment_body, render_summary_body, write_step_summary
from codesentry.config import ConfigError, load_config
from codesentry.engine.detection import Analyzer, build_analyzer
from codesentry.engine.types import Issue
from codesentry.git import CommandRunner, GitError, SubprocessRunner, git_check_output
from codesentry.gitdiff import changed_files, file_diff, parse_diff
from codesentry.languages.registry import supported_extensions
from codesentry.linters import run_linters
from codesentry.logging_utils import configure_logging

logger = logging.getLogger(__name__)


class ReviewSink(Protocol):
    def existing_keys(self) -> set[str]: ...

    def post_review_comment(self, *, path: str, position: int, body: str, key: str) -> bool: ...

    def post_summary_comment(self, *, body: str, key: str) -> bool: ...


@dataclass
class RecordingSink:
    """Collects comments instead of posting them (`--dry-run` and tests)."""

    keys: set[str] = field(default_factory=set)
    review_comments: list[dict[str, Any]] = field(default_factory=list)
    summary_comments: list[str] = field(default_factory=list)

    def existing_keys(self) -> set[str]:
        return set(self.keys)

    def post_review_comment(self, *, path: str, position: int, body: str, key: str) -> bool:
        self.review_comments.append({"path": path, "position": position, "body": body, "key": key})
        self.keys.add(key)
        return True

    def post_summary_comment(self, *, body: str, key: str) -> bool:
        self.summary_comments.append(body)
        self.keys.add(key)
        return True


@dataclass(frozen=True, slots=True)
class Finding:
    path: str
    issue: Issue
    # None when the issue's line is not part of the diff.
    position: int | None


@dataclass(frozen=True, slots=True)
class ReviewResult:
    files_analyzed: int
    findings: tuple[Finding, ...]
    comments_posted: int = 0
    summary_posted: bool = False
    skipped_files: tuple[str, ...] = ()

    @property
    def mapped(self) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.position is not None)


def _is_supported(path: str) -> bool:
    return PurePath(path).suffix.lower() in supported_extensions()


def review_pull_request(
    analyzer: Analyzer,
    *,
    base: str,
    head: str,
    workspace: Path,
    sink: ReviewSink,
    runner: CommandRunner | None = None,
    max_comments: int | None = None,
) -> ReviewResult:
    """
    Analyze the files changed between `base...head` and publish findings.

    Findings whose line appears in the file's diff become inline comments,
    grouped per diff position. When there are findings but none of them maps
    to a diff line, one summary comment is posted instead. A file whose diff or
    content cannot be read is skipped. Raises GitError when the changed-file
    list itself cannot be computed.
    """

    active = runner or SubprocessRunner()
    config = analyzer.config
    limit = max_comments if max_comments is not None else config.github.max_comments

    files = [p for p in changed_files(base, head, cwd=workspace, runner=active) if _is_supported(p)]
    lint = run_linters(files, config=config.linters, cwd=workspace, runner=active) if files else {}

    findings: list[Finding] = []
    skipped: list[str] = []
    analyzed = 0
    for path in files:
        try:
            text = (workspace / path).read_text(encoding="utf-8", errors="replace")
            diff = file_diff(base, head, path, cwd=workspace, runner=active)
        except (OSError, GitError) as exc:
            logger.warning("skipping %s: %s", path, exc)
            skipped.append(path)
            continue

        parsed = parse_diff(diff, count_hunk_headers=config.github.count_hunk_headers)
        result = analyzer.analyze(text, file_path=path, extra_issues=lint.get(path, ()))
        analyzed += 1
        for issue in result.issues:
            findings.append(Finding(path=path, issue=issue, position=parsed.position_for_line(issue.line)))

    logger.info("%d file(s) analyzed, %d finding(s)", analyzed, len(findings))

    mapped = [f for f in findings if f.position is not None]
    if findings and not mapped:
        summary_posted = _post_summary(findings, sink=sink)
        return ReviewResult(analyzed, tuple(findings), 0, summary_posted, tuple(skipped))

    posted = _post_inline(mapped, sink=sink, limit=limit)
    return ReviewResult(analyzed, tuple(findings), posted, False, tuple(skipped))


def _post_inline(mapped: Iterable[Finding], *, sink: ReviewSink, limit: int) -> int:
    grouped: dict[tuple[str, int], list[Finding]] = {}
    for finding in mapped:
        if finding.position is None:
            continue
        grouped.setdefault((finding.path, finding.position), []).append(finding)

    if not grouped:
        return 0

    existing = sink.existing_keys()
    posted = 0
    for (path, position), items in sorted(grouped.items()):
        if posted >= limit:
            logger.info("comment limit (%d) reached", limit)
            break
        line = items[0].issue.line
        key = comment_key(path=path, line=line)
        if key in existing:
            continue
        body = render_comment_body([f.issue for f in items], marker=comment_marker(key=key, path=path, line=line))
        if sink.post_review_comment(path=path, position=position, body=body, key=key):
            posted += 1

    if posted:
        logger.info("Posted %d CodeSentry review comment(s).", posted)
    return posted


def _post_summary(findings: Sequence[Finding], *, sink: ReviewSink) -> bool:
    fingerprint = "\n".join(sorted(f"{f.path}:{f.issue.line}:{f.issue.message}" for f in findings))
    key = summary_key(fingerprint)
    if key in sink.existing_keys():
        return False
    body = render_summary_body([(f.path, f.issue) for f in findings], marker=summary_marker(key=key))
    ok = sink.post_summary_comment(body=body, key=key)
    if ok:
        logger.info("No finding maps to a diff line; posted a summary comment.")
    return ok


def main() -> None:
    """GitHub Action entry point (`python -m codesentry.action`)."""

    configure_logging(verbose=_as_bool(_get_input("verbose", "false"), default=False), quiet=False)
    workspace = Path(os.environ.get("GITHUB_WORKSPACE", ".")).resolve()

    try:
        config = load_config(workspace)
    except ConfigError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc

    max_comments = _as_int(_get_input("max-comments", str(config.github.max_comments)), default=config.github.max_comments)
    comment = _as_bool(_get_input("comment", "true"), default=True)

    event = _load_event(Path(os.environ.get("GITHUB_EVENT_PATH", "")))
    pr = event.get("pull_request") if event else None
    if not isinstance(pr, dict):
        logger.info("Not a pull_request event; nothing to review.")
        return

    pull = cast(dict[str, Any], pr)
    pull_number = int(pull["number"])
    base_sha = str(cast(dict[str, Any], pull["base"])["sha"])
    head_sha = str(cast(dict[str, Any], pull["head"])["sha"])

    runner = SubprocessRunner()
    _ensure_git_object(base_sha, cwd=workspace, runner=runner)
    _ensure_git_object(head_sha, cwd=workspace, runner=runner)

    token = _get_input("github-token", "").strip() or os.environ.get("GITHUB_TOKEN", "")
    repo = os.environ.get("GITHUB_REPOSITORY", "")

    sink: ReviewSink
    if comment and token and repo:
        sink = GitHubReviewSink(token=token, repository=repo, pull_number=pull_number, commit_id=head_sha)
    else:
        if comment:
            logger.warning("PR commenting requested, but GITHUB_TOKEN/GITHUB_REPOSITORY is missing.")
        sink = RecordingSink()

    analyzer = build_analyzer(config)
    try:
        result = review_pull_request(
            analyzer,
            base=base_sha,
            head=head_sha,
            workspace=workspace,
            sink=sink,
            runner=runner,
            max_comments=max_comments,
        )
    except GitError as exc:
        logger.error("could not list changed files: %s", exc)
        raise SystemExit(1) from exc

    write_step_summary(
        files_analyzed=result.files_analyzed,
        findings=[(f.path, f.issue) for f in result.findings],
        comments_posted=result.comments_posted,
    )


def _ensure_git_object(sha: str, *, cwd: Path, runner: CommandRunner) -> None:
    try:
        git_check_output(["cat-file", "-e", f"{sha}^{{commit}}"], cwd=cwd, runner=runner)
        return
    except GitError:
        pass
    try:
        remotes = git_check_output(["remote"], cwd=cwd, runner=runner).split()
    except GitError:
        return
    if not remotes:
        return
    remote = "origin" if "origin" in remotes else remotes[0]
    try:
        git_check_output(["fetch", "--no-tags", "--depth=1", remote, sha], cwd=cwd, runner=runner)
    except GitError as exc:
        logger.warning("could not fetch %s: %s", sha, exc)


def _load_event(path: Path) -> dict[str, Any] | None:
    if not path.name or not path.exists() or path.is_dir():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeError):
        return None
    if not isinstance(data, dict):
        return None
    return cast(dict[str, Any], data)


def _get_input(name: str, default: str) -> str:
    candidates = (
        f"INPUT_{name.upper()}",
        f"INPUT_{name.upper().replace('-', '_')}",
    )
    for key in candidates:
        value = os.environ.get(key)
        if value is not None:
            return value
    return default


def _as_bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _as_int(value: str, *, default: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


if __name__ == "__main__":
    main()
