from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import click
import typer
from rich.console import Console

from codesentry import __version__
from codesentry.config import CodeSentryConfig, ConfigError, load_config
from codesentry.engine.aggregation import at_or_above
from codesentry.engine.detection import Analyzer, build_analyzer, iter_source_files
from codesentry.engine.types import FileReport, Severity
from codesentry.logging_utils import configure_logging
from codesentry.reporters.json_reporter import render_json
from codesentry.reporters.markdown import render_markdown
from codesentry.reporters.terminal import render_terminal

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="CodeSentry: rule-based code quality and security analyzer.",
)
console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

STDIN_PATH = "<stdin>"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def _main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose logs (printed to stderr)."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Reduce non-essential output."),
    ] = False,
) -> None:
    """CodeSentry CLI."""

    if verbose and quiet:
        raise typer.BadParameter("Choose at most one: --verbose or --quiet.")
    configure_logging(verbose=verbose, quiet=quiet)
    ctx.obj = {"verbose": verbose, "quiet": quiet}


def _cli_settings() -> dict[str, bool]:
    ctx = click.get_current_context(silent=True)
    if ctx is None or not isinstance(ctx.obj, dict):
        return {"verbose": False, "quiet": False}
    return {"verbose": bool(ctx.obj.get("verbose", False)), "quiet": bool(ctx.obj.get("quiet", False))}


ProjectOption = Annotated[
    Path,
    typer.Option(
        "--project",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Directory whose pyproject.toml holds [tool.codesentry] (default: current directory).",
    ),
]


def _load_config_or_exit(project: Path) -> CodeSentryConfig:
    try:
        return load_config(project)
    except ConfigError as exc:
        err_console.print(f"Invalid configuration: {exc}")
        raise typer.Exit(code=2) from exc


def _load_analyzer(project: Path) -> Analyzer:
    return build_analyzer(_load_config_or_exit(project))


def _read_input(path: str) -> tuple[str, str]:
    if path == "-":
        return STDIN_PATH, sys.stdin.read()
    p = Path(path)
    try:
        return path, p.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise typer.BadParameter(f"Cannot read {path}: {exc}") from exc


def _emit_output(fmt: str, *, reports: list[FileReport], console: Console) -> None:
    normalized = fmt.strip().lower()
    if normalized == "terminal":
        render_terminal(reports, console=console, show_details=not _cli_settings()["quiet"])
        return
    if normalized == "json":
        typer.echo(render_json(reports))
        return
    if normalized == "markdown":
        typer.echo(render_markdown(reports))
        return
    raise typer.BadParameter("Unsupported format. Use: terminal, json, markdown.")


@app.command()
def analyze(
    path: Annotated[
        str,
        typer.Argument(help="File or directory to analyze, or '-' to read code from stdin."),
    ],
    language: Annotated[
        str | None,
        typer.Option("--language", "-l", help="Language hint (used when the file extension is unknown)."),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: terminal, json, markdown.", show_default=True),
    ] = "terminal",
    fail_on: Annotated[
        str | None,
        typer.Option("--fail-on", help="Exit with code 1 when an issue at or above this severity exists."),
    ] = None,
    workers: Annotated[
        int,
        typer.Option("--workers", min=1, help="Parallel workers for directory analysis."),
    ] = 1,
    project: ProjectOption = Path("."),
) -> None:
    """
    Analyze code for quality and security issues.
    """

    threshold: Severity | None = None
    if fail_on is not None:
        try:
            threshold = Severity.parse(fail_on)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--fail-on") from exc

    analyzer = _load_analyzer(project)

    reports: list[FileReport]
    target = Path(path)
    if path != "-" and target.is_dir():
        from codesentry.languages.registry import supported_extensions

        files = list(iter_source_files(target, extensions=supported_extensions()))
        reports = [
            FileReport(path=p.relative_to(target).as_posix(), result=r)
            for p, r in analyzer.analyze_files(files, workers=workers)
        ]
    else:
        display, code = _read_input(path)
        file_path = None if path == "-" else path
        reports = [FileReport(path=display, result=analyzer.analyze(code, language, file_path=file_path))]

    _emit_output(output_format, reports=reports, console=console)

    if threshold is not None:
        failing = [i for r in reports for i in at_or_above(r.result.issues, threshold)]
        if failing:
            err_console.print(f"{len(failing)} issue(s) at or above {threshold.value}.")
            raise typer.Exit(code=1)


@app.command()
def rules(
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: terminal, json.", show_default=True),
    ] = "terminal",
    project: ProjectOption = Path("."),
) -> None:
    """
    List loaded rule collections and their per-category pattern counts.
    """

    from rich.table import Table

    analyzer = _load_analyzer(project)

    rows = []
    for collection in analyzer.collections:
        for category in collection.iter_categories():
            if not category.patterns:
                continue
            rows.append(
                {
                    "collection": collection.name,
                    "kind": collection.kind,
                    "category": category.key,
                    "title": category.title,
                    "severity": category.severity.value,
                    "patterns": len(category.patterns),
                }
            )

    normalized = output_format.strip().lower()
    if normalized == "json":
        typer.echo(json.dumps(rows, indent=2))
        return
    if normalized != "terminal":
        raise typer.BadParameter("Unsupported format. Use: terminal, json.")

    table = Table(title="CodeSentry Rules")
    table.add_column("Collection", style="bold")
    table.add_column("Kind")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Patterns", justify="right")
    for row in rows:
        table.add_row(
            str(row["collection"]),
            str(row["kind"]),
            str(row["title"]),
            str(row["severity"]),
            str(row["patterns"]),
        )
    console.print(table)
    console.print(f"Total: {sum(int(r['patterns']) for r in rows)} pattern(s)")


@app.command()
def detect(
    path: Annotated[str, typer.Argument(help="File to classify, or '-' for stdin.")],
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: terminal, json.", show_default=True),
    ] = "terminal",
    project: ProjectOption = Path("."),
) -> None:
    """
    Print the effective language and detected frameworks of a file.
    """

    from codesentry.languages.registry import detect_frameworks, resolve_language

    config = _load_config_or_exit(project)
    display, code = _read_input(path)
    file_path = None if path == "-" else path
    language = resolve_language(code, file_path=file_path, default=config.default_language)
    frameworks = detect_frameworks(code, file_path)

    if output_format.strip().lower() == "json":
        typer.echo(json.dumps({"path": display, "language": language, "frameworks": list(frameworks)}, indent=2))
        return
    console.print(f"{display}: [bold]{language}[/bold]" + (f" ({', '.join(frameworks)})" if frameworks else ""))


@app.command("diff-position")
def diff_position(
    diff_file: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, help="Unified diff of a single file."),
    ],
    line: Annotated[int, typer.Argument(min=1, help="1-based line number in the new version of the file.")],
    count_hunk_headers: Annotated[
        bool | None,
        typer.Option(
            "--count-hunk-headers/--no-count-hunk-headers",
            help="Let each later hunk header take a position (default from config).",
        ),
    ] = None,
    project: ProjectOption = Path("."),
) -> None:
    """
    Map a new-file line number to its position in a diff.
    """

    from codesentry.gitdiff import map_line_to_position

    config = _load_config_or_exit(project)
    headers = config.github.count_hunk_headers if count_hunk_headers is None else count_hunk_headers
    diff_text = diff_file.read_text(encoding="utf-8", errors="replace")
    position = map_line_to_position(diff_text, line, count_hunk_headers=headers)
    if position is None:
        err_console.print(f"Line {line} is not part of the diff.")
        raise typer.Exit(code=1)
    typer.echo(str(position))


@app.command("review-pr")
def review_pr(
    base: Annotated[str, typer.Option("--base", help="Base ref or SHA.")],
    head: Annotated[str, typer.Option("--head", help="Head ref or SHA.")] = "HEAD",
    repository: Annotated[str | None, typer.Option("--repository", help="owner/name on GitHub.")] = None,
    pull_number: Annotated[int | None, typer.Option("--pull-number", min=1, help="Pull request number.")] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", envvar="GITHUB_TOKEN", help="GitHub token (default: $GITHUB_TOKEN)."),
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Print comments instead of posting them.")] = False,
    max_comments: Annotated[
        int | None,
        typer.Option("--max-comments", min=1, help="Inline comment limit (default from config)."),
    ] = None,
    project: ProjectOption = Path("."),
) -> None:
    """
    Analyze files changed between two refs and comment on the pull request.
    """

    from codesentry.action import RecordingSink, ReviewSink, review_pull_request
    from codesentry.action_github import GitHubReviewSink
    from codesentry.git import GitError, git_check_output

    analyzer = _load_analyzer(project)

    sink: ReviewSink
    if dry_run:
        sink = RecordingSink()
    else:
        if not (repository and pull_number and token):
            raise typer.BadParameter("--repository, --pull-number and --token are required unless --dry-run is set.")
        try:
            commit_id = git_check_output(["rev-parse", head], cwd=project).strip()
        except GitError as exc:
            err_console.print(f"Cannot resolve {head}: {exc}")
            raise typer.Exit(code=2) from exc
        sink = GitHubReviewSink(token=token, repository=repository, pull_number=pull_number, commit_id=commit_id)

    try:
        result = review_pull_request(
            analyzer,
            base=base,
            head=head,
            workspace=project,
            sink=sink,
            max_comments=max_comments,
        )
    except GitError as exc:
        err_console.print(f"git failed: {exc}")
        raise typer.Exit(code=2) from exc

    if isinstance(sink, RecordingSink):
        for comment in sink.review_comments:
            console.rule(f"{comment['path']} (position {comment['position']})")
            console.print(comment["body"], markup=False)
        for body in sink.summary_comments:
            console.rule("summary")
            console.print(body, markup=False)

    console.print(
        f"{result.files_analyzed} file(s), {len(result.findings)} finding(s), "
        f"{len(result.mapped)} on diff lines, {result.comments_posted} comment(s)"
        + (", summary posted" if result.summary_posted else "")
    )


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", min=1, max=65535, help="Port to listen on.")] = 3000,
    project: ProjectOption = Path("."),
) -> None:
    """
    Run the HTTP analysis API.
    """

    from codesentry.server import serve as run_server

    run_server(_load_analyzer(project), host=host, port=port)
