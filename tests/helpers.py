from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from codesentry.engine.types import Issue, Severity
from codesentry.git import CommandError, CommandResult


def make_issue(
    *,
    line: int = 1,
    message: str = "Example: something is off",
    severity: Severity = Severity.MEDIUM,
    confidence: float = 0.8,
    source: str = "core",
    kind: str = "quality",
) -> Issue:
    return Issue(
        source=source,
        category="Example",
        severity=severity,
        line=line,
        column=1,
        message=message,
        confidence=confidence,
        kind=kind,  # type: ignore[arg-type]
    )


class FakeRunner:
    """Command runner returning canned results keyed by the exact argv."""

    def __init__(self) -> None:
        self.responses: dict[tuple[str, ...], CommandResult | Exception] = {}
        self.calls: list[tuple[str, ...]] = []

    def add(self, args: Sequence[str], *, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        argv = tuple(args)
        self.responses[argv] = CommandResult(args=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def fail(self, args: Sequence[str], message: str = "boom") -> None:
        self.responses[tuple(args)] = CommandError(message)

    def run(self, args: Sequence[str], *, cwd: Path | None = None, check: bool = True) -> CommandResult:
        argv = tuple(args)
        self.calls.append(argv)
        response = self.responses.get(argv)
        if response is None:
            raise CommandError(f"unexpected command: {' '.join(argv)}")
        if isinstance(response, Exception):
            raise response
        if check and not response.ok:
            raise CommandError(response.stderr or "failed", result=response)
        return response
