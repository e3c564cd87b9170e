from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """Raised when an external command fails or its executable is unavailable."""

    def __init__(self, message: str, *, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


ExecError = CommandError


class GitError(CommandError):
    """Raised when a required git operation fails or git is unavailable."""


class CommandRunner(Protocol):
    """
    Capability for running external processes.

    The analysis pipeline never spawns processes itself; workflows that need
    git or linters receive a runner, which tests replace with a fake.
    """

    def run(self, args: Sequence[str], *, cwd: Path | None = None, check: bool = True) -> CommandResult: ...


class SubprocessRunner:
    def __init__(self, *, timeout: float | None = 120.0) -> None:
        self._timeout = timeout

    def run(self, args: Sequence[str], *, cwd: Path | None = None, check: bool = True) -> CommandResult:
        argv = tuple(args)
        logger.debug("running: %s", " ".join(argv))
        try:
            proc = subprocess.run(
                list(argv),
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"{argv[0]} is unavailable") from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(f"command timed out after {self._timeout}s: {' '.join(argv)}") from exc

        result = CommandResult(args=argv, returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
        if check and not result.ok:
            msg = result.stderr.strip() or result.stdout.strip()
            raise CommandError(msg or f"command failed: {' '.join(argv)}", result=result)
        return result


def git_check_output(args: list[str], *, cwd: Path, runner: CommandRunner | None = None) -> str:
    """
    Run a git command and return its stdout.

    Args are passed without the leading `git` (e.g., `['status']`).
    """

    active = runner or SubprocessRunner()
    try:
        return active.run(["git", *args], cwd=cwd).stdout
    except CommandError as exc:
        if isinstance(exc, GitError):
            raise
        raise GitError(str(exc) or f"git command failed: {' '.join(args)}", result=exc.result) from exc
