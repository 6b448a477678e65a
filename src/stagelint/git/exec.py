"""Command runner for the git binary."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Never recurse into submodules, whatever the user's git config says.
GIT_SAFETY_FLAGS: tuple[str, ...] = ("-c", "submodule.recurse=false")


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for a git invocation."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class GitCommandError(RuntimeError):
    """Raised when git returns non-zero."""

    def __init__(self, result: ExecResult):
        rendered = " ".join(result.argv)
        super().__init__(f"command failed ({result.returncode}): {rendered}\n{result.output}".rstrip())
        self.result = result


def git_env() -> dict[str, str]:
    """Environment for git: drop ``GIT_DIR`` so the repository is resolved from ``cwd``."""
    env = dict(os.environ)
    env.pop("GIT_DIR", None)
    return env


def run_git(
    args: list[str],
    *,
    cwd: Path,
    check: bool = True,
) -> ExecResult:
    """Run git with the safety flags and capture its output."""
    argv = ["git", *GIT_SAFETY_FLAGS, *args]
    logger.debug("Running git command %s in %s", args, cwd)
    completed = subprocess.run(
        argv,
        cwd=cwd,
        env=git_env(),
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="surrogateescape",
        check=False,
    )
    result = ExecResult(
        argv=tuple(argv),
        cwd=cwd,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if check and result.returncode != 0:
        raise GitCommandError(result)
    return result


def exec_git(args: list[str], *, cwd: Path) -> str:
    """Run git and return its stdout with surrounding whitespace removed."""
    return run_git(args, cwd=cwd).stdout.strip()
