"""Repository discovery for stagelint runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from stagelint.git.exec import GitCommandError, exec_git, run_git

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitRepo:
    """Top-level working directory and control directory of a repository."""

    top_level_dir: Path
    git_config_dir: Path


class NotAGitRepositoryError(RuntimeError):
    """Raised when the starting directory is not inside a git work tree."""


def resolve_git_config_dir(top_level_dir: Path) -> Path:
    """Resolve the control directory, following ``gitdir:`` files of worktrees and submodules."""
    default_dir = top_level_dir / ".git"
    if default_dir.is_dir():
        return default_dir.resolve()
    if default_dir.is_file():
        content = default_dir.read_text(encoding="utf-8").strip()
        if content.startswith("gitdir:"):
            return (top_level_dir / content.removeprefix("gitdir:").strip()).resolve()
    # Fall back to git itself, e.g. for GIT_DIR-less bare layouts.
    absolute = exec_git(["rev-parse", "--absolute-git-dir"], cwd=top_level_dir)
    return Path(absolute).resolve()


def resolve_git_repo(cwd: Path | None = None) -> GitRepo:
    """Resolve repository paths from ``cwd`` or the process working directory."""
    probe = (cwd or Path.cwd()).resolve()
    logger.debug("Resolving git repo from %s", probe)
    try:
        out = exec_git(["rev-parse", "--show-toplevel"], cwd=probe)
    except (GitCommandError, OSError) as exc:
        raise NotAGitRepositoryError(f"unable to resolve git repo root from {probe}: {exc}") from exc
    if not out:
        raise NotAGitRepositoryError(f"unable to resolve git repo root from {probe}: empty output")

    top_level_dir = Path(out).resolve()
    git_config_dir = resolve_git_config_dir(top_level_dir)
    logger.debug("Resolved top-level directory %s, control directory %s", top_level_dir, git_config_dir)
    return GitRepo(top_level_dir=top_level_dir, git_config_dir=git_config_dir)


def has_initial_commit(top_level_dir: Path) -> bool:
    """Return whether HEAD points at a commit."""
    return run_git(["log", "-1"], cwd=top_level_dir, check=False).returncode == 0
