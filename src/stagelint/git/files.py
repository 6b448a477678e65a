"""Staged file enumeration and status parsing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from stagelint.git.exec import run_git

logger = logging.getLogger(__name__)

DEFAULT_DIFF_FILTER = "ACMR"


@dataclass(frozen=True)
class StagedFile:
    """A file reported by git, with its one-letter status code."""

    filepath: str
    status: str


@dataclass(frozen=True)
class Rename:
    """A renamed or copied entry: the current name and the one it came from."""

    to: str
    from_: str


@dataclass(frozen=True)
class StatusEntry:
    """One ``git status --porcelain -z`` record."""

    index: str
    worktree: str
    path: str | Rename

    @property
    def is_untracked(self) -> bool:
        return self.index == "?" and self.worktree == "?"

    @property
    def is_partially_staged(self) -> bool:
        """Both index and worktree are dirty and the file is tracked."""
        return self.index not in (" ", "?", "!") and self.worktree not in (" ", "?", "!")

    @property
    def is_unstaged(self) -> bool:
        """Tracked file with worktree changes only."""
        return self.index == " " and self.worktree not in (" ", "?", "!")


def split_z_output(output: str) -> list[str]:
    """Split NUL-separated git output, dropping the trailing terminator."""
    if not output:
        return []
    return output.removesuffix("\0").split("\0")


def expand_paths(paths: list[str | Rename], *, include_rename_from: bool = True) -> list[str]:
    """Expand renames into file names; diffing needs both, restoring only the current name."""
    expanded: list[str] = []
    for path in paths:
        if isinstance(path, Rename):
            expanded.append(path.to)
            if include_rename_from:
                expanded.append(path.from_)
        else:
            expanded.append(path)
    return expanded


def parse_status_z(output: str) -> list[StatusEntry]:
    """Parse ``git status --porcelain -z`` output.

    Renames and copies carry their origin in the following NUL-separated field.
    """
    entries: list[StatusEntry] = []
    fields = split_z_output(output)
    position = 0
    while position < len(fields):
        record = fields[position]
        position += 1
        if len(record) < 4:
            continue
        index, worktree, name = record[0], record[1], record[3:]
        path: str | Rename = name
        if index in ("R", "C") or worktree in ("R", "C"):
            origin = fields[position] if position < len(fields) else name
            position += 1
            path = Rename(to=name, from_=origin)
        entries.append(StatusEntry(index=index, worktree=worktree, path=path))
    return entries


def parse_name_status_z(output: str) -> list[StagedFile]:
    """Parse ``git diff --name-status -z`` output into staged files.

    A rename produces two linked entries, the new name first.
    """
    files: list[StagedFile] = []
    fields = split_z_output(output)
    position = 0
    while position < len(fields):
        status = fields[position][:1]
        position += 1
        if status in ("R", "C"):
            origin, target = fields[position], fields[position + 1]
            position += 2
            files.append(StagedFile(filepath=target, status=status))
            if status == "R":
                files.append(StagedFile(filepath=origin, status="D"))
            continue
        files.append(StagedFile(filepath=fields[position], status=status))
        position += 1
    return files


def diff_args(*, diff: str | None = None, diff_filter: str | None = None) -> list[str]:
    """Arguments for listing changed files between index and HEAD, or a revision range."""
    args = ["diff", "--name-status", "-z", f"--diff-filter={diff_filter or DEFAULT_DIFF_FILTER}"]
    if diff:
        args.extend(diff.split())
    else:
        args.append("--staged")
    return args


def get_staged_files(
    top_level_dir: Path,
    *,
    diff: str | None = None,
    diff_filter: str | None = None,
) -> list[StagedFile]:
    """Return files matching the status filter, relative to the top-level directory.

    Only entries that still exist under the filter are returned; the ``from``
    side of a rename is dropped unless the filter asks for deletions.
    """
    output = run_git(diff_args(diff=diff, diff_filter=diff_filter), cwd=top_level_dir).stdout
    files = parse_name_status_z(output)
    wanted = set(diff_filter or DEFAULT_DIFF_FILTER)
    selected = [staged for staged in files if staged.status in wanted]
    logger.debug("Loaded list of staged files: %s", [staged.filepath for staged in selected])
    return selected


def get_deleted_files(top_level_dir: Path) -> list[Path]:
    """Files present in the index but deleted from the worktree."""
    output = run_git(["ls-files", "--deleted", "-z"], cwd=top_level_dir).stdout
    return [(top_level_dir / name).resolve() for name in split_z_output(output)]


def get_status_entries(top_level_dir: Path) -> list[StatusEntry]:
    """Return the porcelain status of the repository, including every untracked file."""
    output = run_git(
        ["status", "--porcelain", "-z", "--untracked-files=all"],
        cwd=top_level_dir,
    ).stdout
    return parse_status_z(output)
