"""Shared run state and the phase enablement/skip policy."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from stagelint.errors import ErrorKind
from stagelint.messages import SKIPPED_GIT_ERROR, TASK_ERROR


def make_stash_identifier() -> str:
    """Time-based identifier embedded in the backup stash message."""
    return str(time.time_ns())


@dataclass
class RunState:
    """Mutable context passed by reference through every phase of one run."""

    quiet: bool = False
    errors: set[ErrorKind] = field(default_factory=set)
    output: list[str] = field(default_factory=list)
    should_backup: bool | None = None
    revert: bool = True
    hide_partially_staged: bool = True
    hide_unstaged: bool = False
    has_partially_staged_files: bool | None = None
    has_unstaged_files: bool | None = None
    has_untracked_files: bool | None = None
    stash_identifier: str = field(default_factory=make_stash_identifier)
    hidden_changes_patch: Path | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_error(self, kind: ErrorKind) -> None:
        with self._lock:
            self.errors.add(kind)

    def has_error(self, kind: ErrorKind) -> bool:
        with self._lock:
            return kind in self.errors

    def append_output(self, text: str) -> None:
        with self._lock:
            self.output.append(text)


def _has_unknown_git_error(ctx: RunState) -> bool:
    return (
        ctx.has_error(ErrorKind.GIT_ERROR)
        and not ctx.has_error(ErrorKind.APPLY_EMPTY_COMMIT_ERROR)
        and not ctx.has_error(ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR)
    )


def has_hidden_changes(ctx: RunState) -> bool:
    """Whether unstaged changes are hidden from tasks and must be restored afterwards."""
    if ctx.hide_unstaged and (
        ctx.has_partially_staged_files or ctx.has_unstaged_files or ctx.has_untracked_files
    ):
        return True
    return bool(ctx.hide_partially_staged and ctx.has_partially_staged_files)


def execute_tasks_skipped(ctx: RunState) -> str | None:
    if ctx.has_error(ErrorKind.GIT_ERROR):
        return SKIPPED_GIT_ERROR
    return None


def apply_modifications_skipped(ctx: RunState) -> str | None:
    # Without a backup the modifications are always applied back.
    if not ctx.should_backup:
        return None
    if ctx.has_error(ErrorKind.GIT_ERROR):
        return SKIPPED_GIT_ERROR
    if ctx.has_error(ErrorKind.TASK_ERROR):
        return TASK_ERROR
    return None


def restore_unstaged_changes_skipped(ctx: RunState) -> str | None:
    if ctx.has_error(ErrorKind.GIT_ERROR):
        return SKIPPED_GIT_ERROR
    # The revert brings hidden changes back itself; without it only the patch holds them.
    if ctx.has_error(ErrorKind.TASK_ERROR) and restore_original_state_enabled(ctx):
        return TASK_ERROR
    return None


def restore_original_state_enabled(ctx: RunState) -> bool:
    return bool(
        ctx.should_backup
        and ctx.revert
        and (
            ctx.has_error(ErrorKind.TASK_ERROR)
            or ctx.has_error(ErrorKind.APPLY_EMPTY_COMMIT_ERROR)
            or ctx.has_error(ErrorKind.FAIL_ON_CHANGES_ERROR)
            or ctx.has_error(ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR)
        )
    )


def restore_original_state_skipped(ctx: RunState) -> str | None:
    if _has_unknown_git_error(ctx):
        return SKIPPED_GIT_ERROR
    return None


def cleanup_enabled(ctx: RunState) -> bool:
    return bool(ctx.should_backup)


def cleanup_skipped(ctx: RunState) -> str | None:
    if _has_unknown_git_error(ctx):
        return SKIPPED_GIT_ERROR
    # Keep the stash when reverting failed, it is the only copy left.
    if ctx.has_error(ErrorKind.RESTORE_ORIGINAL_STATE_ERROR):
        return SKIPPED_GIT_ERROR
    # Hidden changes that were neither restored nor reverted live only in the stash and the patch.
    if ctx.has_error(ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR) and not restore_original_state_enabled(ctx):
        return SKIPPED_GIT_ERROR
    return None
