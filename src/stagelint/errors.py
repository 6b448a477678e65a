"""Failure taxonomy accumulated in the run state."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stagelint.state import RunState


class ErrorKind(Enum):
    """Closed set of failure tags; several may coexist in one run."""

    GIT_REPO_ERROR = "GitRepoError"
    GET_STAGED_FILES_ERROR = "GetStagedFilesError"
    CONFIG_NOT_FOUND_ERROR = "ConfigNotFoundError"
    APPLY_EMPTY_COMMIT_ERROR = "ApplyEmptyCommitError"
    GIT_ERROR = "GitError"
    HIDE_UNSTAGED_CHANGES_ERROR = "HideUnstagedChangesError"
    RESTORE_UNSTAGED_CHANGES_ERROR = "RestoreUnstagedChangesError"
    RESTORE_ORIGINAL_STATE_ERROR = "RestoreOriginalStateError"
    RESTORE_MERGE_STATUS_ERROR = "RestoreMergeStatusError"
    GET_BACKUP_STASH_ERROR = "GetBackupStashError"
    TASK_ERROR = "TaskError"
    FAIL_ON_CHANGES_ERROR = "FailOnChangesError"

    def __str__(self) -> str:
        return self.value


class ConfigurationError(ValueError):
    """Raised for invalid task configuration; never recovered from."""


class WorkflowError(RuntimeError):
    """Raised by a git workflow phase after it tagged the run state."""

    def __init__(self, message: str, kinds: tuple[ErrorKind, ...] = ()):
        super().__init__(message)
        self.kinds = kinds


class TaskFailure(RuntimeError):
    """Raised when a task command fails; ``TaskError`` is already recorded."""

    def __init__(self, command: str, tag: str):
        super().__init__(f"{command} [{tag}]")
        self.command = command
        self.tag = tag


class RunError(RuntimeError):
    """Raised by ``run_all`` when the run finished with errors."""

    def __init__(self, ctx: RunState):
        kinds = ", ".join(sorted(str(kind) for kind in ctx.errors))
        super().__init__(f"stagelint run failed: {kinds}")
        self.ctx = ctx


def fail(ctx: RunState, error: BaseException, kind: ErrorKind | None = None) -> WorkflowError:
    """Tag ``ctx`` with ``GitError`` (and ``kind``) and wrap ``error`` for re-raising."""
    ctx.add_error(ErrorKind.GIT_ERROR)
    kinds: tuple[ErrorKind, ...] = (ErrorKind.GIT_ERROR,)
    if kind is not None:
        ctx.add_error(kind)
        kinds = (ErrorKind.GIT_ERROR, kind)
    if isinstance(error, WorkflowError):
        error.kinds = tuple(dict.fromkeys((*error.kinds, *kinds)))
        return error
    return WorkflowError(str(error), kinds)
