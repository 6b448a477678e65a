"""Tests for the phase enablement and skip policy."""

from __future__ import annotations

import threading

import pytest

from stagelint import state as policy
from stagelint.errors import ErrorKind, RunError, WorkflowError, fail
from stagelint.messages import SKIPPED_GIT_ERROR, TASK_ERROR
from stagelint.state import RunState


def _ctx(*kinds: ErrorKind, **kwargs) -> RunState:
    ctx = RunState(**kwargs)
    for kind in kinds:
        ctx.add_error(kind)
    return ctx


def test_stash_identifier_is_time_based() -> None:
    assert RunState().stash_identifier.isdigit()
    assert RunState(stash_identifier="x").stash_identifier == "x"


def test_errors_are_additive_under_concurrency() -> None:
    ctx = RunState()
    kinds = list(ErrorKind)

    def add(kind: ErrorKind) -> None:
        for _ in range(100):
            ctx.add_error(kind)
            ctx.append_output(str(kind))

    threads = [threading.Thread(target=add, args=(kind,)) for kind in kinds]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ctx.errors == set(kinds)
    assert len(ctx.output) == 100 * len(kinds)


def test_fail_tags_git_error_and_kind() -> None:
    ctx = RunState()
    error = fail(ctx, OSError("disk full"), ErrorKind.HIDE_UNSTAGED_CHANGES_ERROR)
    assert isinstance(error, WorkflowError)
    assert str(error) == "disk full"
    assert ctx.errors == {ErrorKind.GIT_ERROR, ErrorKind.HIDE_UNSTAGED_CHANGES_ERROR}


def test_fail_merges_kinds_of_workflow_errors() -> None:
    ctx = RunState()
    original = WorkflowError("missing", (ErrorKind.GET_BACKUP_STASH_ERROR,))
    error = fail(ctx, original)
    assert error is original
    assert error.kinds == (ErrorKind.GET_BACKUP_STASH_ERROR, ErrorKind.GIT_ERROR)


def test_run_error_lists_kinds() -> None:
    ctx = _ctx(ErrorKind.TASK_ERROR, ErrorKind.GIT_ERROR)
    assert str(RunError(ctx)) == "stagelint run failed: GitError, TaskError"


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"hide_partially_staged": True, "has_partially_staged_files": True}, True),
        ({"hide_partially_staged": False, "has_partially_staged_files": True}, False),
        ({"hide_partially_staged": True, "has_partially_staged_files": False, "has_unstaged_files": True}, False),
        ({"hide_unstaged": True, "has_untracked_files": True}, True),
        ({"hide_unstaged": True, "has_unstaged_files": True}, True),
        ({"hide_unstaged": True}, False),
    ],
)
def test_has_hidden_changes(kwargs: dict, expected: bool) -> None:
    assert policy.has_hidden_changes(RunState(**kwargs)) is expected


def test_execute_tasks_skipped_only_on_git_error() -> None:
    assert policy.execute_tasks_skipped(_ctx()) is None
    assert policy.execute_tasks_skipped(_ctx(ErrorKind.GIT_ERROR)) == SKIPPED_GIT_ERROR


def test_apply_modifications_skipped() -> None:
    assert policy.apply_modifications_skipped(_ctx(should_backup=True)) is None
    assert policy.apply_modifications_skipped(_ctx(ErrorKind.GIT_ERROR, should_backup=True)) == SKIPPED_GIT_ERROR
    assert policy.apply_modifications_skipped(_ctx(ErrorKind.TASK_ERROR, should_backup=True)) == TASK_ERROR
    # Without a backup there is nothing to revert to, so modifications are always kept.
    assert policy.apply_modifications_skipped(_ctx(ErrorKind.TASK_ERROR, should_backup=False)) is None


def test_restore_unstaged_changes_skipped() -> None:
    assert policy.restore_unstaged_changes_skipped(_ctx()) is None
    assert policy.restore_unstaged_changes_skipped(_ctx(ErrorKind.GIT_ERROR)) == SKIPPED_GIT_ERROR
    assert policy.restore_unstaged_changes_skipped(_ctx(ErrorKind.TASK_ERROR, should_backup=True)) == TASK_ERROR


def test_restore_unstaged_changes_runs_after_task_error_without_revert() -> None:
    no_revert = _ctx(ErrorKind.TASK_ERROR, should_backup=True, revert=False)
    assert policy.restore_unstaged_changes_skipped(no_revert) is None
    no_backup = _ctx(ErrorKind.TASK_ERROR, should_backup=False)
    assert policy.restore_unstaged_changes_skipped(no_backup) is None


@pytest.mark.parametrize(
    ("kinds", "kwargs", "expected"),
    [
        ((), {"should_backup": True}, False),
        ((ErrorKind.TASK_ERROR,), {"should_backup": True}, True),
        ((ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR,), {"should_backup": True}, True),
        ((ErrorKind.APPLY_EMPTY_COMMIT_ERROR,), {"should_backup": True}, True),
        ((ErrorKind.TASK_ERROR,), {"should_backup": False}, False),
        ((ErrorKind.TASK_ERROR,), {"should_backup": True, "revert": False}, False),
        ((ErrorKind.GIT_ERROR,), {"should_backup": True}, False),
    ],
)
def test_restore_original_state_enabled(kinds: tuple, kwargs: dict, expected: bool) -> None:
    assert policy.restore_original_state_enabled(_ctx(*kinds, **kwargs)) is expected


def test_restore_original_state_skipped_on_unknown_git_error() -> None:
    assert policy.restore_original_state_skipped(_ctx(ErrorKind.TASK_ERROR)) is None
    assert policy.restore_original_state_skipped(_ctx(ErrorKind.GIT_ERROR)) == SKIPPED_GIT_ERROR
    known = _ctx(ErrorKind.GIT_ERROR, ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR)
    assert policy.restore_original_state_skipped(known) is None
    empty = _ctx(ErrorKind.GIT_ERROR, ErrorKind.APPLY_EMPTY_COMMIT_ERROR)
    assert policy.restore_original_state_skipped(empty) is None


def test_cleanup_policy() -> None:
    assert policy.cleanup_enabled(_ctx(should_backup=True))
    assert not policy.cleanup_enabled(_ctx(should_backup=False))
    assert policy.cleanup_skipped(_ctx(ErrorKind.TASK_ERROR)) is None
    assert policy.cleanup_skipped(_ctx(ErrorKind.GIT_ERROR)) == SKIPPED_GIT_ERROR
    failed_revert = _ctx(
        ErrorKind.GIT_ERROR,
        ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR,
        ErrorKind.RESTORE_ORIGINAL_STATE_ERROR,
    )
    assert policy.cleanup_skipped(failed_revert) == SKIPPED_GIT_ERROR


def test_cleanup_keeps_backup_when_hidden_changes_were_not_restored() -> None:
    unrestored = _ctx(ErrorKind.GIT_ERROR, ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR, should_backup=True, revert=False)
    assert policy.cleanup_skipped(unrestored) == SKIPPED_GIT_ERROR
    # Reverting brings the hidden changes back from the stash.
    reverted = _ctx(ErrorKind.GIT_ERROR, ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR, should_backup=True)
    assert policy.cleanup_skipped(reverted) is None


def test_changes_under_fail_on_changes_trigger_revert() -> None:
    assert policy.restore_original_state_enabled(_ctx(ErrorKind.FAIL_ON_CHANGES_ERROR, should_backup=True))
    assert not policy.restore_original_state_enabled(
        _ctx(ErrorKind.FAIL_ON_CHANGES_ERROR, should_backup=True, revert=False)
    )
    assert policy.apply_modifications_skipped(_ctx(ErrorKind.FAIL_ON_CHANGES_ERROR, should_backup=True)) is None
