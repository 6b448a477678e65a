"""stagelint - run tasks against staged git files inside a recoverable transaction."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from stagelint.errors import ErrorKind, RunError
from stagelint.messages import (
    BACKUP_STASH_MISSING,
    FAIL_ON_CHANGES,
    GIT_ERROR,
    PREVENTED_EMPTY_COMMIT,
    restore_patch_example,
    restore_stash_example,
)
from stagelint.runner import RunOptions, run_all
from stagelint.state import RunState
from stagelint.ui import Reporter, make_reporter

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def print_task_output(ctx: RunState, reporter: Reporter) -> None:
    for block in ctx.output:
        reporter.print_output(block)


def report_errors(ctx: RunState, reporter: Reporter) -> None:
    """Print recovery instructions matching the error set of a finished run."""
    if ctx.has_error(ErrorKind.APPLY_EMPTY_COMMIT_ERROR):
        reporter.warn(PREVENTED_EMPTY_COMMIT)
    if ctx.has_error(ErrorKind.FAIL_ON_CHANGES_ERROR):
        reporter.error(FAIL_ON_CHANGES)
    patch = ctx.hidden_changes_patch
    if patch is not None and patch.exists():
        reporter.error(restore_patch_example(patch))
    if ctx.has_error(ErrorKind.GET_BACKUP_STASH_ERROR):
        # There is no stash to restore from.
        reporter.error(BACKUP_STASH_MISSING)
    elif ctx.has_error(ErrorKind.GIT_ERROR) and not ctx.has_error(ErrorKind.APPLY_EMPTY_COMMIT_ERROR):
        reporter.error(GIT_ERROR)
        if ctx.should_backup:
            reporter.error(restore_stash_example(ctx.stash_identifier))


def lint_staged(
    config: Mapping[str, Any] | None = None,
    *,
    reporter: Reporter | None = None,
    **options: Any,
) -> bool:
    """Run stagelint and report the outcome; return whether every task passed.

    ``options`` are the fields of ``RunOptions``. Configuration errors raise
    ``ConfigurationError``.
    """
    run_options = RunOptions(**options)
    reporter = reporter or make_reporter(quiet=run_options.quiet, debug=run_options.debug)
    try:
        ctx = run_all(run_options, config=config, reporter=reporter)
    except RunError as exc:
        logger.debug("Run failed with errors: %s", sorted(str(kind) for kind in exc.ctx.errors))
        print_task_output(exc.ctx, reporter)
        report_errors(exc.ctx, reporter)
        return False
    print_task_output(ctx, reporter)
    return True


__all__ = ["RunOptions", "__version__", "lint_staged", "run_all"]
