"""Backup, hide, apply and restore git state around task execution."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from pathlib import Path

from stagelint.errors import ErrorKind, WorkflowError, fail
from stagelint.git.exec import ExecResult, GitCommandError, run_git
from stagelint.git.files import (
    DEFAULT_DIFF_FILTER,
    Rename,
    expand_paths,
    get_deleted_files,
    get_status_entries,
)
from stagelint.messages import STASH_MESSAGE, stash_message
from stagelint.state import RunState

logger = logging.getLogger(__name__)

MERGE_HEAD = "MERGE_HEAD"
MERGE_MODE = "MERGE_MODE"
MERGE_MSG = "MERGE_MSG"

PATCH_UNSTAGED = "stagelint_unstaged.patch"

GIT_DIFF_ARGS = [
    "--binary",
    "--unified=0",
    "--no-color",
    "--no-ext-diff",
    "--src-prefix=a/",
    "--dst-prefix=b/",
    "--patch",
    "--submodule=short",
]
GIT_APPLY_ARGS = ["-v", "--whitespace=nowarn", "--recount", "--unidiff-zero"]

# git commands that take the index lock.
_INDEX_COMMANDS = frozenset({"add", "stash", "reset", "checkout", "apply", "rm"})


class GitWorkflow:
    """State machine wrapping task execution in a recoverable git transaction.

    Phases run in order: ``prepare``, ``hide_unstaged_changes``, the tasks,
    ``apply_modifications``, ``restore_unstaged_changes``,
    ``restore_original_state`` and ``cleanup``. Each phase tags the run state
    and re-raises on failure; the orchestrator decides which later phases run.
    """

    def __init__(
        self,
        *,
        top_level_dir: Path,
        git_config_dir: Path,
        matched_file_chunks: Sequence[Sequence[str]] = (),
        allow_empty: bool = False,
        diff: str | None = None,
        diff_filter: str | None = None,
        fail_on_changes: bool = False,
    ):
        self.top_level_dir = top_level_dir
        self.git_config_dir = git_config_dir
        self.matched_file_chunks = [list(chunk) for chunk in matched_file_chunks]
        self.allow_empty = allow_empty
        self.diff = diff
        self.diff_filter = diff_filter
        self.fail_on_changes = fail_on_changes
        self.index_tree: str | None = None

        self.partially_staged_files: list[str | Rename] = []
        self.unstaged_files: list[str | Rename] = []
        self.untracked_files: list[str] = []
        self.deleted_files: list[Path] = []
        self.merge_head: bytes | None = None
        self.merge_mode: bytes | None = None
        self.merge_msg: bytes | None = None
        self._index_lock = threading.Lock()

        self.merge_head_file = git_config_dir / MERGE_HEAD
        self.merge_mode_file = git_config_dir / MERGE_MODE
        self.merge_msg_file = git_config_dir / MERGE_MSG

    def exec_git(self, args: list[str]) -> ExecResult:
        """Run git in the top-level directory, one index-locking command at a time."""
        if args and args[0] in _INDEX_COMMANDS:
            with self._index_lock:
                return run_git(args, cwd=self.top_level_dir)
        return run_git(args, cwd=self.top_level_dir)

    def get_hidden_filepath(self, filename: str = PATCH_UNSTAGED) -> Path:
        return self.git_config_dir / filename

    @property
    def patch_path(self) -> Path:
        return self.get_hidden_filepath(PATCH_UNSTAGED)

    def get_backup_stash(self, ctx: RunState) -> str:
        """Find this run's backup stash by message; stash indices shift, so never assume one."""
        marker = stash_message(ctx.stash_identifier)
        stashes = self.exec_git(["stash", "list"]).stdout.splitlines()
        for index, line in enumerate(stashes):
            if marker in line:
                return f"stash@{{{index}}}"
        ctx.add_error(ErrorKind.GET_BACKUP_STASH_ERROR)
        raise WorkflowError(f"{STASH_MESSAGE} is missing!", (ErrorKind.GET_BACKUP_STASH_ERROR,))

    # Merge state

    def backup_merge_status(self) -> None:
        """Snapshot the files git uses to track an in-progress merge."""
        logger.debug("Backing up merge state...")
        self.merge_head = _read_bytes(self.merge_head_file)
        self.merge_mode = _read_bytes(self.merge_mode_file)
        self.merge_msg = _read_bytes(self.merge_msg_file)
        logger.debug("Done backing up merge state!")

    def restore_merge_status(self, ctx: RunState) -> None:
        """Write back the merge state snapshot, which stashing may have cleared."""
        logger.debug("Restoring merge state...")
        try:
            for path, content in (
                (self.merge_head_file, self.merge_head),
                (self.merge_mode_file, self.merge_mode),
                (self.merge_msg_file, self.merge_msg),
            ):
                if content is not None:
                    path.write_bytes(content)
        except OSError as exc:
            logger.debug("Failed restoring merge state: %s", exc)
            raise fail(
                ctx,
                WorkflowError("Merge state could not be restored due to an error!"),
                ErrorKind.RESTORE_MERGE_STATUS_ERROR,
            ) from exc
        logger.debug("Done restoring merge state!")

    # File sets

    def classify_files(self) -> None:
        """Split dirty files into partially staged, unstaged-only and untracked sets."""
        self.partially_staged_files = []
        self.unstaged_files = []
        self.untracked_files = []
        for entry in get_status_entries(self.top_level_dir):
            if entry.is_untracked:
                self.untracked_files.append(expand_paths([entry.path])[0])
            elif entry.is_partially_staged:
                self.partially_staged_files.append(entry.path)
            elif entry.is_unstaged:
                self.unstaged_files.append(entry.path)
        logger.debug(
            "Found %d partially staged, %d unstaged and %d untracked files",
            len(self.partially_staged_files),
            len(self.unstaged_files),
            len(self.untracked_files),
        )

    def hidden_tracked_files(self, ctx: RunState) -> list[str | Rename]:
        files: list[str | Rename] = []
        if ctx.hide_partially_staged or ctx.hide_unstaged:
            files.extend(self.partially_staged_files)
        if ctx.hide_unstaged:
            files.extend(self.unstaged_files)
        return files

    def hidden_untracked_files(self, ctx: RunState) -> list[str]:
        return list(self.untracked_files) if ctx.hide_unstaged else []

    # Phases

    def prepare(self, ctx: RunState) -> None:
        """Write the hidden-changes patch and create the backup stash."""
        try:
            logger.debug("Backing up original state...")
            self.classify_files()
            ctx.has_partially_staged_files = bool(self.partially_staged_files)
            ctx.has_unstaged_files = bool(self.unstaged_files)
            ctx.has_untracked_files = bool(self.untracked_files)

            tracked = self.hidden_tracked_files(ctx)
            untracked = self.hidden_untracked_files(ctx)
            if tracked or untracked:
                self.write_hidden_changes_patch(tracked, untracked)
                ctx.hidden_changes_patch = self.patch_path

            if ctx.should_backup:
                # Stashing may clear the merge state, so snapshot it first.
                self.backup_merge_status()
                # Some git versions resurrect files deleted in the worktree when applying a stash.
                self.deleted_files = get_deleted_files(self.top_level_dir)
                stash_args = ["stash", "push", "--quiet", "--message", stash_message(ctx.stash_identifier)]
                if untracked:
                    stash_args.append("--include-untracked")
                self.exec_git(stash_args)
                # Keep the stash but bring back index and worktree for the tasks.
                self.exec_git(["stash", "apply", "--quiet", "--index", self.get_backup_stash(ctx)])
                self.restore_merge_status(ctx)
            if self.fail_on_changes:
                self.index_tree = self.write_index_tree()
            logger.debug("Done backing up original state!")
        except (GitCommandError, WorkflowError, OSError) as exc:
            raise fail(ctx, exc) from exc

    def write_hidden_changes_patch(self, tracked: list[str | Rename], untracked: list[str]) -> None:
        """Write one binary-safe patch holding every change about to be hidden."""
        if untracked:
            # Intent-to-add makes untracked files appear in the diff without staging them.
            self.exec_git(["add", "--intent-to-add", "--", *untracked])
        try:
            files = [*expand_paths(tracked), *untracked]
            self.exec_git(["diff", *GIT_DIFF_ARGS, "--output", str(self.patch_path), "--", *files])
        finally:
            if untracked:
                self.exec_git(["reset", "--quiet", "--", *untracked])
        logger.debug("Wrote hidden changes to %s", self.patch_path)

    def hide_unstaged_changes(self, ctx: RunState) -> None:
        """Discard hidden worktree edits, keeping the staged content for the tasks."""
        try:
            tracked = expand_paths(self.hidden_tracked_files(ctx), include_rename_from=False)
            if tracked:
                self.exec_git(["checkout", "--force", "--", *tracked])
            for name in self.hidden_untracked_files(ctx):
                (self.top_level_dir / name).unlink(missing_ok=True)
        except (GitCommandError, OSError) as exc:
            raise fail(ctx, exc, ErrorKind.HIDE_UNSTAGED_CHANGES_ERROR) from exc

    def apply_modifications(self, ctx: RunState) -> None:
        """Stage task modifications chunk by chunk and refuse an empty result."""
        logger.debug("Adding task modifications to index...")
        try:
            # The index lock is exclusive, so chunks are added one after another.
            for files in self.matched_file_chunks:
                if files:
                    self.exec_git(["add", "--", *files])
            logger.debug("Done adding task modifications to index!")

            staged_after_add = self.exec_git(self.diff_command()).stdout
        except GitCommandError as exc:
            raise fail(ctx, exc) from exc
        if not staged_after_add.strip("\0\n ") and not self.allow_empty:
            raise fail(
                ctx,
                WorkflowError("Prevented an empty git commit!"),
                ErrorKind.APPLY_EMPTY_COMMIT_ERROR,
            )
        if self.index_tree is not None:
            try:
                changed = self.write_index_tree() != self.index_tree
            except GitCommandError as exc:
                raise fail(ctx, exc) from exc
            if changed:
                # Not a git error, so later phases still run.
                ctx.add_error(ErrorKind.FAIL_ON_CHANGES_ERROR)
                raise WorkflowError("Tasks modified files", (ErrorKind.FAIL_ON_CHANGES_ERROR,))

    def write_index_tree(self) -> str:
        """Object id of the tree the index currently describes."""
        return self.exec_git(["write-tree"]).stdout.strip()

    def diff_command(self) -> list[str]:
        args = ["diff", "--name-only", "-z", f"--diff-filter={self.diff_filter or DEFAULT_DIFF_FILTER}"]
        if self.diff:
            return [*args, *self.diff.split()]
        return [*args, "--staged"]

    def restore_unstaged_changes(self, ctx: RunState) -> None:
        """Apply the hidden changes back, retrying with a 3-way merge on conflict."""
        logger.debug("Restoring unstaged changes...")
        patch = str(self.patch_path)
        try:
            self.exec_git(["apply", *GIT_APPLY_ARGS, patch])
        except GitCommandError as apply_error:
            logger.debug("Error while restoring changes: %s", apply_error)
            logger.debug("Retrying with 3-way merge")
            try:
                self.exec_git(["apply", *GIT_APPLY_ARGS, "--3way", patch])
            except GitCommandError as three_way_error:
                logger.debug("Error while restoring unstaged changes using 3-way merge: %s", three_way_error)
                raise fail(
                    ctx,
                    WorkflowError("Unstaged changes could not be restored due to a merge conflict!"),
                    ErrorKind.RESTORE_UNSTAGED_CHANGES_ERROR,
                ) from three_way_error
        self.remove_patch()
        logger.debug("Done restoring unstaged changes!")

    def restore_original_state(self, ctx: RunState) -> None:
        """Hard-reset and re-apply the backup stash."""
        logger.debug("Restoring original state...")
        try:
            self.exec_git(["reset", "--hard", "HEAD"])
            self.exec_git(["stash", "apply", "--quiet", "--index", self.get_backup_stash(ctx)])
            self.restore_merge_status(ctx)
            for path in self.deleted_files:
                path.unlink(missing_ok=True)
            self.remove_patch()
        except (GitCommandError, WorkflowError, OSError) as exc:
            raise fail(ctx, exc, ErrorKind.RESTORE_ORIGINAL_STATE_ERROR) from exc
        logger.debug("Done restoring original state!")

    def cleanup(self, ctx: RunState) -> None:
        """Drop the backup stash."""
        logger.debug("Dropping backup stash...")
        try:
            self.exec_git(["stash", "drop", "--quiet", self.get_backup_stash(ctx)])
            self.remove_patch()
        except (GitCommandError, WorkflowError, OSError) as exc:
            raise fail(ctx, exc) from exc
        logger.debug("Done dropping backup stash!")

    def remove_patch(self) -> None:
        self.patch_path.unlink(missing_ok=True)


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
