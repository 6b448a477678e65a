"""Orchestrate a run: plan tasks, drive the git workflow and apply the recovery policy."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stagelint import state as policy
from stagelint.config import (
    LoadedConfig,
    group_files_by_config,
    normalize_config,
    resolve_config,
    search_configs,
)
from stagelint.errors import ErrorKind, RunError, TaskFailure, WorkflowError
from stagelint.git.exec import GitCommandError
from stagelint.git.files import get_staged_files
from stagelint.git.repo import NotAGitRepositoryError, has_initial_commit, resolve_git_repo
from stagelint.git.workflow import GitWorkflow
from stagelint.messages import (
    DEPRECATED_GIT_ADD,
    FAILED_TO_GET_STAGED_FILES,
    NO_CONFIG,
    NO_STAGED_FILES,
    NO_TASKS,
    NOT_GIT_REPO,
    TASK_ERROR,
    skipping_backup,
)
from stagelint.state import RunState
from stagelint.tasks.chunks import chunk_files, get_max_arg_length, normalize_path
from stagelint.tasks.executor import (
    CancelToken,
    Signal,
    is_git_command,
    resolve_commands,
    run_task_commands,
)
from stagelint.tasks.planner import generate_tasks
from stagelint.tasks.types import ResolvedCommand, TaskSpec
from stagelint.ui import Reporter

logger = logging.getLogger(__name__)

PREPARE_TITLE = "Preparing stagelint..."
HIDE_TITLE = "Hiding unstaged changes to partially staged files..."
RUN_TASKS_TITLE = "Running tasks for staged files..."
APPLY_TITLE = "Applying modifications from tasks..."
RESTORE_UNSTAGED_TITLE = "Restoring unstaged changes to partially staged files..."
REVERT_TITLE = "Reverting to original state because of errors..."
CLEANUP_TITLE = "Cleaning up temporary files..."


@dataclass(frozen=True)
class RunOptions:
    """Options of one run; see the command-line flags for their meaning."""

    allow_empty: bool = False
    concurrent: bool | int = True
    config_path: Path | None = None
    continue_on_error: bool = False
    cwd: Path | None = None
    debug: bool = False
    diff: str | None = None
    diff_filter: str | None = None
    fail_on_changes: bool = False
    hide_partially_staged: bool | None = None
    hide_unstaged: bool = False
    max_arg_length: int | None = None
    quiet: bool = False
    relative: bool = False
    revert: bool | None = None
    shell: bool = False
    stash: bool = True
    verbose: bool = False

    @property
    def effective_stash(self) -> bool:
        # A diff range never backs up; this also turns off hiding partially staged files.
        return self.stash and not self.diff

    @property
    def effective_hide_partially_staged(self) -> bool:
        if self.hide_partially_staged is None:
            return self.effective_stash
        return self.hide_partially_staged

    @property
    def effective_revert(self) -> bool:
        # Failing on changes keeps the modifications for inspection unless a revert is asked for.
        if self.revert is None:
            return not self.fail_on_changes
        return self.revert


@dataclass(frozen=True)
class TaskGroup:
    """Staged files handled by one configuration and the directory its tasks run in."""

    config: dict[str, TaskSpec]
    cwd: Path
    files: list[str]


@dataclass(frozen=True)
class PlannedTask:
    """One pattern of one chunk, with its matched files and resolved commands."""

    pattern: str
    files: list[str]
    cwd: Path
    commands: list[ResolvedCommand] = field(default_factory=list)

    @property
    def title(self) -> str:
        return f"{self.pattern} - {len(self.files)} file{'' if len(self.files) == 1 else 's'}"


def max_workers(concurrent: bool | int, task_count: int) -> int:
    if concurrent is True:
        return max(task_count, 1)
    if concurrent is False:
        return 1
    return max(min(int(concurrent), max(task_count, 1)), 1)


def plan_chunks(
    groups: Sequence[TaskGroup],
    *,
    top_level_dir: Path,
    max_arg_length: int,
    relative: bool,
) -> tuple[list[list[PlannedTask]], list[str]]:
    """Plan the tasks of every chunk and collect the absolute paths of matched files.

    Each group is chunked on its own, and its tasks run from the group's
    directory. Command functions are called here, so configuration errors
    surface before git is touched.
    """
    planned: list[list[PlannedTask]] = []
    matched: dict[str, None] = {}
    for group in groups:
        chunks = chunk_files(group.files, top_level_dir, max_arg_length=max_arg_length, relative=relative)
        for index, chunk in enumerate(chunks):
            tasks: list[PlannedTask] = []
            for descriptor in generate_tasks(
                group.config,
                cwd=group.cwd,
                top_level_dir=top_level_dir,
                files=chunk,
                relative=relative,
            ):
                for file in descriptor.file_list:
                    matched[normalize_path(str((group.cwd / file).resolve()))] = None
                commands = resolve_commands(descriptor.commands, descriptor.file_list) if descriptor.file_list else []
                tasks.append(
                    PlannedTask(
                        pattern=descriptor.pattern,
                        files=descriptor.file_list,
                        cwd=group.cwd,
                        commands=commands,
                    )
                )
            logger.debug("Planned %d tasks for chunk %d in %s", len(tasks), index, group.cwd)
            planned.append(tasks)
    return planned, list(matched)


def _has_deprecated_git_add(chunks: Sequence[Sequence[PlannedTask]]) -> bool:
    for tasks in chunks:
        for task in tasks:
            for resolved in task.commands:
                if resolved.command and is_git_command(resolved.command):
                    parts = resolved.command.split()
                    if len(parts) > 1 and parts[1] == "add":
                        return True
    return False


class _InterruptHandler:
    """Cancel running tasks on SIGINT while installed; only possible from the main thread."""

    def __init__(self, cancel: CancelToken):
        self.cancel = cancel
        self._previous: Any = None
        self._installed = False

    def __enter__(self) -> _InterruptHandler:
        if threading.current_thread() is threading.main_thread():
            self._previous = signal.signal(signal.SIGINT, self._handle)
            self._installed = True
        return self

    def _handle(self, signum: int, frame: object) -> None:
        logger.debug("Received SIGINT, cancelling tasks")
        self.cancel.cancel(Signal.SIGINT)

    def __exit__(self, *exc_info: object) -> None:
        if self._installed:
            signal.signal(signal.SIGINT, self._previous)


class Runner:
    """Run every phase of one invocation against a shared ``RunState``."""

    def __init__(
        self,
        options: RunOptions,
        *,
        ctx: RunState,
        git: GitWorkflow,
        chunks: list[list[PlannedTask]],
        reporter: Reporter,
    ):
        self.options = options
        self.ctx = ctx
        self.git = git
        self.chunks = chunks
        self.reporter = reporter
        self.cancel = CancelToken()

    def _phase(
        self,
        title: str,
        fn: Callable[[], object],
        *,
        enabled: bool = True,
        skipped: str | None = None,
    ) -> None:
        if not enabled:
            return
        if skipped:
            logger.debug("Skipping phase %r: %s", title, skipped)
            self.reporter.skip_phase(title, skipped)
            return
        logger.debug("Running phase %r", title)
        try:
            self.reporter.run_phase(title, fn)
        except (WorkflowError, TaskFailure) as exc:
            # Already recorded in the run state; later phases decide from it.
            logger.debug("Phase %r failed: %s", title, exc)

    def run(self) -> None:
        ctx = self.ctx
        self._phase(PREPARE_TITLE, lambda: self.git.prepare(ctx))
        self._phase(
            HIDE_TITLE,
            lambda: self.git.hide_unstaged_changes(ctx),
            enabled=policy.has_hidden_changes(ctx),
        )
        self._phase(RUN_TASKS_TITLE, self.run_tasks, skipped=policy.execute_tasks_skipped(ctx))
        self._phase(
            APPLY_TITLE,
            lambda: self.git.apply_modifications(ctx),
            skipped=policy.apply_modifications_skipped(ctx),
        )
        self._phase(
            RESTORE_UNSTAGED_TITLE,
            lambda: self.git.restore_unstaged_changes(ctx),
            enabled=policy.has_hidden_changes(ctx),
            skipped=policy.restore_unstaged_changes_skipped(ctx),
        )
        self._phase(
            REVERT_TITLE,
            lambda: self.git.restore_original_state(ctx),
            enabled=policy.restore_original_state_enabled(ctx),
            skipped=policy.restore_original_state_skipped(ctx),
        )
        self._phase(
            CLEANUP_TITLE,
            lambda: self.git.cleanup(ctx),
            enabled=policy.cleanup_enabled(ctx),
            skipped=policy.cleanup_skipped(ctx),
        )

    def run_tasks(self) -> None:
        """Run chunks one after another; patterns within a chunk run concurrently."""
        with _InterruptHandler(self.cancel):
            for index, tasks in enumerate(self.chunks):
                runnable = [task for task in tasks if task.files]
                if not runnable:
                    continue
                if self.ctx.has_error(ErrorKind.GIT_ERROR) or self.cancel.cancelled:
                    logger.debug("Skipping chunk %d: %s", index, TASK_ERROR)
                    continue
                self._run_chunk(runnable)
        if self.ctx.has_error(ErrorKind.TASK_ERROR):
            raise TaskFailure(RUN_TASKS_TITLE, "TaskError")

    def _run_chunk(self, tasks: list[PlannedTask]) -> None:
        workers = max_workers(self.options.concurrent, len(tasks))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {ex.submit(self._run_task, task): task for task in tasks}
            for fut in as_completed(futures):
                task = futures[fut]
                try:
                    fut.result()
                except TaskFailure as exc:
                    logger.debug("Task %s failed: %s", task.pattern, exc)
                    self.reporter.task_finished(task.title, failed=True)
                else:
                    self.reporter.task_finished(task.title, failed=False)

    def _run_task(self, task: PlannedTask) -> None:
        self.reporter.task_started(task.title)
        run_task_commands(
            task.commands,
            files=task.files,
            cwd=task.cwd,
            top_level_dir=self.git.top_level_dir,
            ctx=self.ctx,
            cancel=self.cancel,
            shell=self.options.shell,
            verbose=self.options.verbose,
            continue_on_error=self.options.continue_on_error,
        )


def _load_configs(
    options: RunOptions,
    config: Mapping[str, Any] | None,
    *,
    cwd: Path,
    top_level_dir: Path,
) -> list[LoadedConfig]:
    """The explicit configuration, or every configuration found in the repository."""
    if config is not None or options.config_path is not None:
        loaded = resolve_config(config=config, config_path=options.config_path, cwd=cwd)
        if loaded is None:
            return []
        logger.debug("Using configuration from %s", loaded.filepath or "(programmatic)")
        found = [loaded]
    else:
        try:
            found = search_configs(cwd, top_level_dir)
        except GitCommandError as exc:
            logger.debug("Failed to search for configuration files: %s", exc)
            return []
        logger.debug("Found %d configuration files", len(found))
    return [LoadedConfig(config=normalize_config(item.config), filepath=item.filepath) for item in found]


def _group_files(
    options: RunOptions,
    configs: list[LoadedConfig],
    staged: list[str],
    *,
    cwd: Path,
    top_level_dir: Path,
) -> list[TaskGroup]:
    if options.config_path is not None or configs[0].filepath is None:
        return [TaskGroup(config=configs[0].config, cwd=cwd, files=staged)]
    groups: list[TaskGroup] = []
    for loaded, files in group_files_by_config(configs, staged, top_level_dir):
        # Tasks run next to their configuration unless a working directory was given.
        group_cwd = loaded.filepath.parent if loaded.filepath is not None and options.cwd is None else cwd
        groups.append(TaskGroup(config=loaded.config, cwd=group_cwd, files=files))
    return groups


def run_all(
    options: RunOptions | None = None,
    *,
    config: Mapping[str, Any] | None = None,
    reporter: Reporter | None = None,
) -> RunState:
    """Run configured tasks against staged files inside a recoverable git transaction.

    Returns the final run state. Raises ``RunError`` when the run ended with
    errors; ``ConfigurationError`` propagates untouched.
    """
    options = options or RunOptions()
    reporter = reporter or Reporter()
    ctx = RunState(
        quiet=options.quiet,
        revert=options.effective_revert,
        hide_partially_staged=options.effective_hide_partially_staged,
        hide_unstaged=options.hide_unstaged,
    )
    cwd = (options.cwd or Path.cwd()).resolve()

    try:
        repo = resolve_git_repo(cwd)
    except NotAGitRepositoryError as exc:
        logger.debug("Failed to resolve git repo: %s", exc)
        ctx.add_error(ErrorKind.GIT_REPO_ERROR)
        reporter.error(NOT_GIT_REPO)
        raise RunError(ctx) from exc

    initial_commit = has_initial_commit(repo.top_level_dir)
    ctx.should_backup = initial_commit and options.effective_stash
    if not ctx.should_backup:
        reporter.warn(skipping_backup(has_initial_commit=initial_commit, diff=options.diff))

    configs = _load_configs(options, config, cwd=cwd, top_level_dir=repo.top_level_dir)
    if not configs:
        ctx.add_error(ErrorKind.CONFIG_NOT_FOUND_ERROR)
        reporter.error(NO_CONFIG)
        raise RunError(ctx)

    try:
        staged = get_staged_files(repo.top_level_dir, diff=options.diff, diff_filter=options.diff_filter)
    except (GitCommandError, OSError) as exc:
        logger.debug("Failed to get staged files: %s", exc)
        ctx.add_error(ErrorKind.GET_STAGED_FILES_ERROR)
        reporter.error(FAILED_TO_GET_STAGED_FILES)
        raise RunError(ctx) from exc

    if not staged:
        reporter.info(NO_STAGED_FILES)
        return ctx

    max_arg_length = options.max_arg_length if options.max_arg_length is not None else get_max_arg_length()
    groups = _group_files(
        options,
        configs,
        [staged_file.filepath for staged_file in staged],
        cwd=cwd,
        top_level_dir=repo.top_level_dir,
    )
    chunks, matched_files = plan_chunks(
        groups,
        top_level_dir=repo.top_level_dir,
        max_arg_length=max_arg_length,
        relative=options.relative,
    )

    if _has_deprecated_git_add(chunks):
        reporter.warn(DEPRECATED_GIT_ADD)

    if not matched_files:
        reporter.info(NO_TASKS)
        return ctx

    git = GitWorkflow(
        top_level_dir=repo.top_level_dir,
        git_config_dir=repo.git_config_dir,
        matched_file_chunks=chunk_files(matched_files, repo.top_level_dir, max_arg_length=max_arg_length),
        allow_empty=options.allow_empty,
        diff=options.diff,
        diff_filter=options.diff_filter,
        fail_on_changes=options.fail_on_changes,
    )
    Runner(options, ctx=ctx, git=git, chunks=chunks, reporter=reporter).run()

    if ctx.errors:
        raise RunError(ctx)
    return ctx
