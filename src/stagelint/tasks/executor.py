"""Spawn task commands, capture their output and classify the outcome."""

from __future__ import annotations

import logging
import os
import re
import shlex
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path

from stagelint.errors import ConfigurationError, ErrorKind, TaskFailure
from stagelint.messages import task_failed_without_output, task_output_title
from stagelint.state import RunState
from stagelint.tasks.types import (
    CommandFunction,
    FunctionTask,
    ResolvedCommand,
    ShellSequence,
    ShellTask,
    TaskSpec,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05
_GIT_BINARY_RE = re.compile(r"^git(\.exe)?$", re.IGNORECASE)


class Signal(str, Enum):
    """Reasons a cancellation can carry."""

    SIGINT = "SIGINT"
    SIGKILL = "SIGKILL"


class CancelToken:
    """Cancellation shared by every task of one run; the first reason wins."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Signal | None = None

    def cancel(self, reason: Signal) -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
                logger.debug("Cancelling running tasks (%s)", reason.value)
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Signal | None:
        with self._lock:
            return self._reason


def kill_process_tree(process: subprocess.Popen[str], *, is_win32: bool | None = None) -> None:
    """Forcefully end ``process`` together with all its descendants."""
    if not process.pid:
        return
    win32 = sys.platform == "win32" if is_win32 is None else is_win32
    try:
        if win32:
            subprocess.run(
                ["taskkill", "/pid", str(process.pid), "/T", "/F"],
                capture_output=True,
                check=False,
            )
        else:
            # Each task leads its own session, so its pid is the process group id.
            os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError) as exc:
        logger.debug("Failed to kill process tree of pid %d: %s", process.pid, exc)


def resolve_commands(task: TaskSpec, files: Sequence[str]) -> list[ResolvedCommand]:
    """Turn a configured task into runnable commands for ``files``."""
    if isinstance(task, FunctionTask):
        return [ResolvedCommand(title=task.title, handler=task.handler)]
    if isinstance(task, ShellTask):
        return [ResolvedCommand(title=task.command, command=task.command)]
    if isinstance(task, CommandFunction):
        # Pass a copy so the function cannot mutate the matched file list.
        resolved = task.fn(list(files))
        commands = [resolved] if isinstance(resolved, str) else resolved
        if not isinstance(commands, (list, tuple)) or not all(isinstance(cmd, str) and cmd.strip() for cmd in commands):
            raise ConfigurationError(
                f"Function task should return a non-empty string or an array of them, got {resolved!r}"
            )
        return [ResolvedCommand(title=cmd, command=cmd, is_generated=True) for cmd in commands]
    if isinstance(task, ShellSequence):
        sequence: list[ResolvedCommand] = []
        for item in task.commands:
            sequence.extend(resolve_commands(item, files))
        return sequence
    raise ConfigurationError(f"Unsupported task configuration: {task!r}")


def is_git_command(command: str) -> bool:
    """Whether the command's binary is the git executable itself."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()
    return bool(tokens) and bool(_GIT_BINARY_RE.match(Path(tokens[0]).name))


def _record_output(ctx: RunState, title: str, output: str, *, failed: bool, tag: str | None = None) -> None:
    text = output.rstrip("\n")
    if text:
        blocks = [text] if ctx.quiet else ["", task_output_title(title, failed=failed), text]
        ctx.append_output("\n".join(blocks))
    elif failed:
        ctx.append_output(("" if ctx.quiet else "\n") + task_failed_without_output(title, tag or "FAILED"))


def _fail(
    ctx: RunState,
    cancel: CancelToken,
    title: str,
    output: str,
    tag: str,
    *,
    continue_on_error: bool,
) -> TaskFailure:
    ctx.add_error(ErrorKind.TASK_ERROR)
    _record_output(ctx, title, output, failed=True, tag=tag)
    if not continue_on_error:
        cancel.cancel(Signal.SIGKILL)
    return TaskFailure(title, tag)


def _spawn(
    args: list[str] | str,
    *,
    cwd: Path,
    shell: bool,
) -> subprocess.Popen[str]:
    kwargs: dict[str, object] = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True
    return subprocess.Popen(  # type: ignore[call-overload]
        args,
        cwd=cwd,
        shell=shell,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
        **kwargs,
    )


def _exit_tag(returncode: int) -> str:
    if returncode < 0:
        try:
            return signal.Signals(-returncode).name
        except ValueError:
            return f"signal {-returncode}"
    return str(returncode)


def run_command(
    resolved: ResolvedCommand,
    *,
    files: Sequence[str],
    cwd: Path,
    top_level_dir: Path,
    ctx: RunState,
    cancel: CancelToken,
    shell: bool = False,
    verbose: bool = False,
    continue_on_error: bool = False,
) -> None:
    """Run one resolved command against ``files``; raise ``TaskFailure`` when it fails."""
    if cancel.cancelled:
        # Never started: the run is already being torn down.
        ctx.add_error(ErrorKind.TASK_ERROR)
        raise TaskFailure(resolved.title, (cancel.reason or Signal.SIGKILL).value)

    if resolved.handler is not None:
        _run_handler(
            resolved.handler,
            resolved.title,
            files=files,
            ctx=ctx,
            cancel=cancel,
            continue_on_error=continue_on_error,
        )
        return

    command = resolved.command or ""
    # git subcommands behave the same wherever stagelint was started.
    spawn_cwd = top_level_dir if is_git_command(command) else cwd
    args: list[str] | str
    if shell:
        args = command if resolved.is_generated else " ".join([command, *files])
    else:
        try:
            tokens = shlex.split(command)
        except ValueError as exc:
            raise _fail(ctx, cancel, resolved.title, str(exc), "EINVAL", continue_on_error=continue_on_error) from exc
        if not tokens:
            raise _fail(ctx, cancel, resolved.title, "", "EINVAL", continue_on_error=continue_on_error)
        args = tokens if resolved.is_generated else [*tokens, *files]
    logger.debug("Spawning %s in %s", args if shell else args[:1], spawn_cwd)

    try:
        process = _spawn(args, cwd=spawn_cwd, shell=shell)
    except OSError as exc:
        logger.debug("Failed to spawn %s: %s", command, exc)
        tag = "ENOENT" if isinstance(exc, FileNotFoundError) else type(exc).__name__
        raise _fail(ctx, cancel, resolved.title, "", tag, continue_on_error=continue_on_error) from exc

    killed_reason: Signal | None = None
    while True:
        try:
            output, _ = process.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if killed_reason is None and cancel.cancelled:
                killed_reason = cancel.reason or Signal.SIGKILL
                kill_process_tree(process)

    if killed_reason is not None:
        raise _fail(
            ctx,
            cancel,
            resolved.title,
            output or "",
            killed_reason.value,
            continue_on_error=continue_on_error,
        )
    if process.returncode != 0:
        raise _fail(
            ctx,
            cancel,
            resolved.title,
            output or "",
            _exit_tag(process.returncode),
            continue_on_error=continue_on_error,
        )
    if verbose:
        _record_output(ctx, resolved.title, output or "", failed=False)


def _run_handler(
    handler: Callable[[list[str]], object],
    title: str,
    *,
    files: Sequence[str],
    ctx: RunState,
    cancel: CancelToken,
    continue_on_error: bool,
) -> None:
    try:
        handler(list(files))
    except Exception as exc:  # user task code, any failure is a task error
        logger.debug("Function task %s failed: %r", title, exc)
        raise _fail(ctx, cancel, title, str(exc), "FAILED", continue_on_error=continue_on_error) from exc


def run_task_commands(
    commands: Sequence[ResolvedCommand],
    *,
    files: Sequence[str],
    cwd: Path,
    top_level_dir: Path,
    ctx: RunState,
    cancel: CancelToken,
    shell: bool = False,
    verbose: bool = False,
    continue_on_error: bool = False,
) -> None:
    """Run the commands of one pattern serially, stopping at the first failure."""
    for resolved in commands:
        run_command(
            resolved,
            files=files,
            cwd=cwd,
            top_level_dir=top_level_dir,
            ctx=ctx,
            cancel=cancel,
            shell=shell,
            verbose=verbose,
            continue_on_error=continue_on_error,
        )
