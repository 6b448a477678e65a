"""Tests for task command execution and cancellation."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest

from stagelint.errors import ConfigurationError, ErrorKind, TaskFailure
from stagelint.state import RunState
from stagelint.tasks.executor import (
    CancelToken,
    Signal,
    is_git_command,
    resolve_commands,
    run_command,
    run_task_commands,
)
from stagelint.tasks.types import (
    CommandFunction,
    FunctionTask,
    ResolvedCommand,
    ShellSequence,
    ShellTask,
)
from tests.unit.repo_utils import python_command


def _run(resolved: ResolvedCommand, tmp_path: Path, ctx: RunState, cancel: CancelToken | None = None, **kwargs):
    return run_command(
        resolved,
        files=kwargs.pop("files", []),
        cwd=tmp_path,
        top_level_dir=tmp_path,
        ctx=ctx,
        cancel=cancel or CancelToken(),
        **kwargs,
    )


def _shell(command: str) -> ResolvedCommand:
    return ResolvedCommand(title=command, command=command)


def test_resolve_commands_for_each_task_shape() -> None:
    files = ["a.py", "b.py"]
    assert resolve_commands(ShellTask("lint"), files) == [ResolvedCommand(title="lint", command="lint")]

    generated = resolve_commands(CommandFunction(lambda fs: f"lint {' '.join(fs)}"), files)
    assert generated == [ResolvedCommand(title="lint a.py b.py", command="lint a.py b.py", is_generated=True)]

    sequence = resolve_commands(
        ShellSequence((ShellTask("first"), CommandFunction(lambda fs: ["second", "third"]))),
        files,
    )
    assert [cmd.command for cmd in sequence] == ["first", "second", "third"]

    def handler(fs: list[str]) -> None:
        pass

    assert resolve_commands(FunctionTask("in process", handler), files) == [
        ResolvedCommand(title="in process", handler=handler)
    ]


def test_command_function_receives_a_copy() -> None:
    files = ["a.py"]

    def mutate(fs: list[str]) -> str:
        fs.append("injected.py")
        return "lint"

    resolve_commands(CommandFunction(mutate), files)
    assert files == ["a.py"]


@pytest.mark.parametrize("result", [42, ["ok", 1], "", ["  "]])
def test_command_function_must_return_strings(result: object) -> None:
    with pytest.raises(ConfigurationError):
        resolve_commands(CommandFunction(lambda fs: result), ["a.py"])


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("git add", True),
        ("/usr/bin/git status --short", True),
        ("GIT.EXE diff", True),
        ("gitleaks detect", False),
        ("black --check", False),
    ],
)
def test_is_git_command(command: str, expected: bool) -> None:
    assert is_git_command(command) is expected


def test_successful_command_records_nothing_unless_verbose(tmp_path: Path) -> None:
    ctx = RunState()
    _run(_shell(python_command("print('all good')")), tmp_path, ctx)
    assert ctx.output == []
    assert not ctx.errors

    _run(_shell(python_command("print('all good')")), tmp_path, ctx, verbose=True)
    assert len(ctx.output) == 1
    assert "all good" in ctx.output[0]
    assert "ℹ" in ctx.output[0]


def test_files_are_appended_as_arguments(tmp_path: Path) -> None:
    ctx = RunState()
    command = python_command("import sys; print(sys.argv[1:])")
    _run(_shell(command), tmp_path, ctx, files=["a b.py", "c.py"], verbose=True)
    assert "['a b.py', 'c.py']" in ctx.output[0]


def test_generated_commands_do_not_get_files_appended(tmp_path: Path) -> None:
    ctx = RunState()
    command = python_command("import sys; print(len(sys.argv))")
    resolved = ResolvedCommand(title="count", command=command, is_generated=True)
    _run(resolved, tmp_path, ctx, files=["a.py", "b.py"], verbose=True)
    assert ctx.output[0].endswith("1")


def test_failing_command_records_output_and_exit_code(tmp_path: Path) -> None:
    ctx = RunState()
    command = python_command("import sys; print('oops'); sys.exit(3)")

    with pytest.raises(TaskFailure) as excinfo:
        _run(_shell(command), tmp_path, ctx)

    assert excinfo.value.tag == "3"
    assert ErrorKind.TASK_ERROR in ctx.errors
    assert ctx.output[0].splitlines()[1] == f"✖ {command}:"
    assert "oops" in ctx.output[0]


def test_failing_command_without_output_reports_tag(tmp_path: Path) -> None:
    ctx = RunState()
    command = python_command("import sys; sys.exit(2)")

    with pytest.raises(TaskFailure):
        _run(_shell(command), tmp_path, ctx)

    assert ctx.output[0].strip() == f"✖ {command} failed without output (2)."


def test_quiet_drops_output_headers(tmp_path: Path) -> None:
    ctx = RunState(quiet=True)
    command = python_command("import sys; print('oops'); sys.exit(1)")
    with pytest.raises(TaskFailure):
        _run(_shell(command), tmp_path, ctx)
    assert ctx.output == ["oops"]


def test_missing_binary_is_a_task_error(tmp_path: Path) -> None:
    ctx = RunState()
    with pytest.raises(TaskFailure) as excinfo:
        _run(_shell("stagelint-no-such-binary --check"), tmp_path, ctx)
    assert excinfo.value.tag == "ENOENT"
    assert ErrorKind.TASK_ERROR in ctx.errors


def test_failure_cancels_siblings_unless_continue_on_error(tmp_path: Path) -> None:
    command = python_command("import sys; sys.exit(1)")

    cancel = CancelToken()
    with pytest.raises(TaskFailure):
        _run(_shell(command), tmp_path, RunState(), cancel)
    assert cancel.reason is Signal.SIGKILL

    cancel = CancelToken()
    with pytest.raises(TaskFailure):
        _run(_shell(command), tmp_path, RunState(), cancel, continue_on_error=True)
    assert not cancel.cancelled


def test_unparseable_command_is_a_task_error(tmp_path: Path) -> None:
    ctx = RunState()
    with pytest.raises(TaskFailure) as excinfo:
        _run(_shell("lint 'unterminated"), tmp_path, ctx)
    assert excinfo.value.tag == "EINVAL"
    assert ErrorKind.TASK_ERROR in ctx.errors


def test_cancelled_token_prevents_start(tmp_path: Path) -> None:
    ctx = RunState()
    cancel = CancelToken()
    cancel.cancel(Signal.SIGINT)
    marker = tmp_path / "ran"
    command = python_command(f"open({str(marker)!r}, 'w').close()")

    with pytest.raises(TaskFailure) as excinfo:
        _run(_shell(command), tmp_path, ctx, cancel)

    assert excinfo.value.tag == "SIGINT"
    assert not marker.exists()


def test_first_cancel_reason_wins() -> None:
    cancel = CancelToken()
    cancel.cancel(Signal.SIGINT)
    cancel.cancel(Signal.SIGKILL)
    assert cancel.reason is Signal.SIGINT


@pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX only")
def test_cancellation_kills_running_process_tree(tmp_path: Path) -> None:
    ctx = RunState()
    cancel = CancelToken()
    child = python_command("import time; time.sleep(60)")
    command = python_command(
        "import subprocess, sys\n"
        f"subprocess.run({child!r}, shell=True)\n"
    )
    timer = threading.Timer(0.5, cancel.cancel, args=(Signal.SIGINT,))
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(TaskFailure) as excinfo:
            _run(_shell(command), tmp_path, ctx, cancel)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 30
    assert excinfo.value.tag == "SIGINT"
    assert ErrorKind.TASK_ERROR in ctx.errors
    assert "failed without output (SIGINT)" in ctx.output[0]


def test_function_task_failure_is_recorded(tmp_path: Path) -> None:
    ctx = RunState()

    def handler(files: list[str]) -> None:
        raise ValueError(f"cannot handle {files[0]}")

    resolved = ResolvedCommand(title="validate", handler=handler)
    with pytest.raises(TaskFailure) as excinfo:
        _run(resolved, tmp_path, ctx, files=["a.py"])

    assert excinfo.value.tag == "FAILED"
    assert "cannot handle a.py" in ctx.output[0]


def test_function_task_success(tmp_path: Path) -> None:
    seen: list[list[str]] = []
    _run(ResolvedCommand(title="record", handler=seen.append), tmp_path, RunState(), files=["a.py"])
    assert seen == [["a.py"]]


def test_shell_mode_passes_command_line_to_the_shell(tmp_path: Path) -> None:
    ctx = RunState()
    _run(_shell("echo linted"), tmp_path, ctx, files=["a.py"], shell=True, verbose=True)
    assert "linted a.py" in ctx.output[0]


def test_task_commands_stop_at_first_failure(tmp_path: Path) -> None:
    ctx = RunState()
    marker = tmp_path / "second-ran"
    commands = [
        _shell(python_command("import sys; sys.exit(1)")),
        _shell(python_command(f"open({str(marker)!r}, 'w').close()")),
    ]
    with pytest.raises(TaskFailure):
        run_task_commands(
            commands,
            files=[],
            cwd=tmp_path,
            top_level_dir=tmp_path,
            ctx=ctx,
            cancel=CancelToken(),
            continue_on_error=True,
        )
    assert not marker.exists()
