"""Console reporting for stagelint runs: phase spinners, task results and messages."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.text import Text

from stagelint.messages import ERROR, SUCCESS

_T = TypeVar("_T")

SKIPPED = "↓"

RENDERER_SILENT = "silent"
RENDERER_VERBOSE = "verbose"
RENDERER_UPDATE = "update"


def color_enabled() -> bool:
    return os.getenv("STAGELINT_COLOR", "1") != "0"


def dumb_terminal() -> bool:
    return os.getenv("TERM") == "dumb"


def make_console() -> Console:
    """Console writing to stderr, so task output stays separable from stdout."""
    return Console(stderr=True, no_color=not color_enabled(), highlight=False)


def select_renderer(*, quiet: bool, debug: bool, console: Console) -> str:
    if quiet:
        return RENDERER_SILENT
    if debug or dumb_terminal() or not console.is_terminal or not color_enabled():
        return RENDERER_VERBOSE
    return RENDERER_UPDATE


class Reporter:
    """Sink for user-facing run events; this base reports nothing."""

    def run_phase(self, title: str, fn: Callable[[], _T]) -> _T:
        return fn()

    def skip_phase(self, title: str, reason: str) -> None:
        pass

    def task_started(self, title: str) -> None:
        pass

    def task_finished(self, title: str, *, failed: bool) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def warn(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    def print_output(self, block: str) -> None:
        pass


@dataclass(frozen=True)
class PhaseSpinner:
    message: str
    console: Console

    def run(self, fn: Callable[[], _T]) -> _T:
        with Progress(
            SpinnerColumn(style="yellow"),
            TextColumn("{task.description}"),
            transient=True,
            console=self.console,
        ) as prog:
            task_id = prog.add_task(self.message, total=None)
            try:
                return fn()
            finally:
                prog.update(task_id, completed=1)


class ConsoleReporter(Reporter):
    """Rich console reporter.

    ``update`` shows a spinner per phase, ``verbose`` prints a line per event
    and ``silent`` only prints warnings, errors and task output.
    """

    def __init__(self, *, console: Console | None = None, renderer: str = RENDERER_UPDATE):
        self.console = console or make_console()
        self.renderer = renderer
        self._lock = threading.Lock()

    def _line(self, symbol: str, message: str, style: str) -> None:
        text = Text()
        text.append(f"{symbol} ", style=f"bold {style}")
        text.append(message)
        with self._lock:
            self.console.print(text)

    def run_phase(self, title: str, fn: Callable[[], _T]) -> _T:
        if self.renderer == RENDERER_SILENT:
            return fn()
        if self.renderer == RENDERER_VERBOSE:
            self._line("[STARTED]", title, "blue")
        try:
            if self.renderer == RENDERER_UPDATE:
                result = PhaseSpinner(title, self.console).run(fn)
            else:
                result = fn()
        except Exception:
            self._line(ERROR, title, "red")
            raise
        self._line(SUCCESS, title, "green")
        return result

    def skip_phase(self, title: str, reason: str) -> None:
        if self.renderer != RENDERER_SILENT:
            self._line(SKIPPED, f"{title} [SKIPPED: {reason}]", "yellow")

    def task_started(self, title: str) -> None:
        if self.renderer == RENDERER_VERBOSE:
            self._line("[STARTED]", title, "blue")

    def task_finished(self, title: str, *, failed: bool) -> None:
        if self.renderer == RENDERER_SILENT:
            return
        if failed:
            self._line(ERROR, title, "red")
        else:
            self._line(SUCCESS, title, "green")

    def info(self, message: str) -> None:
        if self.renderer != RENDERER_SILENT:
            self._print(message, style="")

    def warn(self, message: str) -> None:
        self._print(message, style="yellow")

    def error(self, message: str) -> None:
        self._print(message, style="red")

    def print_output(self, block: str) -> None:
        self._print(block, style="")

    def _print(self, message: str, *, style: str) -> None:
        with self._lock:
            self.console.print(Text(message, style=style))


def make_reporter(*, quiet: bool = False, debug: bool = False, console: Console | None = None) -> ConsoleReporter:
    console = console or make_console()
    return ConsoleReporter(console=console, renderer=select_renderer(quiet=quiet, debug=debug, console=console))
