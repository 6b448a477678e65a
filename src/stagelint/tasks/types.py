"""Task types."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Union

CommandGenerator = Callable[[list[str]], Union[str, Sequence[str]]]
TaskHandler = Callable[[list[str]], object]


@dataclass(frozen=True)
class ShellTask:
    """A shell command string; matched files are appended as arguments."""

    command: str


@dataclass(frozen=True)
class CommandFunction:
    """A function generating command strings from the matched files.

    Generated commands already contain their file arguments.
    """

    fn: CommandGenerator


@dataclass(frozen=True)
class ShellSequence:
    """Commands run one after another for the same files."""

    commands: tuple[ShellTask | CommandFunction, ...]


@dataclass(frozen=True)
class FunctionTask:
    """An in-process task called with the matched files."""

    title: str
    handler: TaskHandler


TaskSpec = Union[ShellTask, CommandFunction, ShellSequence, FunctionTask]


@dataclass(frozen=True)
class TaskDescriptor:
    """One configured pattern with the files it matched."""

    pattern: str
    commands: TaskSpec
    file_list: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResolvedCommand:
    """A runnable command: a title and either a shell string or an in-process handler."""

    title: str
    command: str | None = None
    handler: TaskHandler | None = None
    # Generated commands carry their own file arguments.
    is_generated: bool = False
