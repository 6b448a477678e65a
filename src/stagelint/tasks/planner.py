"""Map staged files to configured glob patterns."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping, Sequence
from functools import lru_cache
from pathlib import Path

from pathspec.patterns import GitWildMatchPattern

from stagelint.tasks.chunks import normalize_path
from stagelint.tasks.types import TaskDescriptor, TaskSpec

logger = logging.getLogger(__name__)

PARENT_PREFIX = "../"
_BRACE_RE = re.compile(r"\{([^{}]*,[^{}]*)\}")
# Trailing group gitwildmatch adds so a name also matches everything below a directory of that name.
_DESCENDANTS = "(?:(?P<ps_d>/).*)?"


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives, innermost first, preserving order."""
    match = _BRACE_RE.search(pattern)
    if match is None:
        return [pattern]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(pattern[: match.start()] + option + pattern[match.end() :]))
    return expanded


@lru_cache(maxsize=256)
def _compile(pattern: str) -> tuple[re.Pattern[str], ...]:
    compiled = []
    for expanded in expand_braces(pattern):
        regex, _ = GitWildMatchPattern.pattern_to_regex(expanded)
        if regex is not None:
            compiled.append(re.compile(regex.replace(_DESCENDANTS, "")))
    return tuple(compiled)


def match_pattern(pattern: str, path: str) -> bool:
    """Match a normalized relative path against a glob.

    Dotfiles are included. A pattern without ``/`` matches the basename in any
    directory; a leading ``!`` negates the match. Only the file path itself is
    matched, never a directory it sits in.
    """
    if pattern.startswith("!") and not pattern.startswith("!("):
        return not match_pattern(pattern[1:], path)
    return any(regex.match(path) for regex in _compile(pattern))


def _split_parent_pattern(pattern: str) -> tuple[int, str]:
    """Return the number of leading ``../`` segments and the remaining pattern."""
    depth = 0
    rest = pattern
    while rest.startswith(PARENT_PREFIX):
        depth += 1
        rest = rest[len(PARENT_PREFIX) :]
    return depth, rest


def _match_parent_pattern(pattern: str, cwd: Path, absolute_file: Path) -> bool:
    depth, rest = _split_parent_pattern(pattern)
    base_dir = cwd
    for _ in range(depth):
        base_dir = base_dir.parent
    try:
        relative_to_base = absolute_file.relative_to(base_dir)
    except ValueError:
        return False
    # The pattern names a path under an ancestor directory, so it is anchored there.
    return match_pattern(f"/{rest}", relative_to_base.as_posix())


def generate_tasks(
    config: Mapping[str, TaskSpec],
    *,
    cwd: Path,
    top_level_dir: Path,
    files: Sequence[str],
    relative: bool = False,
) -> list[TaskDescriptor]:
    """Build one task descriptor per configured pattern, in configuration order.

    ``files`` are paths relative to ``top_level_dir``. Matched files are
    returned absolute, or relative to ``cwd`` when ``relative`` is set. A
    pattern matching nothing still yields a descriptor with an empty list.
    """
    logger.debug("Generating linter tasks")
    resolved_cwd = cwd.resolve()
    absolute_files = [(top_level_dir / path).resolve() for path in files]
    relative_files = [normalize_path(os.path.relpath(path, resolved_cwd)) for path in absolute_files]

    tasks: list[TaskDescriptor] = []
    for pattern, commands in config.items():
        is_parent_pattern = pattern.startswith(PARENT_PREFIX)
        matches: list[tuple[Path, str]] = []
        for absolute_file, relative_file in zip(absolute_files, relative_files):
            if is_parent_pattern:
                if _match_parent_pattern(pattern, resolved_cwd, absolute_file):
                    matches.append((absolute_file, relative_file))
                continue
            # Only children of cwd, unless the pattern targets a parent directory.
            if relative_file.startswith("..") or os.path.isabs(relative_file):
                continue
            if match_pattern(pattern, relative_file):
                matches.append((absolute_file, relative_file))

        file_list = [
            relative_file if relative else normalize_path(str(absolute_file))
            for absolute_file, relative_file in matches
        ]
        task = TaskDescriptor(pattern=pattern, commands=commands, file_list=file_list)
        logger.debug("Generated task: %s", task)
        tasks.append(task)
    return tasks
