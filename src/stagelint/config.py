"""Configuration discovery, loading and normalization.

Supports ``.lintstagedrc`` (YAML or JSON), ``.lintstagedrc.json``,
``.lintstagedrc.yaml``/``.yml`` and a ``[tool.stagelint]`` table in
``pyproject.toml``. Every configuration in the repository is discovered and each
staged file is handled by the deepest one above it, so a monorepo package can
carry its own tasks. Within one directory the first file name listed in
``CONFIG_FILENAMES`` wins.
"""

from __future__ import annotations

import json
import logging

# Use tomllib for 3.11+
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema.validators import Draft202012Validator

from stagelint.errors import ConfigurationError
from stagelint.git.exec import run_git
from stagelint.tasks.types import (
    CommandFunction,
    FunctionTask,
    ShellSequence,
    ShellTask,
    TaskSpec,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAMES: tuple[str, ...] = (
    ".lintstagedrc",
    ".lintstagedrc.json",
    ".lintstagedrc.yaml",
    ".lintstagedrc.yml",
    "pyproject.toml",
)
PYPROJECT_TABLE = "stagelint"

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "minProperties": 1,
    "propertyNames": {"minLength": 1},
    "additionalProperties": {
        "oneOf": [
            {"type": "string", "minLength": 1},
            {
                "type": "array",
                "minItems": 1,
                "items": {"type": "string", "minLength": 1},
            },
        ]
    },
}


@dataclass(frozen=True)
class LoadedConfig:
    """A configuration mapping and the file it came from."""

    config: dict[str, Any]
    filepath: Path | None


def _load_toml(path: Path) -> dict[str, Any] | None:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed TOML config at {path}: {e}") from e
    tool = data.get("tool", {})
    table = tool.get(PYPROJECT_TABLE) if isinstance(tool, dict) else None
    return table


def _load_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Malformed JSON config at {path}: {e}") from e


def _load_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML config at {path}: {e}") from e


def load_config_file(path: Path) -> dict[str, Any] | None:
    """Load a config file by extension; ``None`` when a pyproject has no stagelint table."""
    if path.suffix == ".toml":
        data = _load_toml(path)
    elif path.suffix == ".json":
        data = _load_json(path)
    else:
        # YAML is a superset of JSON, so extension-less rc files take either.
        data = _load_yaml(path)
    if data is None and path.suffix == ".toml":
        return None
    validate_config(data, source=path)
    return dict(data)


def search_config(cwd: Path, stop_dir: Path | None = None) -> LoadedConfig | None:
    """Search ``cwd`` and its parents, up to ``stop_dir``, for a configuration file."""
    resolved_stop = stop_dir.resolve() if stop_dir is not None else None
    for directory in (cwd.resolve(), *cwd.resolve().parents):
        for name in CONFIG_FILENAMES:
            candidate = directory / name
            if not candidate.is_file():
                continue
            data = load_config_file(candidate)
            if data is not None:
                logger.debug("Loaded config from %s", candidate)
                return LoadedConfig(config=data, filepath=candidate)
        if resolved_stop is not None and directory == resolved_stop:
            break
    return None


def load_config_text(text: str, *, source: str = "stdin") -> dict[str, Any]:
    """Parse a JSON or YAML configuration passed as text."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed config from {source}: {e}") from e
    validate_config(data, source=source)
    return dict(data)


def list_config_files_from_git(top_level_dir: Path) -> list[Path]:
    """Config files git knows about anywhere in the work tree, tracked or not ignored."""
    result = run_git(
        [
            "ls-files",
            "-z",
            "--full-name",
            "-t",
            "--cached",
            "--others",
            "--exclude-standard",
            "--",
            *(f":(glob)**/{name}" for name in CONFIG_FILENAMES),
        ],
        cwd=top_level_dir,
    )
    paths: list[Path] = []
    for entry in result.stdout.split("\0"):
        # Each entry carries a one-letter status tag; "S" marks skip-worktree files of a sparse checkout.
        if len(entry) < 3 or entry.startswith("S "):
            continue
        paths.append(top_level_dir / entry[2:])
    return paths


def search_configs(cwd: Path, top_level_dir: Path) -> list[LoadedConfig]:
    """Every configuration of the repository plus the nearest one above ``cwd``, deepest first.

    A directory holding several config files uses the first of ``CONFIG_FILENAMES``
    that carries a configuration.
    """
    by_directory: dict[Path, list[Path]] = {}
    candidates = list_config_files_from_git(top_level_dir)
    nearest = search_config(cwd, top_level_dir)
    if nearest is not None and nearest.filepath is not None:
        candidates.append(nearest.filepath)
    for candidate in candidates:
        resolved = candidate.resolve()
        siblings = by_directory.setdefault(resolved.parent, [])
        if resolved not in siblings and resolved.is_file():
            siblings.append(resolved)

    configs: list[LoadedConfig] = []
    for directory in sorted(by_directory, key=lambda path: (-len(path.parts), path.as_posix())):
        for candidate in sorted(by_directory[directory], key=lambda path: CONFIG_FILENAMES.index(path.name)):
            data = load_config_file(candidate)
            if data is not None:
                logger.debug("Found config at %s", candidate)
                configs.append(LoadedConfig(config=data, filepath=candidate))
                break
    return configs


def group_files_by_config(
    configs: Sequence[LoadedConfig],
    files: Sequence[str],
    top_level_dir: Path,
) -> list[tuple[LoadedConfig, list[str]]]:
    """Assign every file, relative to ``top_level_dir``, to exactly one configuration.

    ``configs`` are expected deepest first. A file belongs to the first config
    whose directory contains it; a config with a pattern reaching into a parent
    directory takes every file not claimed by a deeper one.
    """
    remaining = list(files)
    groups: list[tuple[LoadedConfig, list[str]]] = []
    for loaded in configs:
        if not remaining:
            break
        if loaded.filepath is None or any(pattern.startswith("../") for pattern in loaded.config):
            claimed = remaining
        else:
            base = loaded.filepath.parent
            claimed = [file for file in remaining if (top_level_dir / file).resolve().is_relative_to(base)]
        if claimed:
            groups.append((loaded, claimed))
            taken = set(claimed)
            remaining = [file for file in remaining if file not in taken]
    return groups


def validate_config(data: Any, *, source: Path | str = "(input)") -> None:
    """Validate a data-only configuration against the config schema."""
    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        details = "\n".join(
            f"  - {'/'.join(str(part) for part in error.absolute_path) or '(root)'}: {error.message}"
            for error in errors
        )
        raise ConfigurationError(f"Invalid configuration in {source}:\n{details}")


def _normalize_command(value: Any, pattern: str) -> ShellTask | CommandFunction:
    if isinstance(value, str):
        if not value.strip():
            raise ConfigurationError(f"Empty command configured for {pattern!r}")
        return ShellTask(command=value)
    if callable(value):
        return CommandFunction(fn=value)
    raise ConfigurationError(
        f"Invalid command for {pattern!r}: expected a string or a function, got {value!r}"
    )


def normalize_task(pattern: str, value: Any) -> TaskSpec:
    """Turn one raw configuration value into a task variant."""
    if isinstance(value, (ShellTask, CommandFunction, ShellSequence, FunctionTask)):
        return value
    if isinstance(value, Mapping):
        title = value.get("title")
        handler = value.get("task")
        if not isinstance(title, str) or not callable(handler):
            raise ConfigurationError(
                f"Function task for {pattern!r} needs a string 'title' and a callable 'task'"
            )
        return FunctionTask(title=title, handler=handler)
    if isinstance(value, (list, tuple)):
        if not value:
            raise ConfigurationError(f"Empty command list configured for {pattern!r}")
        return ShellSequence(commands=tuple(_normalize_command(item, pattern) for item in value))
    return _normalize_command(value, pattern)


def normalize_config(config: Mapping[str, Any]) -> dict[str, TaskSpec]:
    """Normalize a programmatic or file-loaded configuration, keeping pattern order."""
    if not isinstance(config, Mapping) or not config:
        raise ConfigurationError("Configuration should be a non-empty mapping of glob patterns to tasks")
    normalized: dict[str, TaskSpec] = {}
    for pattern, value in config.items():
        if not isinstance(pattern, str) or not pattern:
            raise ConfigurationError(f"Invalid pattern {pattern!r}: expected a non-empty string")
        normalized[pattern] = normalize_task(pattern, value)
    return normalized


def resolve_config(
    *,
    config: Mapping[str, Any] | None = None,
    config_path: Path | None = None,
    cwd: Path,
) -> LoadedConfig | None:
    """Pick the programmatic config or an explicit file; ``None`` when neither is usable."""
    if config is not None:
        return LoadedConfig(config=dict(config), filepath=None)
    if config_path is not None:
        path = config_path if config_path.is_absolute() else cwd / config_path
        if not path.is_file():
            return None
        data = load_config_file(path)
        return LoadedConfig(config=data, filepath=path) if data is not None else None
    return None
