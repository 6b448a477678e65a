"""User-visible message texts."""

from __future__ import annotations

from pathlib import Path

INFO = "ℹ"
ERROR = "✖"
WARNING = "⚠"
SUCCESS = "✔"

STASH_MESSAGE = "stagelint automatic backup"

NO_STAGED_FILES = f"{INFO} No staged files found."
NO_TASKS = f"{INFO} No staged files match any configured task."
NO_CONFIG = "Configuration could not be found."

TASK_ERROR = "Skipped because of errors from tasks."
SKIPPED_GIT_ERROR = "Skipped because of previous git error."

DEPRECATED_GIT_ADD = (
    f"{WARNING} Some of your tasks use `git add` command. Please remove it from the config "
    "since all modifications made by tasks will be automatically added to the git commit index."
)

GIT_ERROR = f"{ERROR} stagelint failed due to a git error."

FAIL_ON_CHANGES = f"{ERROR} stagelint failed because `--fail-on-changes` was used and tasks modified files."

PREVENTED_EMPTY_COMMIT = (
    f"{WARNING} stagelint prevented an empty git commit.\n"
    "  Use the --allow-empty option to continue, or check your task configuration"
)

BACKUP_STASH_MISSING = (
    f"{ERROR} stagelint failed because its backup stash is missing.\n"
    "  The repository is left in the state the tasks produced; there is no stash to restore from."
)

NOT_GIT_REPO = f"{ERROR} Current directory is not a git directory!"
FAILED_TO_GET_STAGED_FILES = f"{ERROR} Failed to get staged files!"


def stash_message(identifier: str) -> str:
    """Message of the backup stash for one run."""
    return f"{STASH_MESSAGE} ({identifier})"


def skipping_backup(*, has_initial_commit: bool, diff: str | None) -> str:
    if diff:
        reason = "`--diff` was used"
    elif has_initial_commit:
        reason = "`--no-stash` was used"
    else:
        reason = "there’s no initial commit yet"
    return f"{WARNING} Skipping backup because {reason}."


def restore_stash_example(identifier: str) -> str:
    return (
        "  Any lost modifications can be restored from a git stash:\n\n"
        "    > git stash list\n"
        f"    stash@{{0}}: On main: {stash_message(identifier)}\n"
        "    > git stash apply --index stash@{0}\n"
    )


def restore_patch_example(patch_path: Path) -> str:
    return (
        f"{ERROR} Unstaged changes could not be restored due to a merge conflict!\n"
        f"  The hidden changes were saved to {patch_path}\n"
        "  Restore them manually with:\n\n"
        f"    > git apply --3way {patch_path}\n"
    )


def task_output_title(command: str, *, failed: bool) -> str:
    return f"{ERROR if failed else INFO} {command}:"


def task_failed_without_output(command: str, tag: str) -> str:
    return f"{ERROR} {command} failed without output ({tag})."
