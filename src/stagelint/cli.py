"""stagelint command-line interface."""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from stagelint import __version__, lint_staged
from stagelint.config import load_config_text
from stagelint.errors import ConfigurationError
from stagelint.git.files import DEFAULT_DIFF_FILTER
from stagelint.messages import ERROR
from stagelint.ui import make_console, make_reporter

cli = typer.Typer(
    name="stagelint",
    help="Run tasks against staged git files.",
    add_completion=False,
)


def _version_option_callback(value: bool) -> None:
    """Handle eager --version option."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def parse_concurrent(value: str) -> bool | int:
    """Parse ``true``, ``false`` or a positive task limit."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        limit = int(lowered)
    except ValueError as exc:
        raise typer.BadParameter(f"expected true, false or a number, got {value!r}") from exc
    if limit < 1:
        raise typer.BadParameter(f"expected a positive number, got {limit}")
    return limit


def configure_logging(*, debug: bool, console: Console) -> None:
    """Route the ``stagelint`` logger hierarchy to a rich handler."""
    logger = logging.getLogger("stagelint")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


@cli.command()
def main(
    allow_empty: bool = typer.Option(
        False,
        "--allow-empty",
        help="Allow empty commits when tasks revert all staged changes.",
    ),
    concurrent: str = typer.Option(
        "true",
        "--concurrent",
        "-p",
        help="Number of tasks to run concurrently, or false for serial.",
    ),
    config: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file, or - to read it from stdin.",
    ),
    continue_on_error: bool = typer.Option(
        False,
        "--continue-on-error",
        help="Run all tasks to completion even if one fails.",
    ),
    cwd: Path | None = typer.Option(
        None,
        "--cwd",
        help="Run all tasks in a specific directory, instead of the current.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Print additional debug information.",
    ),
    diff: str | None = typer.Option(
        None,
        "--diff",
        help="Override the default --staged flag of git diff to get list of files. Implies --no-stash.",
    ),
    diff_filter: str = typer.Option(
        DEFAULT_DIFF_FILTER,
        "--diff-filter",
        help="Override the default --diff-filter=ACMR flag of git diff to get list of files.",
    ),
    fail_on_changes: bool = typer.Option(
        False,
        "--fail-on-changes",
        help="Fail with exit code 1 when tasks modify tracked files. Implies --no-revert unless --revert is given.",
    ),
    hide_partially_staged: bool | None = typer.Option(
        None,
        "--hide-partially-staged/--no-hide-partially-staged",
        help="Hide unstaged changes from partially staged files. Defaults to the --stash setting.",
    ),
    hide_unstaged: bool = typer.Option(
        False,
        "--hide-unstaged",
        help="Hide all unstaged changes, including untracked files.",
    ),
    max_arg_length: int | None = typer.Option(
        None,
        "--max-arg-length",
        help="Maximum length of the command-line argument string.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Disable stagelint's own console output.",
    ),
    relative: bool = typer.Option(
        False,
        "--relative",
        "-r",
        help="Pass relative filepaths to tasks.",
    ),
    revert: bool | None = typer.Option(
        None,
        "--revert/--no-revert",
        help="Revert to original state in case of errors. Defaults to on, or off with --fail-on-changes.",
    ),
    shell: bool = typer.Option(
        False,
        "--shell",
        "-x",
        help="Skip parsing of tasks for better shell support.",
    ),
    stash: bool = typer.Option(
        True,
        "--stash/--no-stash",
        help="Enable the backup stash.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show task output even when tasks succeed.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show stagelint version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Run configured tasks against staged git files."""
    _ = version
    parsed_concurrent = parse_concurrent(concurrent)

    console = make_console()
    configure_logging(debug=debug, console=console)
    reporter = make_reporter(quiet=quiet, debug=debug, console=console)

    try:
        if config == "-":
            inline_config = load_config_text(typer.get_text_stream("stdin").read())
            config_path = None
        else:
            inline_config = None
            config_path = Path(config).resolve() if config is not None else None
        passed = lint_staged(
            inline_config,
            reporter=reporter,
            allow_empty=allow_empty,
            concurrent=parsed_concurrent,
            config_path=config_path,
            continue_on_error=continue_on_error,
            cwd=cwd,
            debug=debug,
            diff=diff,
            diff_filter=diff_filter,
            fail_on_changes=fail_on_changes,
            hide_partially_staged=hide_partially_staged,
            hide_unstaged=hide_unstaged,
            max_arg_length=max_arg_length,
            quiet=quiet,
            relative=relative,
            revert=revert,
            shell=shell,
            stash=stash,
            verbose=verbose,
        )
    except ConfigurationError as exc:
        reporter.error(f"{ERROR} {exc}")
        raise typer.Exit(1) from exc

    if not passed:
        raise typer.Exit(1)


if __name__ == "__main__":
    cli()
