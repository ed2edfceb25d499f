"""simmer command line.

Exit codes:

    0    last completed run succeeded without errors (or nothing completed)
    1    last completed run failed or reported errors
    2    fatal error: bad configuration, unwatchable root, no terminal,
         or an internal failure
    130  interrupted
"""

from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console

from simmer import __version__
from simmer.cli.app import WatchApp, run_once
from simmer.cli.console import SIMMER_THEME, get_console, print_error
from simmer.cli.keys import KeyBindings
from simmer.config import DEFAULT_COMMAND, OnChangeStrategy, load_settings, make_job
from simmer.errors import (
    EXIT_FATAL,
    EXIT_INTERRUPTED,
    ConfigError,
    SimmerError,
)
from simmer.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from simmer.config import Job, Settings

__all__ = ["app", "main"]

logger = get_logger("cli")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        get_console().print(f"simmer {__version__}")
        raise typer.Exit()


_TYPER_HELP = """Watch a project and keep re-running a build or check command.

Runs the command, shows its errors and warnings, and runs it again whenever
a watched file changes. A run still in progress is cancelled when a newer
one is needed.

**Examples:**

* `simmer` runs `cargo check` in the current directory
* `simmer -- cargo clippy --all-targets`
* `simmer --watch 'src/**/*.c' -- make -k`
* `simmer --once -- go vet ./...`

**Exit codes:** 0 success, 1 last run failed, 2 fatal error, 130 interrupted.
"""

app = typer.Typer(
    add_completion=False,
    help=_TYPER_HELP,
    rich_markup_mode="markdown",
)


@app.command()
def watch(
    command: Annotated[
        list[str] | None,
        typer.Argument(help="Command to run, after --. Defaults to cargo check."),
    ] = None,
    cwd: Annotated[
        Path,
        typer.Option(
            "--cwd",
            "-C",
            help="Working directory and watched root",
            exists=True,
            file_okay=False,
        ),
    ] = Path("."),
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Job name shown in the header"),
    ] = None,
    watch_globs: Annotated[
        list[str] | None,
        typer.Option("--watch", "-w", help="Only changes to matching files trigger a run"),
    ] = None,
    ignore: Annotated[
        list[str] | None,
        typer.Option("--ignore", "-i", help="Gitignore-style pattern to ignore"),
    ] = None,
    no_gitignore: Annotated[
        bool,
        typer.Option("--no-gitignore", help="Do not apply the root .gitignore"),
    ] = False,
    stdout: Annotated[
        bool,
        typer.Option("--stdout/--no-stdout", help="Parse standard output"),
    ] = True,
    stderr: Annotated[
        bool,
        typer.Option("--stderr/--no-stderr", help="Parse standard error"),
    ] = True,
    debounce_ms: Annotated[
        int | None,
        typer.Option("--debounce-ms", help="Quiet period before a change triggers a run"),
    ] = None,
    grace_ms: Annotated[
        int | None,
        typer.Option("--grace-ms", help="Delay between SIGTERM and SIGKILL on cancellation"),
    ] = None,
    tick_ms: Annotated[
        int | None,
        typer.Option("--tick-ms", help="Screen refresh interval while nothing changes"),
    ] = None,
    on_change: Annotated[
        OnChangeStrategy | None,
        typer.Option("--on-change", help="What a change does to a run in progress"),
    ] = None,
    kill_command: Annotated[
        str | None,
        typer.Option("--kill-command", help="Command stopping a run; the pid is appended"),
    ] = None,
    bind: Annotated[
        list[str] | None,
        typer.Option("--bind", "-b", help="Key binding override, as chord=action"),
    ] = None,
    once: Annotated[
        bool,
        typer.Option("--once", help="Run once, print the report and exit"),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Write logs to this file"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="debug, info, warning or error"),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
) -> None:
    """Watch files and re-run the command on change."""
    overrides: dict[str, str] = {}
    if debounce_ms is not None:
        overrides["debounce_ms"] = str(debounce_ms)
    if grace_ms is not None:
        overrides["grace_ms"] = str(grace_ms)
    if tick_ms is not None:
        overrides["tick_ms"] = str(tick_ms)
    if on_change is not None:
        overrides["on_change"] = on_change.value
    if log_file is not None:
        overrides["log_file"] = str(log_file)
    if log_level is not None:
        overrides["log_level"] = log_level

    try:
        settings = load_settings().merged(overrides)
        job = make_job(
            name=name or "",
            command=tuple(command) if command else DEFAULT_COMMAND,
            cwd=cwd.resolve(),
            watch=tuple(watch_globs or ()),
            ignore=tuple(ignore or ()),
            apply_gitignore=not no_gitignore,
            parse_stdout=stdout,
            parse_stderr=stderr,
            kill_command=tuple(shlex.split(kill_command)) if kill_command else None,
        )
        bindings = KeyBindings().with_overrides(bind or ())
        if once:
            # Headless: log records go to stderr next to the report
            configure_logging(
                settings.log_level,
                settings.log_file,
                console=Console(stderr=True, theme=SIMMER_THEME),
            )
        else:
            configure_logging(settings.log_level, settings.log_file)
    except (ConfigError, ValueError) as e:
        print_error(str(e), hint="Run simmer --help for the accepted options")
        raise typer.Exit(EXIT_FATAL) from e

    console = get_console()
    try:
        if once:
            code = asyncio.run(run_once(job, settings, console=console))
        else:
            code = asyncio.run(_watch(job, settings, bindings, console))
    except SimmerError as e:
        logger.error(f"fatal: {e}")
        print_error(str(e))
        raise typer.Exit(EXIT_FATAL) from e
    except KeyboardInterrupt:
        raise typer.Exit(EXIT_INTERRUPTED) from None
    except Exception as e:
        logger.exception("internal error")
        print_error(f"internal error: {e}", hint="Run with --log-file to keep the traceback")
        raise typer.Exit(EXIT_FATAL) from e

    raise typer.Exit(code)


async def _watch(job: Job, settings: Settings, bindings: KeyBindings, console: Console) -> int:
    return await WatchApp(job, settings, bindings, console=console).run()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
