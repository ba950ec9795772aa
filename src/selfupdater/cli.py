"""Command-line front end for the update pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console

from selfupdater import __version__
from selfupdater.config import UpdateSettings, get_settings
from selfupdater.logging import get_logger, setup_logging
from selfupdater.updater import AutoUpdater, UpdateError

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Check for and install updates to this program.",
    no_args_is_help=True,
    add_completion=False,
)

YES_OPTION = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt.")
RESTART_OPTION = typer.Option(False, "--restart", help="Relaunch the new version after installing.")
SKIP_OPTION = typer.Option(False, "--skip", help="Stop notifying about the available version.")
STATUS_OPTION = typer.Option(False, "--status", help="Show update status without installing.")
CHECK_OPTION = typer.Option(
    False, "--check", help="Run the rate-limited startup check and print a notice if due."
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version."
    ),
) -> None:
    """Check for and install updates to this program."""


def _load_settings() -> UpdateSettings:
    try:
        settings = get_settings()
    except ValidationError as exc:
        err_console.print(f"[red]Invalid update configuration:[/red]\n{exc}")
        raise typer.Exit(code=2) from exc
    return settings.with_default_dirs()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except UpdateError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


@app.command()
def update(
    yes: bool = YES_OPTION,
    restart: bool = RESTART_OPTION,
    skip: bool = SKIP_OPTION,
    status: bool = STATUS_OPTION,
    check: bool = CHECK_OPTION,
) -> None:
    """Update the program to the latest version."""
    if sum((skip, status, check)) > 1:
        err_console.print("[red]--skip, --status and --check are mutually exclusive.[/red]")
        raise typer.Exit(code=2)

    settings = _load_settings()
    setup_logging(settings)
    log = get_logger("selfupdater.cli")

    if yes:
        settings = settings.model_copy(update={"require_confirmation": False})
    updater = AutoUpdater(settings, console=console)
    log.debug("update_command", skip=skip, status=status, check=check, restart=restart)

    if status:
        _run(updater.status())
    elif skip:
        _run(updater.skip_version())
    elif check:
        _run(updater.check_and_notify())
    elif restart:
        _run(updater.update_and_restart(["--version"]))
    else:
        _run(updater.update())


@app.command()
def cleanup() -> None:
    """Remove downloaded update files older than seven days."""
    settings = _load_settings()
    setup_logging(settings)
    try:
        AutoUpdater(settings, console=console).cleanup_cache()
    except UpdateError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

