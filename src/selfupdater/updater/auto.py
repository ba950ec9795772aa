"""User-facing update orchestration.

Ties the checker, downloader and installer together into the operations a
CLI exposes: a rate-limited startup check, an explicit update (optionally
followed by a restart), skipping a version, a status report and cache
cleanup. Output goes through a rich ``Console`` that callers may inject.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.prompt import Confirm
from rich.table import Table

from selfupdater.config import UpdateSettings
from selfupdater.constants import BACKGROUND_CHECK_TIMEOUT
from selfupdater.logging import get_logger
from selfupdater.updater.checker import UpdateChecker
from selfupdater.updater.downloader import UpdateDownloader
from selfupdater.updater.errors import StateError
from selfupdater.updater.installer import Installer
from selfupdater.updater.models import CheckResult, DownloadProgress, LastCheckInfo, ReleaseInfo
from selfupdater.utils import format_bytes, timed_operation

log = get_logger("selfupdater.updater.auto")

ConfirmFunc = Callable[[str], bool]


class AutoUpdater:
    """Runs update checks and installs for one program."""

    def __init__(
        self,
        settings: UpdateSettings,
        *,
        checker: UpdateChecker | None = None,
        downloader: UpdateDownloader | None = None,
        installer: Installer | None = None,
        console: Console | None = None,
        confirm: ConfirmFunc | None = None,
    ) -> None:
        self._settings = settings
        self._checker = checker or UpdateChecker(settings)
        self._downloader = downloader or UpdateDownloader(settings)
        self._installer = installer or Installer()
        self._console = console or Console()
        self._confirm = confirm or self._prompt_confirm

    @property
    def checker(self) -> UpdateChecker:
        return self._checker

    # ------------------------------------------------------------------
    # Startup check
    # ------------------------------------------------------------------

    async def check_and_notify(self) -> bool:
        """Check in the background and print a notice if an update is due.

        Never raises for check failures; returns True if a notice was shown.
        """
        try:
            last_check = self._checker.get_last_check()
        except StateError as exc:
            log.warning("update_last_check_unavailable", error=str(exc))
            last_check = LastCheckInfo()

        if not last_check.should_check(self._settings.check_interval):
            log.debug("update_check_not_due", checked_at=str(last_check.checked_at))
            return False

        try:
            async with asyncio.timeout(BACKGROUND_CHECK_TIMEOUT):
                result = await self._checker.check()
        except TimeoutError:
            log.debug("update_background_check_timeout", timeout=BACKGROUND_CHECK_TIMEOUT)
            return False
        except Exception as exc:
            # A failed background check must never break startup
            log.debug("update_background_check_failed", error=str(exc))
            return False

        if not self._checker.should_notify(result):
            return False

        self._notify(result)
        return True

    def _notify(self, result: CheckResult) -> None:
        message = (
            f"A new version of {self._settings.app_name} is available: "
            f"[bold]{result.latest_version}[/bold] (current: {result.current_version})"
        )
        if result.release is not None and result.release.critical:
            message += "\n[bold red]This is a critical update and is strongly recommended.[/]"
        message += f"\n\nRun '{self._settings.app_name} update' to update now."
        self._console.print(Panel(message, title="Update available", border_style="cyan"))

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self) -> bool:
        """Check, confirm, download and install; return True if installed.

        Raises:
            UpdateError: If the check, download or install fails.
        """
        result = await self._checker.check()
        release = self._prepare(result)
        if release is None:
            return False

        payload = await self._download_with_progress(release)
        try:
            self._console.print("Installing update...")
            self._installer.install(payload)
        finally:
            payload.unlink(missing_ok=True)

        self._console.print(
            f"[green]Successfully updated to version {result.latest_version}![/green]"
        )
        self._console.print(
            "The running process still uses the previous version. "
            f"Please restart {self._settings.app_name} to use the new one."
        )
        return True

    async def update_and_restart(self, args: Sequence[str]) -> bool:
        """Like :meth:`update`, but relaunches the new binary with *args*.

        Only returns (False) when nothing was installed.
        """
        result = await self._checker.check()
        release = self._prepare(result)
        if release is None:
            return False

        payload = await self._download_with_progress(release)
        self._console.print("Installing update and restarting...")
        try:
            self._installer.install_and_restart(payload, list(args))
        finally:
            # Also runs on the SystemExit raised after a successful relaunch
            payload.unlink(missing_ok=True)

    def _prepare(self, result: CheckResult) -> ReleaseInfo | None:
        """Show the release and ask; None means stop here."""
        if not result.update_available or result.release is None:
            self._console.print("[green]You are already running the latest version![/green]")
            return None

        self._show_update_info(result)

        if self._settings.require_confirmation:
            question = f"Do you want to update to version {result.latest_version}?"
            if not self._confirm(question):
                self._console.print("Update cancelled.")
                log.info("update_cancelled", version=str(result.latest_version))
                return None

        return result.release

    def _show_update_info(self, result: CheckResult) -> None:
        release = result.release
        table = Table(title="Update Available", show_header=False, box=None)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Current Version", str(result.current_version))
        table.add_row("Latest Version", str(result.latest_version))
        if release is not None:
            if release.release_date is not None:
                table.add_row("Release Date", release.release_date.strftime("%Y-%m-%d"))
            if release.size:
                table.add_row("Download Size", format_bytes(release.size))
            if release.critical:
                table.add_row("Priority", "[bold red]CRITICAL[/]")
        self._console.print(table)

        if release is not None and release.changelog:
            self._console.print()
            self._console.rule("Changelog")
            self._console.print(release.changelog, markup=False)
        self._console.print()

    async def _download_with_progress(self, release: ReleaseInfo) -> Path:
        progress = Progress(
            TextColumn("Downloading"),
            BarColumn(),
            DownloadColumn(binary_units=True),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self._console,
        )
        task_id = progress.add_task("download", total=release.size or None)
        downloaded = 0

        def on_progress(p: DownloadProgress) -> None:
            nonlocal downloaded
            downloaded = p.bytes_downloaded
            progress.update(task_id, completed=p.bytes_downloaded, total=p.total_bytes or None)

        async with timed_operation("update_download", log=log, version=release.version) as timing:
            with progress:
                payload = await self._downloader.download(release, on_progress)

        self._console.print(
            f"Downloaded {format_bytes(downloaded)} in {timing['elapsed_ms'] / 1000:.1f}s"
        )
        return payload

    def _prompt_confirm(self, question: str) -> bool:
        try:
            return Confirm.ask(question, console=self._console, default=False)
        except (EOFError, KeyboardInterrupt):
            return False

    # ------------------------------------------------------------------
    # Skip / status / cleanup
    # ------------------------------------------------------------------

    async def skip_version(self) -> str | None:
        """Stop notifying about the currently available version.

        Returns the skipped version, or None if there was nothing to skip.

        Raises:
            UpdateError: If the check fails or the skip cannot be stored.
        """
        result = await self._checker.check()
        if not result.update_available:
            self._console.print("No updates available to skip.")
            return None

        version = str(result.latest_version)
        self._checker.skip_version(version)
        self._console.print(f"[green]Version {version} will be skipped.[/green]")
        return version

    async def status(self) -> CheckResult:
        """Print current/latest version information without installing."""
        result = await self._checker.check()

        table = Table(title="Update Status", show_header=False, box=None)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Current Version", str(result.current_version))
        if result.update_available:
            table.add_row("Status", "[yellow]Update Available[/yellow]")
            table.add_row("Latest Version", str(result.latest_version))
            if result.release is not None and result.release.critical:
                table.add_row("Priority", "[red]CRITICAL[/red]")
        else:
            table.add_row("Status", "[green]Up to date[/green]")

        try:
            last_check = self._checker.get_last_check()
        except StateError:
            last_check = None
        if last_check is not None and last_check.checked_at is not None:
            table.add_row("Last Checked", last_check.checked_at.strftime("%Y-%m-%d %H:%M:%S"))

        self._console.print(table)
        if result.update_available:
            self._console.print(f"\nRun '{self._settings.app_name} update' to update now.")
        return result

    def cleanup_cache(self) -> int:
        """Prune old payloads from the download cache."""
        removed = self._downloader.cleanup_old_downloads()
        self._console.print("[green]Cache cleaned successfully.[/green]")
        return removed
