"""Replace the running executable with a verified payload.

Install lifecycle:
1. Stat the current executable and capture its permission bits
2. Write a full, fsync'd copy to ``<path>.backup``
3. Apply the captured mode to the payload
4. Swap the payload in with the platform's replace strategy
5. Verify the new file (regular file, executable, soft ``--version`` run)
6. Delete the backup

Any failure in steps 3-5 restores the backup before the error is raised.
"""

from __future__ import annotations

import errno
import os
import shutil
import stat
import subprocess
import sys
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn, Protocol

from selfupdater.constants import BACKUP_SUFFIX, VERIFY_ARGS, VERIFY_TIMEOUT, WINDOWS_OLD_SUFFIX
from selfupdater.logging import get_logger
from selfupdater.updater.errors import InstallError

log = get_logger("selfupdater.updater.installer")

_ETXTBSY = getattr(errno, "ETXTBSY", 26)


def get_executable_path() -> Path:
    """Return the real path of the running program.

    Frozen builds report the binary in ``sys.executable``; otherwise the
    program is whatever ``argv[0]`` resolves to on ``PATH``.
    """
    if getattr(sys, "frozen", False):
        raw = sys.executable
    else:
        raw = sys.argv[0]
        if raw and os.sep not in raw and (os.altsep is None or os.altsep not in raw):
            raw = shutil.which(raw) or raw
    if not raw:
        raise InstallError("failed to get current executable path")
    return Path(os.path.realpath(raw))


def copy_durable(src: Path, dst: Path, mode: int | None = None) -> None:
    """Copy *src* to *dst* and fsync before returning."""
    with open(src, "rb") as fin, open(dst, "wb") as fout:
        shutil.copyfileobj(fin, fout)
        fout.flush()
        os.fsync(fout.fileno())
    if mode is not None:
        os.chmod(dst, mode)


# ---------------------------------------------------------------------------
# Replace strategies
# ---------------------------------------------------------------------------


class ReplaceStrategy(Protocol):
    """Moves a payload onto the target path."""

    name: str

    def replace(self, source: Path, target: Path) -> None: ...


class PosixReplace:
    """Copy next to the target, then rename over it.

    A same-directory rename is atomic, so the target path always holds
    either the whole old binary or the whole new one.
    """

    name = "posix"

    def replace(self, source: Path, target: Path) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".new"
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            copy_durable(source, tmp_path, stat.S_IMODE(os.stat(source).st_mode))
            os.replace(tmp_path, target)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        # Persist the rename itself
        try:
            dir_fd = os.open(str(target.parent), os.O_RDONLY | os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except (OSError, AttributeError):
            pass


class WindowsReplace:
    """Move the locked executable aside, then copy the payload into place."""

    name = "windows"

    def replace(self, source: Path, target: Path) -> None:
        old_path = target.with_name(target.name + WINDOWS_OLD_SUFFIX)
        try:
            old_path.unlink(missing_ok=True)
        except OSError as exc:
            log.debug("update_old_binary_locked", path=str(old_path), error=str(exc))

        os.replace(target, old_path)
        try:
            shutil.copy2(source, target)
        except BaseException:
            os.replace(old_path, target)
            raise

        # The old binary may still be mapped by this process
        try:
            old_path.unlink()
        except OSError as exc:
            log.debug("update_old_binary_kept", path=str(old_path), error=str(exc))


def default_strategy() -> ReplaceStrategy:
    """Pick the replace strategy for the host platform."""
    return WindowsReplace() if os.name == "nt" else PosixReplace()


# ---------------------------------------------------------------------------
# Installer
# ---------------------------------------------------------------------------


class Installer:
    """Installs downloaded payloads over the running executable."""

    def __init__(
        self,
        executable_path: Path | str | None = None,
        strategy: ReplaceStrategy | None = None,
        verify_args: Sequence[str] = VERIFY_ARGS,
        verify_timeout: float = VERIFY_TIMEOUT,
    ) -> None:
        self._executable_path = Path(executable_path) if executable_path else None
        self._strategy = strategy or default_strategy()
        self._verify_args = tuple(verify_args)
        self._verify_timeout = verify_timeout

    @property
    def strategy(self) -> ReplaceStrategy:
        return self._strategy

    @property
    def executable_path(self) -> Path:
        if self._executable_path is not None:
            return Path(os.path.realpath(self._executable_path))
        return get_executable_path()

    def install(self, payload: Path | str) -> Path:
        """Replace the executable with *payload*; return the installed path.

        Raises:
            InstallError: If any step fails. When the swap had started the
                original binary has been restored from backup first.
        """
        payload = Path(payload)
        target = self.executable_path

        try:
            mode = stat.S_IMODE(target.stat().st_mode)
        except OSError as exc:
            raise InstallError(f"failed to stat current executable: {exc}") from exc

        backup = target.with_name(target.name + BACKUP_SUFFIX)
        try:
            copy_durable(target, backup, mode)
        except OSError as exc:
            backup.unlink(missing_ok=True)
            raise InstallError(f"failed to create backup: {exc}") from exc
        log.info("update_backup_created", backup=str(backup))

        step = "set permissions"
        try:
            os.chmod(payload, mode)
            step = "replace binary"
            self._strategy.replace(payload, target)
            step = "verify binary"
            self._verify_binary(target)
        except (OSError, InstallError) as exc:
            log.error("update_install_failed", step=step, error=str(exc))
            self._rollback(target, backup)
            raise InstallError(f"failed to {step}: {exc}") from exc

        try:
            backup.unlink()
        except OSError as exc:
            log.warning("update_backup_not_removed", backup=str(backup), error=str(exc))

        log.info("update_installed", path=str(target), strategy=self._strategy.name)
        return target

    def _verify_binary(self, path: Path) -> None:
        try:
            info = path.stat()
        except OSError as exc:
            raise InstallError(f"binary not found: {exc}") from exc

        if stat.S_ISDIR(info.st_mode):
            raise InstallError("path is a directory")
        if not stat.S_ISREG(info.st_mode):
            raise InstallError("path is not a regular file")
        if os.name != "nt" and not info.st_mode & 0o111:
            raise InstallError("binary is not executable")

        if not self._verify_args:
            return
        # Not every program implements --version, so this only warns
        try:
            subprocess.run(
                [str(path), *self._verify_args],
                capture_output=True,
                timeout=self._verify_timeout,
                check=True,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            log.warning("update_verify_run_failed", path=str(path), error=str(exc))

    def _rollback(self, target: Path, backup: Path) -> bool:
        if not backup.exists():
            log.error("update_rollback_no_backup", backup=str(backup))
            return False

        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            log.debug("update_rollback_unlink_failed", path=str(target), error=str(exc))

        try:
            os.replace(backup, target)
        except OSError as exc:
            log.error("update_rollback_failed", backup=str(backup), error=str(exc))
            print(f"ERROR: Failed to rollback: {exc}", file=sys.stderr)
            print(f"Backup is at: {backup}", file=sys.stderr)
            return False

        log.info("update_rolled_back", path=str(target))
        return True

    # ------------------------------------------------------------------
    # Restart / permissions
    # ------------------------------------------------------------------

    def install_and_restart(self, payload: Path | str, args: Sequence[str]) -> NoReturn:
        """Install *payload*, relaunch it with *args* and exit this process.

        Raises:
            InstallError: If installation or the relaunch fails.
        """
        target = self.install(payload)

        kwargs: dict[str, object] = {}
        if os.name == "nt":
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True

        try:
            # Standard streams are inherited
            subprocess.Popen(  # noqa: S603
                [str(target), *args],
                **kwargs,  # type: ignore[arg-type]
            )
        except OSError as exc:
            raise InstallError(f"failed to restart: {exc}") from exc

        log.info("update_restarting", path=str(target))
        sys.exit(0)

    def can_update(self) -> None:
        """Check that this process may replace the executable.

        Raises:
            InstallError: If the executable or its directory is not writable.
        """
        path = self.executable_path
        hint = "try running with elevated privileges"
        try:
            with open(path, "r+b"):
                pass
        except OSError as exc:
            # A running binary refuses write opens but can still be renamed over
            if exc.errno != _ETXTBSY:
                raise InstallError(f"cannot write to executable {path} ({hint}): {exc}") from exc

        if not os.access(path.parent, os.W_OK | os.X_OK):
            raise InstallError(f"cannot write to directory {path.parent} ({hint})")

    def needs_elevation(self) -> bool:
        """Return True when an update would need sudo on this host."""
        if os.name == "nt":
            return False
        try:
            self.can_update()
        except InstallError:
            return True
        return False
