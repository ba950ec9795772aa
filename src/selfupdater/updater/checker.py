"""Update checker.

Fetches the release manifest, compares it against the running version and
keeps ``last_check.json`` so background checks can be rate-limited and
skipped versions stay quiet.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path

import httpx

from selfupdater.config import UpdateSettings
from selfupdater.constants import LAST_CHECK_FILENAME, STATE_DIR_MODE, STATE_FILE_MODE
from selfupdater.logging import get_logger
from selfupdater.updater.errors import FetchError, StateError
from selfupdater.updater.models import CheckResult, CheckStatus, LastCheckInfo, ReleaseInfo
from selfupdater.updater.version import Version

log = get_logger("selfupdater.updater.checker")


class UpdateChecker:
    """Checks the update endpoint and owns the persisted check state."""

    def __init__(
        self,
        settings: UpdateSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def state_path(self) -> Path | None:
        if self._settings.state_dir is None:
            return None
        return Path(self._settings.state_dir) / LAST_CHECK_FILENAME

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    async def check(self) -> CheckResult:
        """Compare the running version with the latest published release.

        Raises:
            ParseError: If the current or the published version is malformed.
            FetchError: If the endpoint is unreachable or returns non-2xx.
            ManifestError: If the manifest body is malformed.
        """
        current = Version.parse(self._settings.current_version)
        release = await self._fetch_release_info()
        latest = Version.parse(release.version)

        if latest.is_prerelease and not self._settings.allow_prerelease:
            log.debug("update_prerelease_ignored", latest=str(latest))
            status = CheckStatus.UP_TO_DATE
        elif latest.is_newer(current):
            status = CheckStatus.AVAILABLE
        else:
            status = CheckStatus.UP_TO_DATE

        result = CheckResult(
            status=status,
            current_version=current,
            latest_version=latest,
            release=release,
        )
        log.info(
            "update_check_complete",
            status=status.value,
            current=str(current),
            latest=str(latest),
        )

        try:
            self._save_last_check(result)
        except StateError as exc:
            log.warning("update_state_save_failed", error=str(exc))
            result.warnings.append(f"failed to save last check info: {exc}")

        return result

    async def _fetch_release_info(self) -> ReleaseInfo:
        headers = {
            "User-Agent": (
                f"{self._settings.app_name}-update-checker/{self._settings.current_version}"
            ),
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = await client.get(self._settings.update_url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            log.warning("update_fetch_failed", url=self._settings.update_url, error=str(exc))
            raise FetchError(f"failed to fetch update info: {exc}") from exc

        if not resp.is_success:
            log.warning("update_fetch_bad_status", status=resp.status_code)
            raise FetchError(f"unexpected status code: {resp.status_code}")

        return ReleaseInfo.from_json(resp.content)

    # ------------------------------------------------------------------
    # Persisted state
    # ------------------------------------------------------------------

    def get_last_check(self) -> LastCheckInfo:
        """Load the last check state; a never-checked state if none is stored.

        Raises:
            StateError: If no state directory is configured or the stored
                file cannot be read or parsed.
        """
        path = self.state_path
        if path is None:
            raise StateError("state directory not configured")

        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return LastCheckInfo()
        except OSError as exc:
            raise StateError(f"failed to read last check info: {exc}") from exc

        # UnicodeDecodeError is a ValueError too
        try:
            data = json.loads(raw.decode("utf-8"))
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return LastCheckInfo.from_dict(data)
        except ValueError as exc:
            raise StateError(f"failed to parse last check info: {exc}") from exc

    def _save_last_check(self, result: CheckResult) -> None:
        latest = str(result.latest_version) if result.latest_version else ""
        info = LastCheckInfo(checked_at=result.checked_at, latest_version=latest)

        # A skip only outlives checks that keep reporting the skipped version
        try:
            previous = self.get_last_check()
        except StateError:
            previous = None
        if previous and previous.update_skipped and previous.skipped_version == latest:
            info.update_skipped = True
            info.skipped_version = previous.skipped_version
            info.skipped_at = previous.skipped_at

        self._write_state(info)

    def _write_state(self, info: LastCheckInfo) -> None:
        path = self.state_path
        if path is None:
            raise StateError("state directory not configured")

        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(mode=STATE_DIR_MODE, parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(info.to_dict(), indent=2), encoding="utf-8")
            os.chmod(tmp_path, STATE_FILE_MODE)
            tmp_path.replace(path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StateError(f"failed to write last check info: {exc}") from exc

    def skip_version(self, version: str) -> None:
        """Suppress notifications for exactly *version*.

        Raises:
            StateError: If no state directory is configured or the state
                cannot be read or written.
        """
        info = self.get_last_check()
        info.update_skipped = True
        info.skipped_version = version
        info.skipped_at = datetime.now(UTC)
        self._write_state(info)
        log.info("update_version_skipped", version=version)

    def should_notify(self, result: CheckResult) -> bool:
        """Return True if the user should hear about *result*."""
        if not result.update_available:
            return False

        try:
            info = self.get_last_check()
        except StateError as exc:
            # Never hide an update because the state file is broken
            log.debug("update_skip_state_unreadable", error=str(exc))
            return True

        return not (info.update_skipped and info.skipped_version == str(result.latest_version))
