"""Payload downloads into the local update cache.

Payloads are streamed into a temp file created inside the cache directory so
the installer can later move them within one filesystem. Nothing that fails
verification is left behind in the cache.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import IO

import httpx

from selfupdater.config import UpdateSettings
from selfupdater.constants import CACHE_MAX_AGE, DOWNLOAD_CHUNK_SIZE, STATE_DIR_MODE
from selfupdater.logging import get_logger
from selfupdater.updater.errors import (
    ChecksumError,
    ConfigurationError,
    FetchError,
    StateError,
    UnsupportedAlgorithmError,
)
from selfupdater.updater.models import ChecksumAlgorithm, DownloadProgress, ReleaseInfo

log = get_logger("selfupdater.updater.downloader")

ProgressCallback = Callable[[DownloadProgress], None]


def new_hasher(algorithm: str) -> hashlib._Hash:
    """Return a fresh digest object for *algorithm*.

    Raises:
        UnsupportedAlgorithmError: For anything other than sha256/sha512.
    """
    try:
        algo = ChecksumAlgorithm(algorithm.lower())
    except ValueError:
        raise UnsupportedAlgorithmError(
            f"unsupported checksum algorithm: {algorithm!r}"
        ) from None
    return hashlib.new(algo.value)


def file_digest(path: Path, algorithm: str) -> str:
    """Hex digest of the file at *path*."""
    hasher = new_hasher(algorithm)
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(DOWNLOAD_CHUNK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()


def verify_checksum(path: Path, expected: str, algorithm: str) -> None:
    """Check the file at *path* against *expected* (case-insensitive hex).

    Raises:
        ChecksumError: If no checksum is given or the digests differ.
        UnsupportedAlgorithmError: If *algorithm* is not supported.
    """
    if not expected:
        raise ChecksumError("no checksum provided")

    actual = file_digest(path, algorithm)
    if actual.lower() != expected.strip().lower():
        raise ChecksumError(
            f"checksum mismatch: expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
        )


class UpdateDownloader:
    """Downloads and verifies release payloads."""

    def __init__(
        self,
        settings: UpdateSettings,
        transport: httpx.AsyncBaseTransport | None = None,
        platform_key: str | None = None,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._platform_key = platform_key
        self._chunk_size = chunk_size

    @property
    def cache_dir(self) -> Path | None:
        return Path(self._settings.cache_dir) if self._settings.cache_dir else None

    async def download(
        self,
        release: ReleaseInfo,
        progress_callback: ProgressCallback | None = None,
    ) -> Path:
        """Download *release* into the cache and verify its checksum.

        Returns the path of the verified payload inside the cache directory.

        Raises:
            UnsupportedAlgorithmError: If the manifest algorithm is unknown.
            ChecksumError: If the manifest has no checksum or it does not match.
            FetchError: On transport failure or a non-2xx response.
            ConfigurationError: If no cache directory is configured.
        """
        # Fail before any network traffic on manifests we could never accept
        new_hasher(release.checksum_algo)
        if not release.checksum:
            raise ChecksumError("no checksum provided")

        cache_dir = self.cache_dir
        if cache_dir is None:
            raise ConfigurationError("cache directory not configured")
        cache_dir.mkdir(mode=STATE_DIR_MODE, parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=cache_dir,
            prefix=f"{self._settings.app_name}-update-",
            suffix=".tmp",
        )
        tmp_path = Path(tmp_name)
        url = release.download_url(self._platform_key)
        log.info("update_download_started", url=url, dest=str(tmp_path))

        try:
            with os.fdopen(fd, "wb") as fh:
                await self._stream_to_file(url, fh, release.size or 0, progress_callback)
            verify_checksum(tmp_path, release.checksum, release.checksum_algo)
        except BaseException:
            # Includes cancellation: never leave a partial payload behind
            tmp_path.unlink(missing_ok=True)
            raise

        log.info("update_download_verified", path=str(tmp_path), algo=release.checksum_algo)
        return tmp_path

    async def _stream_to_file(
        self,
        url: str,
        dest: IO[bytes],
        size: int,
        progress_callback: ProgressCallback | None,
    ) -> None:
        headers = {
            "User-Agent": f"{self._settings.app_name}-updater/{self._settings.current_version}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url, headers=headers) as resp:
                    if not resp.is_success:
                        raise FetchError(f"unexpected status code: {resp.status_code}")

                    total = size or int(resp.headers.get("content-length") or 0)
                    start = time.monotonic()
                    current = 0
                    async for chunk in resp.aiter_bytes(self._chunk_size):
                        dest.write(chunk)
                        current += len(chunk)
                        if progress_callback is not None:
                            progress_callback(_progress(current, total, start))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            log.warning("update_download_failed", url=url, error=str(exc))
            raise FetchError(f"failed to download: {exc}") from exc

        dest.flush()
        os.fsync(dest.fileno())

    # ------------------------------------------------------------------
    # Cache maintenance
    # ------------------------------------------------------------------

    def cleanup_old_downloads(
        self,
        max_age: timedelta = CACHE_MAX_AGE,
        now: datetime | None = None,
    ) -> int:
        """Remove cached files older than *max_age*; return how many went.

        Raises:
            StateError: If the cache directory exists but cannot be listed.
        """
        cache_dir = self.cache_dir
        if cache_dir is None:
            return 0

        cutoff = (now or datetime.now(UTC)).timestamp() - max_age.total_seconds()
        removed = 0
        try:
            entries = list(os.scandir(cache_dir))
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise StateError(f"failed to read cache directory: {exc}") from exc

        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                continue
            try:
                if entry.stat(follow_symlinks=False).st_mtime < cutoff:
                    os.unlink(entry.path)
                    removed += 1
            except OSError as exc:
                log.debug("update_cache_entry_skipped", path=entry.path, error=str(exc))

        log.info("update_cache_cleaned", removed=removed, cache_dir=str(cache_dir))
        return removed


def _progress(current: int, total: int, start: float) -> DownloadProgress:
    percentage = current / total * 100 if total > 0 else 0.0
    elapsed = time.monotonic() - start
    speed = int(current / elapsed) if elapsed > 0 else 0
    eta = timedelta(0)
    if speed > 0 and total > 0:
        eta = timedelta(seconds=max(total - current, 0) / speed)
    return DownloadProgress(
        bytes_downloaded=current,
        total_bytes=total,
        percentage=percentage,
        bytes_per_second=speed,
        eta=eta,
    )
