"""Unit tests for payload downloads, checksum verification and cache cleanup."""

from __future__ import annotations

import asyncio
import hashlib
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from selfupdater.updater.downloader import UpdateDownloader, file_digest, verify_checksum
from selfupdater.updater.errors import (
    ChecksumError,
    ConfigurationError,
    FetchError,
    UnsupportedAlgorithmError,
)
from selfupdater.updater.models import DownloadProgress, ReleaseInfo

PAYLOAD = b"0123456789" * 10


def _release(payload: bytes = PAYLOAD, **overrides: object) -> ReleaseInfo:
    data: dict[str, object] = {
        "version": "2.0.0",
        "url": "https://releases.example.com/mycli",
        "checksum": hashlib.sha256(payload).hexdigest(),
        "size": len(payload),
    }
    data.update(overrides)
    return ReleaseInfo(**data)


def _serve(payload: bytes = PAYLOAD, status: int = 200, seen: list[httpx.Request] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, content=payload)

    return httpx.MockTransport(handler)


def _cache_files(cache_dir: Path) -> list[Path]:
    return sorted(cache_dir.iterdir()) if cache_dir.exists() else []


# ---------------------------------------------------------------------------
# verify_checksum
# ---------------------------------------------------------------------------


class TestVerifyChecksum:
    """Tests for the checksum helpers."""

    def test_match(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        verify_checksum(path, hashlib.sha256(b"hello").hexdigest(), "sha256")

    def test_case_insensitive(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        verify_checksum(path, hashlib.sha256(b"hello").hexdigest().upper(), "SHA256")

    def test_mismatch_carries_both_digests(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")

        with pytest.raises(ChecksumError, match="checksum mismatch") as exc_info:
            verify_checksum(path, "00" * 32, "sha256")

        assert exc_info.value.expected == "00" * 32
        assert exc_info.value.actual == hashlib.sha256(b"hello").hexdigest()

    def test_empty_checksum(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        with pytest.raises(ChecksumError, match="no checksum provided"):
            verify_checksum(path, "", "sha256")

    def test_unsupported_algorithm(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        with pytest.raises(UnsupportedAlgorithmError):
            verify_checksum(path, "abc", "md5")

    def test_sha512_digest(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        assert file_digest(path, "sha512") == hashlib.sha512(b"hello").hexdigest()


# ---------------------------------------------------------------------------
# download()
# ---------------------------------------------------------------------------


class TestDownload:
    """Tests for UpdateDownloader.download."""

    async def test_success(self, settings) -> None:
        downloader = UpdateDownloader(settings, transport=_serve())
        path = await downloader.download(_release())

        assert path.read_bytes() == PAYLOAD
        assert path.parent == settings.cache_dir
        assert path.name.startswith("mycli-update-")

    async def test_progress_reports_each_chunk(self, settings) -> None:
        updates: list[DownloadProgress] = []
        downloader = UpdateDownloader(settings, transport=_serve(), chunk_size=16)
        await downloader.download(_release(), updates.append)

        assert updates
        counts = [u.bytes_downloaded for u in updates]
        assert counts == sorted(counts)
        assert updates[-1].bytes_downloaded == len(PAYLOAD)
        assert updates[-1].total_bytes == len(PAYLOAD)
        assert updates[-1].percentage == pytest.approx(100.0)
        assert updates[-1].is_complete

    async def test_total_from_content_length_when_size_missing(self, settings) -> None:
        updates: list[DownloadProgress] = []
        downloader = UpdateDownloader(settings, transport=_serve())
        await downloader.download(_release(size=None), updates.append)

        assert updates[-1].total_bytes == len(PAYLOAD)

    async def test_platform_url_is_used(self, settings) -> None:
        seen: list[httpx.Request] = []
        release = _release(platform={"linux-arm64": "https://releases.example.com/arm"})
        downloader = UpdateDownloader(
            settings, transport=_serve(seen=seen), platform_key="linux-arm64"
        )
        await downloader.download(release)

        assert str(seen[0].url) == "https://releases.example.com/arm"

    async def test_sha512_and_uppercase_checksum(self, settings) -> None:
        release = _release(
            checksum=hashlib.sha512(PAYLOAD).hexdigest().upper(), checksum_algo="sha512"
        )
        path = await UpdateDownloader(settings, transport=_serve()).download(release)
        assert path.read_bytes() == PAYLOAD

    async def test_checksum_mismatch_leaves_no_file(self, settings) -> None:
        downloader = UpdateDownloader(settings, transport=_serve(b"tampered"))
        with pytest.raises(ChecksumError):
            await downloader.download(_release())

        assert _cache_files(settings.cache_dir) == []

    async def test_unsupported_algorithm_makes_no_request(self, settings) -> None:
        seen: list[httpx.Request] = []
        downloader = UpdateDownloader(settings, transport=_serve(seen=seen))
        with pytest.raises(UnsupportedAlgorithmError):
            await downloader.download(_release(checksum_algo="md5"))

        assert seen == []

    async def test_empty_checksum_makes_no_request(self, settings) -> None:
        seen: list[httpx.Request] = []
        downloader = UpdateDownloader(settings, transport=_serve(seen=seen))
        with pytest.raises(ChecksumError, match="no checksum provided"):
            await downloader.download(_release(checksum=""))

        assert seen == []

    async def test_http_error_status(self, settings) -> None:
        downloader = UpdateDownloader(settings, transport=_serve(status=404))
        with pytest.raises(FetchError, match="unexpected status code: 404"):
            await downloader.download(_release())

        assert _cache_files(settings.cache_dir) == []

    async def test_transport_failure(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        downloader = UpdateDownloader(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(FetchError, match="failed to download"):
            await downloader.download(_release())

        assert _cache_files(settings.cache_dir) == []

    async def test_cancellation_leaves_no_file(self, settings) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200, content=PAYLOAD)

        downloader = UpdateDownloader(settings, transport=httpx.MockTransport(handler))
        task = asyncio.create_task(downloader.download(_release()))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert _cache_files(settings.cache_dir) == []

    async def test_no_cache_dir(self, make_settings) -> None:
        downloader = UpdateDownloader(make_settings(cache_dir=None), transport=_serve())
        with pytest.raises(ConfigurationError):
            await downloader.download(_release())


# ---------------------------------------------------------------------------
# cleanup_old_downloads()
# ---------------------------------------------------------------------------


class TestCleanup:
    """Tests for cache cleanup."""

    def _touch(self, path: Path, age: timedelta) -> None:
        path.write_bytes(b"x")
        ts = (datetime.now(UTC) - age).timestamp()
        os.utime(path, (ts, ts))

    def test_removes_only_old_files(self, settings) -> None:
        cache = Path(settings.cache_dir)
        cache.mkdir(parents=True)
        self._touch(cache / "old.tmp", timedelta(days=8))
        self._touch(cache / "new.tmp", timedelta(days=1))
        (cache / "subdir").mkdir()

        removed = UpdateDownloader(settings).cleanup_old_downloads()

        assert removed == 1
        assert sorted(p.name for p in cache.iterdir()) == ["new.tmp", "subdir"]

    def test_custom_max_age(self, settings) -> None:
        cache = Path(settings.cache_dir)
        cache.mkdir(parents=True)
        self._touch(cache / "a", timedelta(hours=2))

        assert UpdateDownloader(settings).cleanup_old_downloads(max_age=timedelta(hours=1)) == 1

    def test_missing_cache_dir(self, settings) -> None:
        assert UpdateDownloader(settings).cleanup_old_downloads() == 0

    def test_unset_cache_dir(self, make_settings) -> None:
        assert UpdateDownloader(make_settings(cache_dir=None)).cleanup_old_downloads() == 0
