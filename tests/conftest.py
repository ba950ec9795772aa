"""Shared fixtures for selfupdater tests."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from selfupdater.config import UpdateSettings, get_settings

MANIFEST_URL = "https://releases.example.com/mycli/latest.json"
PAYLOAD_URL = "https://releases.example.com/mycli/2.0.0/mycli"
PAYLOAD = b"NEWBIN"


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    """get_settings() is cached; keep tests isolated from each other."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., UpdateSettings]:
    """Factory for settings with temp state/cache dirs and no .env loading."""

    def _make(**overrides: Any) -> UpdateSettings:
        values: dict[str, Any] = {
            "current_version": "1.0.0",
            "update_url": MANIFEST_URL,
            "state_dir": tmp_path / "state",
            "cache_dir": tmp_path / "cache",
            "app_name": "mycli",
            "_env_file": None,
        }
        values.update(overrides)
        return UpdateSettings(**values)

    return _make


@pytest.fixture()
def settings(make_settings: Callable[..., UpdateSettings]) -> UpdateSettings:
    return make_settings()


@pytest.fixture()
def make_manifest() -> Callable[..., dict[str, Any]]:
    """Factory for a manifest dict whose checksum matches the payload."""

    def _make(version: str = "2.0.0", payload: bytes = PAYLOAD, **overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": version,
            "url": PAYLOAD_URL,
            "checksum": hashlib.sha256(payload).hexdigest(),
            "size": len(payload),
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture()
def release_server(
    make_manifest: Callable[..., dict[str, Any]],
) -> Callable[..., httpx.MockTransport]:
    """Factory for a MockTransport serving a manifest and a payload.

    The manifest is served at MANIFEST_URL; every other URL returns the
    payload. Requests are appended to *requests* when given.
    """

    def _make(
        manifest: dict[str, Any] | None = None,
        payload: bytes = PAYLOAD,
        manifest_status: int = 200,
        payload_status: int = 200,
        requests: list[httpx.Request] | None = None,
    ) -> httpx.MockTransport:
        body = json.dumps(manifest if manifest is not None else make_manifest()).encode()

        def handler(request: httpx.Request) -> httpx.Response:
            if requests is not None:
                requests.append(request)
            if str(request.url) == MANIFEST_URL:
                return httpx.Response(manifest_status, content=body)
            return httpx.Response(payload_status, content=payload)

        return httpx.MockTransport(handler)

    return _make
