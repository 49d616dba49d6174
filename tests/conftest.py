"""Shared fixtures for the updater test suite."""

from __future__ import annotations

import io
import json
import logging
import stat
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from xray_updater.config import get_settings
from xray_updater.service import ServiceSupervisor

RELEASE_URL = "https://api.github.com/repos/XTLS/Xray-core/releases/latest"
DOWNLOAD_BASE = "https://github.com/XTLS/Xray-core/releases/download"

ALL_ARCHIVES = (
    "Xray-linux-64.zip",
    "Xray-linux-arm64-v8a.zip",
    "Xray-linux-arm32-v7a.zip",
    "Xray-linux-arm32-v6.zip",
)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _no_ambient_proxy(monkeypatch):
    for name in ("HTTPS_PROXY", "https_proxy", "XRAY_UPDATER_PROXY_URL"):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Fake binaries and archives
# ---------------------------------------------------------------------------


def fake_xray_script(version: str) -> str:
    """Shell script that mimics ``xray -version`` output."""
    return (
        "#!/bin/sh\n"
        f'echo "Xray {version} (Xray, Penetrates Everything.) 5e5a2e6 (go1.23.1 linux/amd64)"\n'
        'echo "A unified platform for anti-censorship."\n'
    )


def write_executable(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def make_zip(entries: dict[str, str | bytes]) -> bytes:
    """Build an in-memory zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def make_release_archive(version: str) -> bytes:
    """Zip laid out like an upstream Xray release."""
    return make_zip(
        {
            "xray": fake_xray_script(version),
            "geoip.dat": b"\x00geoip",
            "geosite.dat": b"\x00geosite",
            "LICENSE": "MPL-2.0",
            "README.md": "Project X",
        }
    )


def release_payload(tag: str, archives: tuple[str, ...] = ALL_ARCHIVES) -> dict:
    return {
        "tag_name": tag,
        "html_url": f"https://github.com/XTLS/Xray-core/releases/tag/{tag}",
        "published_at": "2025-01-01T00:00:00Z",
        "assets": [
            {"name": name, "browser_download_url": f"{DOWNLOAD_BASE}/{tag}/{name}"}
            for name in archives
        ],
    }


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class FakeGitHub:
    """Routes release-API and download requests to canned responses."""

    def __init__(
        self,
        payload: dict | None = None,
        archive: bytes = b"",
        release_status: int = 200,
        release_body: str | None = None,
    ) -> None:
        self.payload = payload
        self.archive = archive
        self.release_status = release_status
        self.release_body = release_body
        self.requests: list[httpx.Request] = []

    @property
    def release_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "api.github.com"]

    @property
    def download_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/releases/download/" in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "api.github.com":
            if self.release_body is not None:
                return httpx.Response(self.release_status, text=self.release_body)
            return httpx.Response(self.release_status, content=json.dumps(self.payload).encode())
        if "/releases/download/" in request.url.path:
            return httpx.Response(200, content=self.archive)
        return httpx.Response(404, text="Not Found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# Service control
# ---------------------------------------------------------------------------


class RecordingSupervisor(ServiceSupervisor):
    """Supervisor double that records calls instead of running commands."""

    mechanism = "recording"

    def __init__(self, stop_ok: bool = True, start_error: Exception | None = None) -> None:
        super().__init__("xray")
        self.calls: list[str] = []
        self._stop_ok = stop_ok
        self._start_error = start_error

    def command(self, action: str) -> list[str]:
        return ["true", action]

    async def stop(self) -> bool:
        self.calls.append("stop")
        return self._stop_ok

    async def start(self) -> None:
        self.calls.append("start")
        if self._start_error is not None:
            raise self._start_error


@pytest.fixture
def installation(tmp_path: Path) -> Callable[[str], Path]:
    """Factory creating a fake installed xray reporting ``version``."""

    def _install(version: str = "24.9.30") -> Path:
        return write_executable(tmp_path / "bin" / "xray", fake_xray_script(version))

    return _install


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    root = tmp_path / "staging"
    root.mkdir()
    return root


@pytest.fixture
def reset_root_logger():
    """Restore root logger handlers and level around a test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    logging.root.handlers.clear()
    yield
    for handler in logging.root.handlers:
        handler.close()
    logging.root.handlers.clear()
    logging.root.handlers.extend(original_handlers)
    logging.root.setLevel(original_level)
