"""Release artifact download, verification and extraction.

The archive lives in a per-run staging directory created by
``staging_directory()``. Callers hold that directory for the whole
fetch → swap span; it is removed on every exit path.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import zipfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import httpx

from xray_updater.constants import (
    DEFAULT_EXECUTABLE_NAME,
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_RETRIES,
    DOWNLOAD_TIMEOUT_SECONDS,
    EXTRACT_DIRNAME,
    RETRY_DELAY_SECONDS,
    STAGING_PREFIX,
)
from xray_updater.errors import (
    ArchiveCorruptError,
    ArtifactLayoutMismatchError,
    DownloadFailedError,
)
from xray_updater.logging import get_logger
from xray_updater.network import NetworkConfig

log = get_logger("xray_updater.fetcher")


@contextmanager
def staging_directory(root: str | None = None) -> Iterator[Path]:
    """Create an exclusively-owned temporary directory and always remove it."""
    if root:
        Path(root).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=root))
    log.info("staging_directory_created", path=str(path))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            log.warning("staging_directory_not_removed", path=str(path))
        else:
            log.info("staging_directory_removed", path=str(path))


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in (408, 429)


class ArtifactFetcher:
    """Downloads a release archive and extracts the replacement executable."""

    def __init__(
        self,
        network: NetworkConfig | None = None,
        retries: int = DOWNLOAD_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        download_timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        executable_name: str = DEFAULT_EXECUTABLE_NAME,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.network = network or NetworkConfig()
        self._retries = max(1, retries)
        self._retry_delay = retry_delay
        self._download_timeout = download_timeout
        self._executable_name = executable_name
        self._transport = transport

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs = self.network.client_kwargs()
        if self._transport is not None:
            kwargs.pop("proxy", None)
            kwargs["transport"] = self._transport
        return kwargs

    async def _download_once(self, url: str, destination: Path) -> int:
        written = 0
        async with httpx.AsyncClient(**self._client_kwargs()) as client:
            async with client.stream("GET", url) as resp:
                resp.raise_for_status()
                with destination.open("wb") as handle:
                    async for chunk in resp.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        handle.write(chunk)
                        written += len(chunk)
        return written

    async def download(self, url: str, destination: Path) -> Path:
        """Download ``url`` to ``destination``, retrying transient failures.

        Each attempt is bounded by the connect timeout and by
        ``download_timeout`` for the whole transfer. Client errors (4xx other
        than 408/429) are not retried.

        Raises:
            DownloadFailedError: all attempts failed.
        """
        attempts = 0
        last_error = ""
        for attempt in range(1, self._retries + 1):
            attempts = attempt
            retryable = True
            try:
                size = await asyncio.wait_for(
                    self._download_once(url, destination),
                    timeout=self._download_timeout,
                )
                log.info("download_complete", url=url, bytes=size, attempt=attempt)
                return destination
            except TimeoutError:
                last_error = f"timed out after {self._download_timeout}s"
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                last_error = f"HTTP {status}"
                retryable = _is_retryable_status(status)
            except httpx.RequestError as exc:
                last_error = str(exc) or type(exc).__name__
            except OSError as exc:
                last_error = f"cannot write {destination}: {exc}"
                retryable = False

            destination.unlink(missing_ok=True)
            log.warning(
                "download_attempt_failed",
                url=url,
                attempt=attempt,
                max_attempts=self._retries,
                error=last_error,
            )
            if not retryable:
                break
            if attempt < self._retries:
                await asyncio.sleep(self._retry_delay)

        raise DownloadFailedError(url, attempts, last_error)

    # ------------------------------------------------------------------
    # Verify / extract
    # ------------------------------------------------------------------

    def verify_archive(self, archive: Path) -> None:
        """Check the archive is a readable zip whose members pass CRC checks.

        Raises:
            ArchiveCorruptError: not a zip, truncated, or a member is damaged.
        """
        try:
            with zipfile.ZipFile(archive) as zf:
                bad_member = zf.testzip()
                if not zf.namelist():
                    raise ArchiveCorruptError(str(archive), "archive is empty")
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
            raise ArchiveCorruptError(str(archive), str(exc)) from exc
        if bad_member is not None:
            raise ArchiveCorruptError(str(archive), f"CRC mismatch in {bad_member}")
        log.info("archive_verified", archive=str(archive))

    def extract(self, archive: Path, destination: Path) -> Path:
        """Extract ``archive`` into ``destination`` and return the executable path.

        Raises:
            ArchiveCorruptError: extraction failed.
            ArtifactLayoutMismatchError: the executable is not at the archive root.
        """
        try:
            with zipfile.ZipFile(archive) as zf:
                names = zf.namelist()
                zf.extractall(destination)
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
            raise ArchiveCorruptError(str(archive), str(exc)) from exc

        executable = destination / self._executable_name
        if not executable.is_file():
            log.error(
                "artifact_layout_mismatch",
                expected=self._executable_name,
                entries=names[:50],
            )
            raise ArtifactLayoutMismatchError(self._executable_name, names)

        log.info("archive_extracted", executable=str(executable), entries=len(names))
        return executable
