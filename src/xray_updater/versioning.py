"""Installed version probing and version comparison.

Versions are opaque tokens: the only normalisation is dropping one leading
``v`` and the only comparison is equality. Any difference, including an
older upstream tag, counts as an available update.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from xray_updater.constants import (
    COMMAND_TIMEOUT_SECONDS,
    DEFAULT_PRODUCT_NAME,
    DEFAULT_VERSION_FLAG,
)
from xray_updater.errors import BinaryNotExecutableError, VersionUnparseableError
from xray_updater.logging import get_logger

log = get_logger("xray_updater.versioning")


def normalize_version(version: str) -> str:
    """Strip one optional leading ``v``."""
    return version[1:] if version.startswith("v") else version


def versions_equal(current: str, latest: str) -> bool:
    """Return True if both versions are byte-equal once normalised."""
    return normalize_version(current) == normalize_version(latest)


def needs_update(current: str, latest: str) -> bool:
    """Return True whenever the normalised versions differ."""
    return not versions_equal(current, latest)


def parse_version_report(output: str, product_name: str = DEFAULT_PRODUCT_NAME) -> str | None:
    """Extract the version from ``<binary> -version`` output.

    Takes the first line mentioning ``product_name`` and returns its second
    whitespace-separated field, e.g. ``"Xray 24.9.30 (Xray, ...)"`` gives
    ``"24.9.30"``. Returns None if there is no such line or field.
    """
    for line in output.splitlines():
        if product_name not in line:
            continue
        fields = line.split()
        return fields[1] if len(fields) >= 2 else None
    return None


class VersionProbe:
    """Reads the version of the installed binary by running it."""

    def __init__(
        self,
        product_name: str = DEFAULT_PRODUCT_NAME,
        version_flag: str = DEFAULT_VERSION_FLAG,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._product_name = product_name
        self._version_flag = version_flag
        self._timeout = timeout

    async def probe(self, binary_path: str) -> str:
        """Return the installed version reported by ``binary_path``.

        Raises:
            BinaryNotExecutableError: missing, not a file, or cannot be spawned.
            VersionUnparseableError: no version line in the output.
        """
        path = Path(binary_path)
        if not path.is_file():
            raise BinaryNotExecutableError(binary_path, "not installed")
        if not os.access(path, os.X_OK):
            raise BinaryNotExecutableError(binary_path)

        try:
            proc = await asyncio.create_subprocess_exec(
                str(path),
                self._version_flag,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise BinaryNotExecutableError(binary_path, f"not runnable ({exc})") from exc

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise VersionUnparseableError(
                binary_path, f"timed out after {self._timeout}s"
            ) from None

        output = stdout.decode("utf-8", errors="replace")
        version = parse_version_report(output, self._product_name)
        if not version:
            log.warning(
                "version_probe_unparseable",
                binary=binary_path,
                returncode=proc.returncode,
            )
            raise VersionUnparseableError(binary_path, output)

        log.debug("version_probe_ok", binary=binary_path, version=version)
        return version
