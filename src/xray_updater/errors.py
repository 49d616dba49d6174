"""Error taxonomy for the update pipeline.

Every failure the orchestrator can report is an ``UpdaterError`` subclass.
Each class carries a stable ``kind`` (used in logs and results) and the
process ``exit_code`` the CLI returns for it.
"""

from __future__ import annotations

from typing import ClassVar

from xray_updater.constants import EXIT_DEGRADED, MAX_DIAGNOSTIC_CHARS


def excerpt(text: str | bytes | None, limit: int = MAX_DIAGNOSTIC_CHARS) -> str:
    """Return at most ``limit`` characters of a diagnostic payload."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[:limit]


class UpdaterError(Exception):
    """Base class for all update pipeline errors."""

    kind: ClassVar[str] = "UpdaterError"
    exit_code: ClassVar[int] = 1


# ---------------------------------------------------------------------------
# Host preconditions
# ---------------------------------------------------------------------------


class UnsupportedArchitectureError(UpdaterError):
    """The host CPU architecture has no published build."""

    kind = "UnsupportedArchitecture"
    exit_code = 10

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Unsupported architecture: {identifier!r}")


class BinaryNotExecutableError(UpdaterError):
    """The installed binary is missing or cannot be executed."""

    kind = "BinaryNotExecutable"
    exit_code = 11

    def __init__(self, path: str, reason: str = "not executable") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Installed binary {path} is {reason}")


class VersionUnparseableError(UpdaterError):
    """The installed binary did not report a recognisable version."""

    kind = "VersionUnparseable"
    exit_code = 12

    def __init__(self, path: str, output: str = "") -> None:
        self.path = path
        self.output = excerpt(output)
        super().__init__(f"Unable to read version from {path}: {self.output!r}")


# ---------------------------------------------------------------------------
# Release API
# ---------------------------------------------------------------------------


class NetworkUnreachableError(UpdaterError):
    """The release host could not be reached at the transport level."""

    kind = "NetworkUnreachable"
    exit_code = 20

    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        self.reason = reason
        message = f"Cannot reach {url}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ReleaseQueryFailedError(UpdaterError):
    """The release API answered with a non-200 status."""

    kind = "ReleaseQueryFailed"
    exit_code = 21

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = excerpt(body)
        super().__init__(f"Release query failed with HTTP {status_code}: {self.body}")


class InvalidReleaseMetadataError(UpdaterError):
    """The release API body is empty, not JSON, or not a release object."""

    kind = "InvalidReleaseMetadata"
    exit_code = 22

    def __init__(self, reason: str, body: str = "") -> None:
        self.reason = reason
        self.body = excerpt(body)
        super().__init__(f"Invalid release metadata ({reason}): {self.body!r}")


class AssetNotFoundError(UpdaterError):
    """The latest release publishes no build for this architecture."""

    kind = "AssetNotFound"
    exit_code = 23

    def __init__(self, architecture: str, filename: str, tag: str = "") -> None:
        self.architecture = architecture
        self.filename = filename
        self.tag = tag
        super().__init__(
            f"No download URL for architecture [{architecture}] "
            f"(asset {filename!r} in release {tag or 'latest'})"
        )


# ---------------------------------------------------------------------------
# Artifact
# ---------------------------------------------------------------------------


class DownloadFailedError(UpdaterError):
    """The archive download failed after all retries."""

    kind = "DownloadFailed"
    exit_code = 30

    def __init__(self, url: str, attempts: int, reason: str = "") -> None:
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Failed to download {url} after {attempts} attempt(s): {reason}")


class ArchiveCorruptError(UpdaterError):
    """The downloaded archive is truncated or structurally invalid."""

    kind = "ArchiveCorrupt"
    exit_code = 31

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = excerpt(reason)
        super().__init__(f"Downloaded archive {path} is corrupt or invalid: {self.reason}")


class ArtifactLayoutMismatchError(UpdaterError):
    """The extracted archive does not contain the expected executable."""

    kind = "ArtifactLayoutMismatch"
    exit_code = 32

    def __init__(self, expected: str, entries: list[str] | None = None) -> None:
        self.expected = expected
        self.entries = entries or []
        listing = excerpt(", ".join(self.entries))
        super().__init__(f"Expected {expected!r} in extracted archive, found: [{listing}]")


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------


class InstallFailedError(UpdaterError):
    """A filesystem step of the backup/swap protocol failed."""

    kind = "InstallFailed"
    exit_code = 40

    def __init__(self, step: str, reason: str, manual_intervention_required: bool = False) -> None:
        self.step = step
        self.reason = reason
        self.manual_intervention_required = manual_intervention_required
        message = f"{step} failed: {reason}"
        if manual_intervention_required:
            message += " (live binary replaced but not executable; manual intervention required)"
        super().__init__(message)


class UpdateAlreadyInProgressError(UpdaterError):
    """Another updater run holds the installation lock."""

    kind = "UpdateAlreadyInProgress"
    exit_code = 50

    def __init__(self, lock_path: str) -> None:
        self.lock_path = lock_path
        super().__init__(f"Another update is already in progress (lock held on {lock_path})")


class LockFileRejectedError(UpdaterError):
    """The lock path is not a regular file the updater may safely open."""

    kind = "LockFileRejected"
    exit_code = 51

    def __init__(self, lock_path: str, reason: str) -> None:
        self.lock_path = lock_path
        self.reason = reason
        super().__init__(f"Refusing lock file {lock_path}: {reason}")


class ServiceControlDegradedError(UpdaterError):
    """The service could not be confirmed started after the swap.

    Non-fatal: recorded on the result rather than aborting the run.
    """

    kind = "ServiceControlDegraded"
    exit_code = EXIT_DEGRADED

    def __init__(self, service: str, reason: str = "") -> None:
        self.service = service
        self.reason = excerpt(reason)
        super().__init__(f"Service {service} was not confirmed running: {self.reason}")
