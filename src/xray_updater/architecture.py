"""Host architecture → release artifact mapping."""

from __future__ import annotations

import platform
from dataclasses import dataclass
from enum import Enum

from xray_updater.errors import UnsupportedArchitectureError


class HostArchitecture(Enum):
    """CPU architectures with a published Xray Linux build."""

    AMD64 = "amd64"
    ARM64 = "arm64"
    ARMV7 = "armv7"
    ARMV6 = "armv6"


@dataclass(frozen=True)
class ArtifactDescriptor:
    """Release archive expected for one architecture."""

    architecture: HostArchitecture
    archive_filename: str


# Keys are ``uname -m`` identifiers.
_ARTIFACTS: dict[str, ArtifactDescriptor] = {
    "x86_64": ArtifactDescriptor(HostArchitecture.AMD64, "Xray-linux-64.zip"),
    "aarch64": ArtifactDescriptor(HostArchitecture.ARM64, "Xray-linux-arm64-v8a.zip"),
    "armv7l": ArtifactDescriptor(HostArchitecture.ARMV7, "Xray-linux-arm32-v7a.zip"),
    "armv6l": ArtifactDescriptor(HostArchitecture.ARMV6, "Xray-linux-arm32-v6.zip"),
}

SUPPORTED_IDENTIFIERS: tuple[str, ...] = tuple(_ARTIFACTS)


def detect_host_identifier() -> str:
    """Return the running machine's architecture identifier (``uname -m``)."""
    return platform.machine()


def resolve_artifact(identifier: str) -> ArtifactDescriptor:
    """Map a host architecture identifier to its release artifact.

    Raises:
        UnsupportedArchitectureError: for any identifier outside the fixed table.
    """
    try:
        return _ARTIFACTS[identifier]
    except KeyError:
        raise UnsupportedArchitectureError(identifier) from None
