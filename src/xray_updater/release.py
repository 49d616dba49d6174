"""GitHub release client.

Fetches the "latest release" document for the tracked repository and
resolves the download URL of the architecture-specific asset. Metadata is
fetched fresh on every call and never cached.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from xray_updater.architecture import ArtifactDescriptor
from xray_updater.errors import (
    AssetNotFoundError,
    InvalidReleaseMetadataError,
    NetworkUnreachableError,
    ReleaseQueryFailedError,
    excerpt,
)
from xray_updater.logging import get_logger
from xray_updater.network import NetworkConfig

log = get_logger("xray_updater.release")


def _as_url(value: object) -> str | None:
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class ReleaseAsset:
    """A single downloadable file attached to a release."""

    name: str
    download_url: str | None


@dataclass(frozen=True)
class ReleaseMetadata:
    """The parts of a GitHub release the updater relies on."""

    tag: str
    assets: tuple[ReleaseAsset, ...] = field(default_factory=tuple)
    html_url: str = ""
    published_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], raw: str = "") -> ReleaseMetadata:
        """Build metadata from a decoded release object.

        Raises:
            InvalidReleaseMetadataError: missing tag or malformed asset list.
        """
        tag = data.get("tag_name")
        if not isinstance(tag, str) or not tag.strip():
            raise InvalidReleaseMetadataError("missing tag_name", raw)

        raw_assets = data.get("assets") or []
        if not isinstance(raw_assets, list):
            raise InvalidReleaseMetadataError("assets is not a list", raw)

        assets = tuple(
            ReleaseAsset(name=item["name"], download_url=_as_url(item.get("browser_download_url")))
            for item in raw_assets
            if isinstance(item, dict) and isinstance(item.get("name"), str)
        )
        return cls(
            tag=tag.strip(),
            assets=assets,
            html_url=str(data.get("html_url") or ""),
            published_at=str(data.get("published_at") or ""),
        )

    def download_url_for(self, descriptor: ArtifactDescriptor) -> str:
        """Return the download URL of the asset named for ``descriptor``.

        Raises:
            AssetNotFoundError: no asset with that exact name, or its URL is
                null/empty.
        """
        for asset in self.assets:
            if asset.name != descriptor.archive_filename:
                continue
            url = (asset.download_url or "").strip()
            if url:
                return url
            break
        raise AssetNotFoundError(
            descriptor.architecture.value,
            descriptor.archive_filename,
            self.tag,
        )


class ReleaseClient:
    """Queries the GitHub API for the latest published release."""

    def __init__(
        self,
        latest_release_url: str,
        network: NetworkConfig | None = None,
        github_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = latest_release_url
        self.network = network or NetworkConfig()
        self._github_token = github_token
        self._transport = transport

    @property
    def url(self) -> str:
        return self._url

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs = self.network.client_kwargs()
        if self._transport is not None:
            kwargs.pop("proxy", None)
            kwargs["transport"] = self._transport
        return kwargs

    async def fetch_latest(self) -> ReleaseMetadata:
        """Fetch and validate the latest release document.

        Raises:
            NetworkUnreachableError: connection-level failure or timeout.
            ReleaseQueryFailedError: any status other than 200.
            InvalidReleaseMetadataError: empty, non-JSON or non-object body.
        """
        headers: dict[str, str] = {"Accept": "application/vnd.github+json"}
        if self._github_token:
            headers["Authorization"] = f"Bearer {self._github_token}"

        log.info("release_query_started", url=self._url, proxy=self.network.proxy)
        try:
            async with httpx.AsyncClient(**self._client_kwargs()) as client:
                resp = await asyncio.wait_for(
                    client.get(self._url, headers=headers),
                    timeout=self.network.request_timeout,
                )
        except TimeoutError as exc:
            raise NetworkUnreachableError(
                self._url, f"timed out after {self.network.request_timeout}s"
            ) from exc
        except httpx.RequestError as exc:
            raise NetworkUnreachableError(self._url, str(exc) or type(exc).__name__) from exc

        log.info("release_query_response", status=resp.status_code)
        body = resp.text

        if resp.status_code != 200:
            log.error(
                "release_query_failed",
                status=resp.status_code,
                body=excerpt(body),
            )
            raise ReleaseQueryFailedError(resp.status_code, body)

        if not body.strip():
            raise InvalidReleaseMetadataError("empty body", body)
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise InvalidReleaseMetadataError("body is not valid JSON", body) from exc
        if not isinstance(data, dict):
            raise InvalidReleaseMetadataError(
                f"expected a JSON object, got {type(data).__name__}", body
            )

        metadata = ReleaseMetadata.from_dict(data, raw=body)
        log.info("release_latest", tag=metadata.tag, assets=len(metadata.assets))
        return metadata

    async def resolve(self, descriptor: ArtifactDescriptor) -> tuple[ReleaseMetadata, str]:
        """Fetch the latest release and the download URL for ``descriptor``."""
        metadata = await self.fetch_latest()
        try:
            url = metadata.download_url_for(descriptor)
        except AssetNotFoundError:
            log.error(
                "release_asset_missing",
                architecture=descriptor.architecture.value,
                filename=descriptor.archive_filename,
                tag=metadata.tag,
                available=[asset.name for asset in metadata.assets],
            )
            raise
        return metadata, url
