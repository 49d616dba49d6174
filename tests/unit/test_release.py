"""Tests for the GitHub release client."""

from __future__ import annotations

import json

import httpx
import pytest
from conftest import RELEASE_URL, release_payload

from xray_updater.architecture import resolve_artifact
from xray_updater.errors import (
    AssetNotFoundError,
    InvalidReleaseMetadataError,
    NetworkUnreachableError,
    ReleaseQueryFailedError,
)
from xray_updater.network import NetworkConfig
from xray_updater.release import ReleaseAsset, ReleaseClient, ReleaseMetadata

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client(handler, **kwargs) -> ReleaseClient:
    return ReleaseClient(RELEASE_URL, transport=httpx.MockTransport(handler), **kwargs)


def _respond(status: int, body: str | bytes = b""):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=body if isinstance(body, bytes) else body.encode())

    return handler


# ---------------------------------------------------------------------------
# ReleaseMetadata
# ---------------------------------------------------------------------------


class TestReleaseMetadata:
    """Tests for ReleaseMetadata parsing and asset resolution."""

    def test_from_dict(self):
        meta = ReleaseMetadata.from_dict(release_payload("v25.1.1"))
        assert meta.tag == "v25.1.1"
        assert len(meta.assets) == 4
        assert meta.html_url.endswith("/v25.1.1")

    def test_missing_tag(self):
        with pytest.raises(InvalidReleaseMetadataError, match="tag_name"):
            ReleaseMetadata.from_dict({"assets": []})

    def test_blank_tag(self):
        with pytest.raises(InvalidReleaseMetadataError):
            ReleaseMetadata.from_dict({"tag_name": "  ", "assets": []})

    def test_assets_not_a_list(self):
        with pytest.raises(InvalidReleaseMetadataError, match="assets"):
            ReleaseMetadata.from_dict({"tag_name": "v1", "assets": {"name": "x"}})

    def test_missing_assets_means_no_assets(self):
        meta = ReleaseMetadata.from_dict({"tag_name": "v1"})
        assert meta.assets == ()

    def test_malformed_asset_entries_skipped(self):
        meta = ReleaseMetadata.from_dict(
            {
                "tag_name": "v1",
                "assets": [
                    "junk",
                    {"browser_download_url": "https://x"},
                    {"name": "Xray-linux-64.zip", "browser_download_url": 42},
                ],
            }
        )
        assert meta.assets == (ReleaseAsset(name="Xray-linux-64.zip", download_url=None),)

    def test_download_url_for_exact_name(self):
        meta = ReleaseMetadata.from_dict(release_payload("v25.1.1"))
        url = meta.download_url_for(resolve_artifact("x86_64"))
        assert url.endswith("/v25.1.1/Xray-linux-64.zip")

    def test_download_url_requires_exact_match(self):
        meta = ReleaseMetadata(
            tag="v1",
            assets=(ReleaseAsset("Xray-linux-64.zip.dgst", "https://example/dgst"),),
        )
        with pytest.raises(AssetNotFoundError):
            meta.download_url_for(resolve_artifact("x86_64"))

    @pytest.mark.parametrize("url", [None, "", "   "])
    def test_null_or_empty_url(self, url):
        meta = ReleaseMetadata(tag="v1", assets=(ReleaseAsset("Xray-linux-64.zip", url),))
        with pytest.raises(AssetNotFoundError) as exc_info:
            meta.download_url_for(resolve_artifact("x86_64"))
        assert exc_info.value.architecture == "amd64"
        assert exc_info.value.filename == "Xray-linux-64.zip"


# ---------------------------------------------------------------------------
# ReleaseClient
# ---------------------------------------------------------------------------


class TestFetchLatest:
    """Tests for ReleaseClient.fetch_latest()."""

    async def test_success(self):
        client = _client(_respond(200, json.dumps(release_payload("v25.1.1"))))
        meta = await client.fetch_latest()
        assert meta.tag == "v25.1.1"

    async def test_sends_github_headers(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=release_payload("v1.0.0"))

        await _client(handler, github_token="secret-token").fetch_latest()

        assert str(seen[0].url) == RELEASE_URL
        assert seen[0].headers["Accept"] == "application/vnd.github+json"
        assert seen[0].headers["Authorization"] == "Bearer secret-token"

    async def test_no_auth_header_without_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=release_payload("v1.0.0"))

        await _client(handler).fetch_latest()
        assert "Authorization" not in seen[0].headers

    @pytest.mark.parametrize("status", [403, 404, 500, 502])
    async def test_non_200_raises_with_status_and_body(self, status):
        body = '{"message": "API rate limit exceeded"}'
        client = _client(_respond(status, body))
        with pytest.raises(ReleaseQueryFailedError) as exc_info:
            await client.fetch_latest()
        assert exc_info.value.status_code == status
        assert "rate limit" in exc_info.value.body

    async def test_non_200_is_not_parsed(self):
        """A JSON-looking error body must not be treated as a release."""
        client = _client(_respond(201, json.dumps(release_payload("v9.9.9"))))
        with pytest.raises(ReleaseQueryFailedError):
            await client.fetch_latest()

    async def test_body_excerpt_is_capped(self):
        client = _client(_respond(500, "x" * 5000))
        with pytest.raises(ReleaseQueryFailedError) as exc_info:
            await client.fetch_latest()
        assert len(exc_info.value.body) == 500

    @pytest.mark.parametrize("body", ["", "   \n"])
    async def test_empty_body(self, body):
        with pytest.raises(InvalidReleaseMetadataError, match="empty"):
            await _client(_respond(200, body)).fetch_latest()

    async def test_invalid_json(self):
        with pytest.raises(InvalidReleaseMetadataError, match="JSON"):
            await _client(_respond(200, "<html>captive portal</html>")).fetch_latest()

    @pytest.mark.parametrize("body", ["[]", '"v1.0.0"', "null", "42"])
    async def test_non_object_json(self, body):
        with pytest.raises(InvalidReleaseMetadataError, match="JSON object"):
            await _client(_respond(200, body)).fetch_latest()

    async def test_connect_error_is_network_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Name or service not known", request=request)

        with pytest.raises(NetworkUnreachableError) as exc_info:
            await _client(handler).fetch_latest()
        assert exc_info.value.url == RELEASE_URL
        assert exc_info.value.kind == "NetworkUnreachable"

    async def test_timeout_is_network_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(NetworkUnreachableError):
            await _client(handler).fetch_latest()


class TestResolve:
    """Tests for ReleaseClient.resolve()."""

    async def test_returns_metadata_and_url(self):
        client = _client(_respond(200, json.dumps(release_payload("v25.1.1"))))
        meta, url = await client.resolve(resolve_artifact("aarch64"))
        assert meta.tag == "v25.1.1"
        assert url.endswith("/Xray-linux-arm64-v8a.zip")

    async def test_missing_asset(self):
        payload = release_payload("v25.1.1", archives=("Xray-linux-64.zip",))
        client = _client(_respond(200, json.dumps(payload)))
        with pytest.raises(AssetNotFoundError) as exc_info:
            await client.resolve(resolve_artifact("armv6l"))
        assert exc_info.value.tag == "v25.1.1"
        assert exc_info.value.filename == "Xray-linux-arm32-v6.zip"


class TestNetworkConfig:
    """Tests for how NetworkConfig shapes the HTTP client."""

    def test_client_kwargs_without_proxy(self):
        kwargs = NetworkConfig().client_kwargs()
        assert kwargs["trust_env"] is False
        assert kwargs["follow_redirects"] is True
        assert "proxy" not in kwargs
        assert kwargs["timeout"].connect == 15

    def test_client_kwargs_with_proxy(self):
        kwargs = NetworkConfig(proxy="http://127.0.0.1:7890").client_kwargs()
        assert kwargs["proxy"] == "http://127.0.0.1:7890"

    def test_with_proxy_keeps_timeouts(self):
        config = NetworkConfig(connect_timeout=3, request_timeout=9).with_proxy("http://p:1")
        assert config.proxy == "http://p:1"
        assert config.connect_timeout == 3
        assert config.request_timeout == 9

    def test_transport_overrides_proxy(self):
        client = ReleaseClient(
            RELEASE_URL,
            network=NetworkConfig(proxy="http://127.0.0.1:7890"),
            transport=httpx.MockTransport(lambda r: httpx.Response(200)),
        )
        kwargs = client._client_kwargs()
        assert "proxy" not in kwargs
        assert isinstance(kwargs["transport"], httpx.MockTransport)
