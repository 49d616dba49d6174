"""Outbound network configuration and proxy negotiation.

``NetworkConfig`` is passed explicitly to every HTTP client the updater
builds. Clients never read proxy variables from the process environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from xray_updater.constants import (
    CONNECT_TIMEOUT_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
)
from xray_updater.errors import NetworkUnreachableError
from xray_updater.logging import get_logger

if TYPE_CHECKING:
    from xray_updater.config import Settings

log = get_logger("xray_updater.network")


@dataclass(frozen=True)
class NetworkConfig:
    """Proxy and timeouts for outbound requests."""

    proxy: str | None = None
    connect_timeout: float = CONNECT_TIMEOUT_SECONDS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.request_timeout, connect=self.connect_timeout)

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``httpx.AsyncClient``."""
        kwargs: dict[str, Any] = {
            "timeout": self.timeout,
            "follow_redirects": True,
            "trust_env": False,
        }
        if self.proxy:
            kwargs["proxy"] = self.proxy
        return kwargs

    def with_proxy(self, proxy: str | None) -> NetworkConfig:
        return NetworkConfig(
            proxy=proxy,
            connect_timeout=self.connect_timeout,
            request_timeout=self.request_timeout,
        )


async def can_reach(
    url: str,
    proxy: str | None = None,
    timeout: float = PROBE_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Return True if ``url`` answers at all (any HTTP status) within ``timeout``."""
    kwargs: dict[str, Any] = {"timeout": timeout, "trust_env": False}
    if transport is not None:
        kwargs["transport"] = transport
    elif proxy:
        kwargs["proxy"] = proxy
    try:
        async with httpx.AsyncClient(**kwargs) as client:
            await client.get(url)
        return True
    except httpx.HTTPError as exc:
        log.debug("network_probe_failed", url=url, proxy=proxy, error=str(exc))
        return False


async def negotiate_network(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> NetworkConfig:
    """Choose between a direct connection and the fallback proxy.

    An explicitly configured ``proxy_url`` is used without probing. Otherwise
    a direct request to ``probe_url`` decides; if it fails, the fallback proxy
    is checked against the release API before being selected.

    Raises:
        NetworkUnreachableError: neither direct nor proxied access works.
    """
    base = NetworkConfig(
        connect_timeout=settings.connect_timeout,
        request_timeout=settings.request_timeout,
    )

    if settings.proxy_url:
        log.info("network_proxy_configured", proxy=settings.proxy_url)
        return base.with_proxy(settings.proxy_url)

    if not settings.probe_proxy:
        return base

    log.info("network_probe_direct", url=settings.probe_url)
    if await can_reach(settings.probe_url, timeout=settings.probe_timeout, transport=transport):
        log.info("network_direct_ok")
        return base

    fallback = settings.fallback_proxy_url
    if not fallback:
        raise NetworkUnreachableError(settings.probe_url, "direct connection failed")

    log.warning("network_direct_failed_trying_proxy", proxy=fallback)
    if await can_reach(
        settings.latest_release_url,
        proxy=fallback,
        timeout=settings.probe_timeout,
        transport=transport,
    ):
        log.info("network_proxy_ok", proxy=fallback)
        return base.with_proxy(fallback)

    log.error("network_proxy_failed", proxy=fallback)
    raise NetworkUnreachableError(
        settings.latest_release_url,
        f"unreachable directly and through proxy {fallback}",
    )
