"""
Shared httpx plumbing for hub and CAS requests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from xetclient._version import __version__

if TYPE_CHECKING:
    from xetclient.config import SDKSettings

USER_AGENT = f"xetclient/{__version__}"

# Endpoint the hub writes into absolute routes it announces.
DEFAULT_HUB_ENDPOINT = "https://huggingface.co"


def build_async_client(
    settings: SDKSettings,
    transport: httpx.AsyncBaseTransport | None = None,
    max_connections: int | None = None,
) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient configured from settings.

    Args:
        settings: Timeouts are taken from here.
        transport: Custom transport (httpx.MockTransport in tests).
        max_connections: Connection pool size; defaults to the fetch concurrency.
    """
    limit = max_connections or settings.max_concurrent_fetches
    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
        limits=httpx.Limits(max_connections=limit, max_keepalive_connections=limit),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    )


def bearer(token: str | None) -> dict[str, str]:
    """Authorization header for a bearer token, or nothing."""
    return {"Authorization": f"Bearer {token}"} if token else {}


def header_value(headers: httpx.Headers, name: str) -> str | None:
    """Header value with surrounding quotes and whitespace removed."""
    value = headers.get(name)
    if value is None:
        return None
    value = value.strip().strip('"').strip()
    return value or None


def rewrite_route(route: str, endpoint: str) -> str:
    """Point a route announced for the default hub at a custom endpoint."""
    endpoint = endpoint.rstrip("/")
    if route.startswith(DEFAULT_HUB_ENDPOINT) and endpoint and endpoint != DEFAULT_HUB_ENDPOINT:
        return endpoint + route[len(DEFAULT_HUB_ENDPOINT):]
    return route
