"""Outbound HTTP clients.

One pooled httpx.AsyncClient lives for the duration of init_http_client()
and is shared by the GitLab client and the HTTP blob store. Redirects are
not followed.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from docgate.app.core.config import Settings, settings


_shared_http_client: httpx.AsyncClient | None = None


def _build_limits(config: Settings | None = None, **kwargs) -> httpx.Limits:
    config = config or settings
    return httpx.Limits(
        max_connections=kwargs.get("max_connections", config.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", config.httpx_max_keepalive_connections
        ),
        keepalive_expiry=kwargs.get("keepalive_expiry", config.httpx_keepalive_expiry),
    )


def _build_timeout(config: Settings | None = None, **kwargs) -> httpx.Timeout:
    config = config or settings
    # A single timeout value overrides all granular timeouts
    timeout_override = kwargs.get("timeout")
    if timeout_override is not None:
        return httpx.Timeout(timeout_override)
    return httpx.Timeout(
        connect=kwargs.get("connect_timeout", config.httpx_connect_timeout),
        read=kwargs.get("read_timeout", config.httpx_read_timeout),
        write=kwargs.get("write_timeout", config.httpx_write_timeout),
        pool=kwargs.get("pool_timeout", config.httpx_pool_timeout),
    )


def get_http_client() -> httpx.AsyncClient:
    """Return the client opened by init_http_client().

    Raises:
        RuntimeError: Outside an active init_http_client() block.
    """
    if _shared_http_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure init_http_client() is active."
        )
    return _shared_http_client


@asynccontextmanager
async def init_http_client(
    config: Settings | None = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

        async with init_http_client() as http_client:
            ...

    Timeouts and pool limits come from ``config``, or the module settings.
    """
    global _shared_http_client

    _shared_http_client = httpx.AsyncClient(
        timeout=_build_timeout(config),
        limits=_build_limits(config),
        # GitLab raw URLs redirect to sign-in for private projects; keep the
        # 3xx status so callers see the failure.
        follow_redirects=False,
    )

    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        **kwargs: Override default settings. Can include timeout,
            connect_timeout, read_timeout, write_timeout, pool_timeout,
            max_connections, max_keepalive_connections, keepalive_expiry,
            and transport (useful for tests).

    Returns:
        A new httpx.AsyncClient instance.
    """
    config = {
        "timeout": _build_timeout(**kwargs),
        "limits": _build_limits(**kwargs),
    }
    if "transport" in kwargs:
        config["transport"] = kwargs["transport"]
    return httpx.AsyncClient(**config)
