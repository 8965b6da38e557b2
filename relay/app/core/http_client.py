"""Shared HTTP client management for connection pooling.

The outbound client is created once in the application lifespan and reused
by every forwarded request.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Request

from relay.app.core.config import Settings, settings as default_settings


def build_timeout(config: Settings) -> httpx.Timeout:
    """Per-call timeout for outbound requests.

    - connect: Time to establish socket connection
    - read: Time to read response data (streaming responses need more time)
    - write: Time to send request data
    - pool: Time to acquire connection from pool
    """
    return httpx.Timeout(
        connect=config.httpx_connect_timeout,
        read=config.httpx_read_timeout,
        write=config.httpx_write_timeout,
        pool=config.httpx_pool_timeout,
    )


def create_http_client(config: Optional[Settings] = None) -> httpx.AsyncClient:
    """Create a new outbound HTTP client.

    Redirects are relayed to the caller rather than followed.

    Note: The returned client should be closed when done:
        async with create_http_client() as client:
            ...
    """
    config = config or default_settings
    limits = httpx.Limits(
        max_connections=config.httpx_max_connections,
        max_keepalive_connections=config.httpx_max_keepalive_connections,
        keepalive_expiry=config.httpx_keepalive_expiry,
    )
    return httpx.AsyncClient(
        timeout=build_timeout(config),
        limits=limits,
        follow_redirects=False,
    )


@asynccontextmanager
async def init_http_client(
    config: Optional[Settings] = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

    This context manager should be used in the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client() as client:
                yield {"http_client": client}
    """
    client = create_http_client(config)
    try:
        yield client
    finally:
        await client.aclose()


def get_request_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared HTTP client from the lifespan state.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    client = getattr(request.state, "http_client", None)
    if client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure lifespan context is active."
        )
    return client
