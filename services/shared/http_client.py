"""
Traced HTTP client for outbound provider calls.

Usage:
    from shared.http_client import traced_client

    async with traced_client(timeout=10.0) as client:
        resp = await client.post("https://sms-gateway/api/send", json=body)
        # X-Trace-ID header is automatically injected
"""

import httpx
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from shared.logging import trace_id_var


class TraceTransport(httpx.AsyncBaseTransport):
    """
    httpx transport wrapper that injects the X-Trace-ID header
    into every outbound request from the current ContextVar.
    """

    def __init__(self, inner: Optional[httpx.AsyncBaseTransport] = None):
        self._inner = inner or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        trace_id = trace_id_var.get("")
        if trace_id:
            request.headers["X-Trace-ID"] = trace_id
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self._inner.aclose()


@asynccontextmanager
async def traced_client(
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Create an httpx.AsyncClient that auto-injects X-Trace-ID.

    Args:
        timeout: Request timeout in seconds. Default 10.0.
        transport: Optional inner transport (e.g. httpx.MockTransport in tests).
        **kwargs: Additional kwargs passed to httpx.AsyncClient.
    """
    async with httpx.AsyncClient(
        transport=TraceTransport(transport),
        timeout=timeout,
        **kwargs,
    ) as client:
        yield client
