from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from recap.services.errors import NetworkError, ServiceError, ServiceTimeout

_logger = logging.getLogger("recap.http")


@asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient],
    timeout: httpx.Timeout | float,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` if given, otherwise a short-lived client owned by the scope."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    **kwargs,
) -> httpx.Response:
    """Issue one request, translating transport failures and non-2xx statuses.

    ``httpx.TimeoutException`` becomes :class:`ServiceTimeout`, any other
    transport failure :class:`NetworkError`, and a non-2xx response
    :class:`ServiceError` carrying the status code.
    """
    started = time.perf_counter()
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ServiceTimeout(f"{service} request timed out") from exc
    except httpx.TransportError as exc:
        raise NetworkError(f"{service} request failed: {exc}") from exc
    elapsed_ms = (time.perf_counter() - started) * 1000
    _logger.debug("%s %s -> %s (%.0fms)", method, url, response.status_code, elapsed_ms)

    if response.status_code >= 400:
        detail = response.text[:200]
        raise ServiceError(response.status_code, detail, service=service)
    return response
