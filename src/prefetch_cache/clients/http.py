"""
Shared httpx plumbing for the registry and tarball clients.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..settings import Settings

__all__ = ["build_async_client", "request_with_retries"]

logger = logging.getLogger(__name__)


def build_async_client(settings: Settings) -> httpx.AsyncClient:
    """Create an AsyncClient configured from settings."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_s, connect=min(5.0, settings.http_timeout_s)),
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    )


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int,
    headers: Optional[dict] = None,
) -> httpx.Response:
    """
    Send a request, retrying only on timeouts.

    Status errors are raised via raise_for_status() and never retried; the
    caller maps them onto the prefetch error taxonomy.

    Raises:
        httpx.HTTPStatusError: On non-2xx responses
        httpx.RequestError: On network failures (after retries for timeouts)
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
        retry=retry_if_exception_type(httpx.TimeoutException),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.debug(f"Retrying {method} {url} (attempt {attempt.retry_state.attempt_number})")
            response = await client.request(method, url, headers=headers)
            logger.debug(f"{method} {url} -> {response.status_code}")
            response.raise_for_status()
    return response
