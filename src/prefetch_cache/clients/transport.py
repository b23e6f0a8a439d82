"""
Tarball transport client.

Downloads tarball bytes over HTTP. Upstream caching headers are returned to
the caller untouched; HTTP-level freshness is orthogonal to the content cache.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import TransportError
from ..runtime_types import FetchedTarball, TransportClient
from ..settings import Settings
from .http import build_async_client, request_with_retries

__all__ = ["TarballFetcher"]

logger = logging.getLogger(__name__)


class TarballFetcher(TransportClient):
    """httpx-backed transport client."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = client is None
        self.client = client if client is not None else build_async_client(settings)

    async def fetch(self, url: str) -> FetchedTarball:
        """
        Download ``url``.

        Raises:
            TransportError: On non-2xx responses or connection failures
        """
        try:
            response = await request_with_retries(
                self.client, "GET", url, retries=self.settings.http_retry
            )
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Tarball download failed with {e.response.status_code}: {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error fetching {url}: {e}") from e

        logger.debug(f"Fetched {len(response.content)} bytes from {url}")
        return FetchedTarball(url=url, data=response.content, headers=dict(response.headers))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> TarballFetcher:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
