"""
Conditional download of a remote skill dataset.

Revalidation is two-phase: a conditional HEAD decides whether the body
needs to be transferred at all, and only then a conditional GET fetches it.
Servers that reject HEAD or ignore conditional headers on it still end up
on the GET path, so the outcome is correct either way.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from skill_catalog.domain.errors import FetchFailed
from skill_catalog.domain.models import CacheMetadata, RevalidationResult

logger = logging.getLogger(__name__)


def _validators(response: httpx.Response) -> Dict[str, str]:
    return {
        "etag": response.headers.get("etag", ""),
        "last_modified": response.headers.get("last-modified", ""),
    }


class RemoteRevalidator:
    """Fetches and revalidates a remote dataset with ETag/Last-Modified validators."""

    def __init__(
        self,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Cache-Control": "no-store"},
        )

    @staticmethod
    def conditional_headers(metadata: CacheMetadata) -> Dict[str, str]:
        headers = {}
        if metadata.etag:
            headers["If-None-Match"] = metadata.etag
        if metadata.last_modified:
            headers["If-Modified-Since"] = metadata.last_modified
        return headers

    async def fetch(self, url: str) -> RevalidationResult:
        """Download the dataset unconditionally."""
        logger.info(f"Downloading skill dataset from {url}")
        async with self._client() as client:
            response = await self._get(client, url, {})
        if not response.is_success:
            raise FetchFailed(
                f"Failed to fetch remote skill db ({response.status_code})",
                status_code=response.status_code,
            )
        return RevalidationResult(body=response.content, **_validators(response))

    async def revalidate(self, url: str, metadata: CacheMetadata) -> RevalidationResult:
        """
        Check whether the remote dataset changed since ``metadata`` was recorded.

        Returns a not-modified result (no body) when the cached copy is still
        current, otherwise the new body and its validators.

        Raises:
            FetchFailed: the GET ended in a status other than 2xx/304, or
                could not be sent at all.
        """
        headers = self.conditional_headers(metadata)
        cached = RevalidationResult(
            not_modified=True,
            etag=metadata.etag,
            last_modified=metadata.last_modified,
        )

        async with self._client() as client:
            head: Optional[httpx.Response] = None
            try:
                head = await client.head(url, headers=headers)
            except httpx.HTTPError as e:
                # Some hosts reject HEAD outright; the GET below decides.
                logger.debug(f"HEAD {url} failed, falling back to GET: {e}")

            if head is not None:
                if head.status_code == 304:
                    logger.debug(f"HEAD {url}: 304 Not Modified")
                    return cached
                if head.is_success:
                    found = _validators(head)
                    if (found["etag"] and found["etag"] == metadata.etag) or (
                        found["last_modified"] and found["last_modified"] == metadata.last_modified
                    ):
                        logger.debug(f"HEAD {url}: validators unchanged")
                        return RevalidationResult(not_modified=True, **found)

            response = await self._get(client, url, headers)

        if response.status_code == 304:
            logger.debug(f"GET {url}: 304 Not Modified")
            return cached
        if not response.is_success:
            raise FetchFailed(
                f"Failed to fetch remote skill db ({response.status_code})",
                status_code=response.status_code,
            )

        logger.info(f"Downloaded {len(response.content)} bytes from {url}")
        return RevalidationResult(body=response.content, **_validators(response))

    async def _get(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> httpx.Response:
        try:
            return await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"GET {url} failed: {e}")
            raise FetchFailed(f"Failed to fetch remote skill db: {e}") from e
