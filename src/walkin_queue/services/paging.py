"""Outbound paging: speaking "now serving" announcements.

Speech synthesis itself is external. A pager only has to deliver a text a
number of times with a pause in between and return once it is done, or raise
:class:`PagingError` when it cannot.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from walkin_queue.core.settings import settings
from walkin_queue.services.errors import PagingError

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400


class Pager(Protocol):
    """Anything that can announce a text ``repeat`` times."""

    async def announce(self, text: str, *, repeat: int, pause_seconds: float) -> None: ...


class LoggingPager:
    """Pager that writes each utterance to the log. Used when no speech endpoint is set."""

    def __init__(self) -> None:
        self.spoken: list[str] = []

    async def announce(self, text: str, *, repeat: int, pause_seconds: float) -> None:
        for attempt in range(repeat):
            if attempt:
                await asyncio.sleep(pause_seconds)
            logger.info("Announcement %d/%d: %s", attempt + 1, repeat, text)
            self.spoken.append(text)


class HttpPager:
    """Pager that posts every utterance to a speech endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        if timeout_seconds is None:
            timeout_seconds = settings.paging_http_timeout_seconds
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def announce(self, text: str, *, repeat: int, pause_seconds: float) -> None:
        client = await self._ensure_client()
        for attempt in range(repeat):
            if attempt:
                await asyncio.sleep(pause_seconds)
            try:
                response = await client.post(self.url, json={"text": text})
            except httpx.HTTPError as exc:
                raise PagingError(f"Speech endpoint request failed: {exc}") from exc
            if response.status_code >= HTTP_BAD_REQUEST:
                raise PagingError(f"Speech endpoint responded with {response.status_code}")

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def get_pager() -> Pager:
    """Build the pager selected by ``PAGING_BACKEND``."""
    backend = settings.paging_backend.lower()
    if backend == "http":
        if not settings.paging_http_url:
            raise PagingError("PAGING_BACKEND is http but PAGING_HTTP_URL is not set")
        return HttpPager(settings.paging_http_url)
    if backend != "log":
        logger.warning("Unknown paging backend %r, falling back to log", backend)
    return LoggingPager()
