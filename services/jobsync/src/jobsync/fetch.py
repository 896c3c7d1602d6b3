from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from jobsync.errors import FetchError

LOGGER = logging.getLogger("jobboard.fetch")
USER_AGENT = "jobboard-sync/1.0"
DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.3


@dataclass(frozen=True)
class FetchResult:
    status: int
    final_url: str
    body_text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult: ...


class HttpFetcher:
    """Fetch pages over HTTP, following redirects.

    Connection-level failures are retried with a linearly growing delay.
    A timeout is final for that URL. Non-2xx responses are returned, not
    raised; callers decide what a 404 means.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, url: str) -> FetchResult:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.get(
                    url,
                    headers={"User-Agent": USER_AGENT},
                    follow_redirects=True,
                    timeout=self.timeout_seconds,
                )
            except httpx.TimeoutException as exc:
                raise FetchError(url, f"timed out after {self.timeout_seconds:g}s") from exc
            except httpx.RequestError as exc:
                last_error = exc
                LOGGER.debug("fetch attempt %d for %s failed: %s", attempt, url, exc)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_seconds * attempt)
                continue
            return FetchResult(
                status=response.status_code,
                final_url=str(response.url),
                body_text=response.text,
            )

        raise FetchError(url, f"request failed after {self.max_attempts} attempts: {last_error}")
