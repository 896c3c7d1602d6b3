from __future__ import annotations

import httpx
import pytest
from jobsync.errors import FetchError
from jobsync.fetch import USER_AGENT, HttpFetcher

pytestmark = pytest.mark.unit

JOB_URL = "https://jobs.example.com/positions/backend-engineer"


@pytest.mark.asyncio
async def test_follows_redirects_and_reports_final_url(fake_board) -> None:
    fake_board.redirect(JOB_URL, "https://jobs.example.com/careers")
    fake_board.page("https://jobs.example.com/careers", "<h1>All openings</h1>")

    async with fake_board.fetcher() as fetcher:
        result = await fetcher.fetch(JOB_URL)

    assert result.status == 200
    assert result.ok
    assert result.final_url == "https://jobs.example.com/careers"
    assert "All openings" in result.body_text


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised(fake_board) -> None:
    async with fake_board.fetcher() as fetcher:
        result = await fetcher.fetch(JOB_URL)

    assert result.status == 404
    assert not result.ok


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_raised(fake_board) -> None:
    fake_board.unreachable.add(JOB_URL)

    async with HttpFetcher(transport=fake_board.transport(), max_attempts=3, retry_delay_seconds=0) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(JOB_URL)

    assert excinfo.value.url == JOB_URL
    assert fake_board.requests == [JOB_URL] * 3


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failure() -> None:
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.headers["user-agent"])
        if len(attempts) == 1:
            raise httpx.ConnectError("reset", request=request)
        return httpx.Response(200, text="ok")

    async with HttpFetcher(transport=httpx.MockTransport(handler), retry_delay_seconds=0) as fetcher:
        result = await fetcher.fetch(JOB_URL)

    assert result.body_text == "ok"
    assert attempts == [USER_AGENT, USER_AGENT]


@pytest.mark.asyncio
async def test_timeouts_are_not_retried(fake_board) -> None:
    fake_board.slow.add(JOB_URL)

    async with fake_board.fetcher() as fetcher:
        with pytest.raises(FetchError, match="timed out"):
            await fetcher.fetch(JOB_URL)

    assert fake_board.requests == [JOB_URL]


@pytest.mark.asyncio
async def test_injected_client_is_left_open(fake_board) -> None:
    fake_board.page(JOB_URL, "hello")
    client = httpx.AsyncClient(transport=fake_board.transport())

    async with HttpFetcher(client) as fetcher:
        await fetcher.fetch(JOB_URL)

    assert not client.is_closed
    await client.aclose()
