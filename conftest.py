from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest
from jobsync.fetch import HttpFetcher
from jobsync.models import JobBoardSource, JobRecord, NewJobRecord
from jobsync.repository import JobRepository

LISTING_URL = "https://jobs.example.com/careers"


class FakeBoard:
    """Serves canned pages to an httpx client through ``MockTransport``."""

    def __init__(self) -> None:
        self.pages: dict[str, tuple[int, str]] = {}
        self.redirects: dict[str, str] = {}
        self.unreachable: set[str] = set()
        self.slow: set[str] = set()
        self.requests: list[str] = []

    def page(self, url: str, body: str = "", *, status: int = 200) -> None:
        self.pages[url] = (status, body)

    def redirect(self, url: str, target: str) -> None:
        self.redirects[url] = target

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if url in self.slow:
            raise httpx.ReadTimeout("read timed out", request=request)
        if url in self.redirects:
            return httpx.Response(302, headers={"location": self.redirects[url]})
        status, body = self.pages.get(url, (404, "<html><body>Not Found</body></html>"))
        return httpx.Response(status, text=body, headers={"content-type": "text/html"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def fetcher(self) -> HttpFetcher:
        return HttpFetcher(transport=self.transport(), retry_delay_seconds=0)


@pytest.fixture
def fake_board() -> FakeBoard:
    return FakeBoard()


@pytest.fixture
def example_source() -> JobBoardSource:
    return JobBoardSource(
        name="Example Board",
        url=LISTING_URL,
        jobLinkPattern="/positions/",
        company="Example Co",
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


@pytest.fixture
def repository(tmp_path: Path):
    repo = JobRepository(str(tmp_path / "jobsync.sqlite3"))
    repo.connect()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture
def seed_job(repository: JobRepository) -> Callable[..., JobRecord]:
    def seed(link: str, *, source: str = "Example Board", title: str = "Seeded Role") -> JobRecord:
        return repository.insert_job(
            NewJobRecord(
                title=title,
                company="Example Co",
                link=link,
                category="network",
                source_board=source,
                source_url=LISTING_URL,
                source_external_id=link,
                last_checked_at="2026-01-01T00:00:00+00:00",
            )
        )

    return seed
