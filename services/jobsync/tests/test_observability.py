from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jobsync.main import create_app
from jobsync.models import JobBoardSource

pytestmark = pytest.mark.integration


@pytest.fixture
def client(tmp_path: Path):
    db_path = tmp_path / "jobsync.sqlite3"
    app = create_app(database_path=str(db_path), sources=[])
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def test_request_id_header_and_metrics_snapshot(client: TestClient) -> None:
    first = client.get("/health")
    second = client.get("/health")
    not_found = client.get("/missing-endpoint")
    metrics = client.get("/metrics")

    assert first.status_code == 200
    assert second.status_code == 200
    assert not_found.status_code == 404
    assert metrics.status_code == 200

    first_request_id = first.headers.get("x-request-id")
    second_request_id = second.headers.get("x-request-id")
    assert first_request_id
    assert second_request_id
    assert first_request_id != second_request_id

    body = metrics.json()
    assert body["totals"]["requests"] >= 3
    assert body["totals"]["errors"] >= 1
    assert body["endpoints"]["GET /health"]["count"] >= 2
    assert body["endpoints"]["GET /health"]["2xx"] >= 2


def test_incoming_request_id_is_preserved(client: TestClient) -> None:
    response = client.get("/health", headers={"x-request-id": "manual-request-id"})
    assert response.status_code == 200
    assert response.headers.get("x-request-id") == "manual-request-id"


def test_unhandled_error_returns_json_with_request_id(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def explode(*args: object, **kwargs: object) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr(client.app.state.repository, "list_jobs", explode)

    response = client.get("/jobs", headers={"x-request-id": "req-500"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error", "request_id": "req-500"}
    assert client.get("/metrics").json()["endpoints"]["GET /jobs"]["5xx"] == 1


def test_sync_with_no_sources_is_an_empty_summary(client: TestClient) -> None:
    response = client.post("/jobs/sync", json={})

    assert response.status_code == 200
    body = response.json()
    assert body["sources_processed"] == 0
    assert body["errors"] == []
    assert response.headers.get("x-request-id")


def test_sync_counters_are_split_by_trigger(
    tmp_path: Path,
    fake_board,
    example_source: JobBoardSource,
) -> None:
    fake_board.page(example_source.listing_url, '<a href="/positions/backend-engineer">Backend Engineer</a>')
    fake_board.unreachable.add("https://down.example.net/jobs")
    broken = JobBoardSource(name="Broken Board", url="https://down.example.net/jobs")
    app = create_app(
        database_path=str(tmp_path / "jobsync.sqlite3"),
        sources=[example_source, broken],
        transport=fake_board.transport(),
    )

    with TestClient(app) as client:
        client.post("/jobs/sync", json={"dryRun": True})
        client.post("/jobs/sync", json={})
        client.get("/cron/job-board-sync")
        syncs = client.get("/metrics").json()["syncs"]

    assert set(syncs) == {"manual", "manual:dry_run", "scheduled"}
    assert syncs["manual:dry_run"]["runs"] == 1
    assert syncs["manual:dry_run"]["created"] == 1
    assert syncs["manual"]["created"] == 1
    assert syncs["manual"]["failed_sources"] == 1
    assert syncs["scheduled"]["created"] == 0
    assert syncs["scheduled"]["updated"] == 1
    assert syncs["scheduled"]["errors"] == 1
