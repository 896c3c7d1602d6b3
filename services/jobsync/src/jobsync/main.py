from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

import httpx
from common.utils import now_utc_iso
from fastapi import Body, FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from jobsync.errors import SourceConfigError, StorageError, UnknownSourceError
from jobsync.fetch import HttpFetcher
from jobsync.models import (
    JobBoardSource,
    JobRecord,
    SyncRequest,
    SyncRun,
    SyncSettings,
    SyncSummary,
    SyncTrigger,
)
from jobsync.repository import JobRepository
from jobsync.sources import load_job_board_sources
from jobsync.sync import sync_job_boards

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobboard-sync", "jobsync.sqlite3")
LOGGER = logging.getLogger("jobboard.api")
SETTINGS_ENV = {
    "fetch_timeout_seconds": "JOBSYNC_FETCH_TIMEOUT_SECONDS",
    "detail_concurrency": "JOBSYNC_DETAIL_CONCURRENCY",
    "fetch_descriptions": "JOBSYNC_FETCH_DESCRIPTIONS",
}


def load_settings() -> SyncSettings:
    raw: dict[str, str] = {}
    for field_name, env_name in SETTINGS_ENV.items():
        value = os.getenv(env_name, "").strip()
        if value:
            raw[field_name] = value
    return SyncSettings.model_validate(raw)


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]
    syncs: dict[str, dict[str, int]]


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}
        self._syncs: dict[str, dict[str, int]] = {}

    def observe(self, *, method: str, path: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {path}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {"count": 0, "2xx": 0, "4xx": 0, "5xx": 0, "latency_ms_sum": 0.0, "latency_ms_avg": 0.0},
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in ("2xx", "4xx", "5xx"):
                endpoint[bucket] = int(endpoint[bucket]) + 1
            endpoint["latency_ms_sum"] = float(endpoint["latency_ms_sum"]) + duration_ms
            endpoint["latency_ms_avg"] = float(endpoint["latency_ms_sum"]) / int(endpoint["count"])

    def observe_sync(self, *, trigger: SyncTrigger, summary: SyncSummary) -> None:
        key = f"{trigger}:dry_run" if summary.dry_run else trigger
        with self._lock:
            counters = self._syncs.setdefault(
                key,
                {"runs": 0, "created": 0, "updated": 0, "terminated": 0, "errors": 0, "failed_sources": 0},
            )
            counters["runs"] += 1
            counters["created"] += summary.created
            counters["updated"] += summary.updated
            counters["terminated"] += summary.terminated
            counters["errors"] += len(summary.errors)
            counters["failed_sources"] += sum(
                1 for source in summary.by_source if source.status == "error"
            )

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
                syncs={key: dict(value) for key, value in self._syncs.items()},
            )


def create_app(
    *,
    database_path: str | None = None,
    sources: list[JobBoardSource] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    settings: SyncSettings | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("JOBSYNC_DB_PATH", DEFAULT_DB_PATH)
    repository = JobRepository(database_path=resolved_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.metrics = MetricsStore()
        app.state.settings = settings or load_settings()
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="Job Board Sync", version="1.0.0", lifespan=lifespan)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            request.app.state.metrics.observe(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
            )
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                }
            )
        )
        return response

    async def resolve_sources() -> list[JobBoardSource]:
        if sources is not None:
            return list(sources)
        try:
            return await run_in_threadpool(load_job_board_sources)
        except SourceConfigError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    async def run_sync(
        request: Request,
        response: Response,
        *,
        dry_run: bool,
        source_name: str | None,
        trigger: SyncTrigger,
    ) -> SyncSummary:
        configured = await resolve_sources()
        sync_settings: SyncSettings = request.app.state.settings
        try:
            async with HttpFetcher(
                transport=transport,
                timeout_seconds=sync_settings.fetch_timeout_seconds,
            ) as fetcher:
                summary = await sync_job_boards(
                    request.app.state.repository,
                    configured,
                    fetcher=fetcher,
                    dry_run=dry_run,
                    source_name=source_name,
                    concurrency=sync_settings.detail_concurrency,
                    fetch_descriptions=sync_settings.fetch_descriptions,
                )
        except UnknownSourceError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        request.app.state.metrics.observe_sync(trigger=trigger, summary=summary)

        if not dry_run:
            try:
                run = await run_in_threadpool(
                    request.app.state.repository.record_sync_run,
                    summary,
                    trigger,
                )
            except StorageError as exc:
                LOGGER.error(
                    json.dumps(
                        {
                            "event": "sync_run_record_failed",
                            "request_id": request.state.request_id,
                            "error": str(exc),
                        }
                    )
                )
            else:
                response.headers["x-sync-run-id"] = str(run.run_id)

        LOGGER.info(
            json.dumps(
                {
                    "event": "job_board_sync",
                    "request_id": request.state.request_id,
                    "trigger": trigger,
                    "dry_run": dry_run,
                    "source": source_name,
                    "created": summary.created,
                    "terminated": summary.terminated,
                    "errors": len(summary.errors),
                }
            )
        )
        return summary

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "jobsync"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.post("/jobs/sync", response_model=SyncSummary)
    async def sync_jobs(
        request: Request,
        response: Response,
        payload: SyncRequest | None = Body(default=None),
    ) -> SyncSummary:
        body = payload or SyncRequest()
        return await run_sync(
            request,
            response,
            dry_run=body.dry_run,
            source_name=body.source_name,
            trigger="manual",
        )

    @app.api_route("/cron/job-board-sync", methods=["GET", "POST"], response_model=SyncSummary)
    async def scheduled_sync(
        request: Request,
        response: Response,
        dry_run: bool = Query(default=False, alias="dryRun"),
        source: str | None = Query(default=None),
    ) -> SyncSummary:
        return await run_sync(
            request,
            response,
            dry_run=dry_run,
            source_name=source,
            trigger="scheduled",
        )

    @app.get("/jobs", response_model=list[JobRecord])
    async def list_jobs(
        request: Request,
        limit: int = Query(default=100, ge=1, le=500),
        source: str | None = Query(default=None),
        include_terminated: bool = Query(default=False),
    ) -> list[JobRecord]:
        return await run_in_threadpool(
            request.app.state.repository.list_jobs,
            limit,
            source_name=source,
            include_terminated=include_terminated,
        )

    @app.get("/jobs/sync/history", response_model=list[SyncRun])
    async def sync_history(
        request: Request,
        limit: int = Query(default=20, ge=1, le=200),
        trigger: SyncTrigger | None = Query(default=None),
    ) -> list[SyncRun]:
        return await run_in_threadpool(
            request.app.state.repository.list_sync_runs,
            limit,
            trigger,
        )

    @app.get("/job-board-sources", response_model=list[dict[str, Any]])
    async def list_sources() -> list[dict[str, Any]]:
        return [source.model_dump() for source in await resolve_sources()]

    return app


app = create_app()
