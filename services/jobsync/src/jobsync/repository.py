from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

from common.utils import now_utc_iso

from jobsync.errors import StorageError
from jobsync.models import JobRecord, JobUpdate, NewJobRecord, SyncRun, SyncSummary, SyncTrigger


class JobStore(Protocol):
    def list_active_jobs(self, source_name: str) -> list[JobRecord]: ...

    def insert_job(self, job: NewJobRecord) -> JobRecord | None: ...

    def update_job(self, job_id: str, update: JobUpdate) -> None: ...


_JOB_COLUMNS = """
    id,
    title,
    company,
    link,
    category,
    description,
    responsibilities_json,
    qualifications_json,
    benefits_json,
    source_board,
    source_url,
    source_external_id,
    last_checked_at,
    terminated,
    terminated_at,
    termination_reason,
    created_at,
    updated_at
"""


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


class JobRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock, _storage_errors("connect"):
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    company TEXT NOT NULL,
                    link TEXT NOT NULL,
                    category TEXT NOT NULL,
                    source_board TEXT,
                    source_url TEXT,
                    source_external_id TEXT,
                    last_checked_at TEXT,
                    terminated INTEGER NOT NULL DEFAULT 0,
                    terminated_at TEXT,
                    termination_reason TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_source_board
                    ON jobs (source_board, terminated);

                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active_link
                    ON jobs (source_board, link) WHERE terminated = 0;

                CREATE TABLE IF NOT EXISTS job_board_sync_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    trigger TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    finished_at TEXT NOT NULL,
                    sources_processed INTEGER NOT NULL,
                    candidates_found INTEGER NOT NULL,
                    created INTEGER NOT NULL,
                    updated INTEGER NOT NULL,
                    checked INTEGER NOT NULL,
                    terminated INTEGER NOT NULL,
                    error_count INTEGER NOT NULL,
                    summary_json TEXT NOT NULL
                );
                """
            )
            self._ensure_jobs_columns()
            self._connection.commit()

    def _ensure_jobs_columns(self) -> None:
        column_rows = self.connection.execute("PRAGMA table_info(jobs)").fetchall()
        existing = {row["name"] for row in column_rows}
        required_definitions = {
            "description": "TEXT",
            "responsibilities_json": "TEXT NOT NULL DEFAULT '[]'",
            "qualifications_json": "TEXT NOT NULL DEFAULT '[]'",
            "benefits_json": "TEXT NOT NULL DEFAULT '[]'",
        }
        for column_name, definition in required_definitions.items():
            if column_name in existing:
                continue
            self.connection.execute(f"ALTER TABLE jobs ADD COLUMN {column_name} {definition}")

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def list_active_jobs(self, source_name: str) -> list[JobRecord]:
        with self._lock, _storage_errors("list_active_jobs"):
            cursor = self.connection.execute(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM jobs
                WHERE source_board = ? AND terminated = 0
                ORDER BY created_at, rowid
                """,
                (source_name,),
            )
            return [self._to_job_record(row) for row in cursor.fetchall()]

    def insert_job(self, job: NewJobRecord) -> JobRecord | None:
        """Store a new job, or return ``None`` if the board already has it active."""
        with self._lock, _storage_errors("insert_job"):
            now = now_utc_iso()
            job_id = str(uuid.uuid4())
            cursor = self.connection.execute(
                """
                INSERT INTO jobs (
                    id,
                    title,
                    company,
                    link,
                    category,
                    description,
                    responsibilities_json,
                    qualifications_json,
                    benefits_json,
                    source_board,
                    source_url,
                    source_external_id,
                    last_checked_at,
                    terminated,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT (source_board, link) WHERE terminated = 0 DO NOTHING
                """,
                (
                    job_id,
                    job.title,
                    job.company,
                    job.link,
                    job.category,
                    job.description,
                    json.dumps(job.responsibilities),
                    json.dumps(job.qualifications),
                    json.dumps(job.benefits),
                    job.source_board,
                    job.source_url,
                    job.source_external_id,
                    job.last_checked_at,
                    now,
                    now,
                ),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return JobRecord(
                id=job_id,
                **job.model_dump(),
                created_at=now,
                updated_at=now,
            )

    def update_job(self, job_id: str, update: JobUpdate) -> None:
        # Termination fields are set once and never cleared.
        with self._lock, _storage_errors("update_job"):
            cursor = self.connection.execute(
                """
                UPDATE jobs
                SET
                    last_checked_at = COALESCE(?, last_checked_at),
                    terminated = MAX(terminated, ?),
                    terminated_at = COALESCE(terminated_at, ?),
                    termination_reason = COALESCE(termination_reason, ?),
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    update.last_checked_at,
                    int(bool(update.terminated)),
                    update.terminated_at,
                    update.termination_reason,
                    now_utc_iso(),
                    job_id,
                ),
            )
            if cursor.rowcount == 0:
                self.connection.rollback()
                raise StorageError(f"Unknown job id: {job_id}")
            self.connection.commit()

    def get_job(self, job_id: str) -> JobRecord | None:
        with self._lock, _storage_errors("get_job"):
            row = self.connection.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_job_record(row)

    def list_jobs(
        self,
        limit: int,
        *,
        source_name: str | None = None,
        include_terminated: bool = False,
    ) -> list[JobRecord]:
        with self._lock, _storage_errors("list_jobs"):
            query = f"SELECT {_JOB_COLUMNS} FROM jobs"
            params: list[Any] = []
            filters: list[str] = []
            if source_name:
                filters.append("source_board = ?")
                params.append(source_name)
            if not include_terminated:
                filters.append("terminated = 0")
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
            params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [self._to_job_record(row) for row in cursor.fetchall()]

    def record_sync_run(self, summary: SyncSummary, trigger: SyncTrigger) -> SyncRun:
        with self._lock, _storage_errors("record_sync_run"):
            cursor = self.connection.execute(
                """
                INSERT INTO job_board_sync_runs (
                    trigger,
                    started_at,
                    finished_at,
                    sources_processed,
                    candidates_found,
                    created,
                    updated,
                    checked,
                    terminated,
                    error_count,
                    summary_json
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trigger,
                    summary.started_at,
                    summary.finished_at,
                    summary.sources_processed,
                    summary.candidates_found,
                    summary.created,
                    summary.updated,
                    summary.checked,
                    summary.terminated,
                    len(summary.errors),
                    summary.model_dump_json(),
                ),
            )
            self.connection.commit()
            return SyncRun(
                run_id=int(cursor.lastrowid),
                trigger=trigger,
                started_at=summary.started_at,
                finished_at=summary.finished_at,
                sources_processed=summary.sources_processed,
                candidates_found=summary.candidates_found,
                created=summary.created,
                updated=summary.updated,
                checked=summary.checked,
                terminated=summary.terminated,
                error_count=len(summary.errors),
            )

    def list_sync_runs(self, limit: int, trigger: str | None = None) -> list[SyncRun]:
        with self._lock, _storage_errors("list_sync_runs"):
            query = """
                SELECT
                    id AS run_id,
                    trigger,
                    started_at,
                    finished_at,
                    sources_processed,
                    candidates_found,
                    created,
                    updated,
                    checked,
                    terminated,
                    error_count
                FROM job_board_sync_runs
            """
            params: list[Any] = []
            if trigger:
                query += " WHERE trigger = ?"
                params.append(trigger)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [SyncRun(**dict(row)) for row in cursor.fetchall()]

    def _to_job_record(self, row: sqlite3.Row) -> JobRecord:
        return JobRecord(
            id=row["id"],
            title=row["title"],
            company=row["company"],
            link=row["link"],
            category=row["category"],
            description=row["description"],
            responsibilities=json.loads(row["responsibilities_json"] or "[]"),
            qualifications=json.loads(row["qualifications_json"] or "[]"),
            benefits=json.loads(row["benefits_json"] or "[]"),
            source_board=row["source_board"],
            source_url=row["source_url"],
            source_external_id=row["source_external_id"],
            last_checked_at=row["last_checked_at"],
            terminated=bool(row["terminated"]),
            terminated_at=row["terminated_at"],
            termination_reason=row["termination_reason"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
