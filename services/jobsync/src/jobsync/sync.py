from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from common.utils import now_utc

from jobsync.canonical import canonicalize_url
from jobsync.descriptions import JobDescription, extract_description
from jobsync.errors import FetchError, InvalidUrlError, StorageError, UnknownSourceError
from jobsync.extract import extract_links
from jobsync.fetch import FetchResult, PageFetcher
from jobsync.models import (
    MAX_DETAIL_CONCURRENCY,
    CandidateLink,
    JobBoardSource,
    JobRecord,
    JobUpdate,
    NewJobRecord,
    SourceSyncSummary,
    SyncError,
    SyncSummary,
)
from jobsync.repository import JobStore
from jobsync.termination import REASON_MISSING_FROM_LISTING, detect_termination

LOGGER = logging.getLogger("jobboard.sync")
DEFAULT_DETAIL_CONCURRENCY = 4

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class DetailOutcome:
    result: FetchResult | None = None
    error: str | None = None


async def run_bounded(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    *,
    concurrency: int,
) -> list[ResultT]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` calls in flight.

    A fixed set of tasks drains a shared queue. Results come back in the
    order of ``items`` regardless of completion order.
    """
    if not items:
        return []
    queue: asyncio.Queue[tuple[int, ItemT]] = asyncio.Queue()
    for position, item in enumerate(items):
        queue.put_nowait((position, item))
    results: dict[int, ResultT] = {}

    async def drain() -> None:
        while True:
            try:
                position, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[position] = await worker(item)
            finally:
                queue.task_done()

    tasks = [asyncio.create_task(drain()) for _ in range(min(max(1, concurrency), len(items)))]
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
    return [results[position] for position in range(len(items))]


def select_sources(
    sources: Sequence[JobBoardSource],
    source_name: str | None,
) -> list[JobBoardSource]:
    if source_name is None or not source_name.strip():
        return list(sources)
    wanted = source_name.strip()
    selected = [source for source in sources if source.name == wanted]
    if not selected:
        raise UnknownSourceError(wanted)
    return selected


async def fetch_detail(fetcher: PageFetcher, url: str) -> DetailOutcome:
    try:
        return DetailOutcome(result=await fetcher.fetch(url))
    except FetchError as exc:
        return DetailOutcome(error=str(exc))


async def fetch_description(fetcher: PageFetcher, url: str) -> JobDescription | None:
    outcome = await fetch_detail(fetcher, url)
    if outcome.result is None or not outcome.result.ok:
        LOGGER.debug("no description for %s: %s", url, outcome.error or outcome.result.status)
        return None
    return extract_description(outcome.result.body_text)


def build_new_job(
    source: JobBoardSource,
    candidate: CandidateLink,
    *,
    checked_at: str,
    description: JobDescription | None,
) -> NewJobRecord:
    details = description or JobDescription()
    return NewJobRecord(
        title=candidate.title,
        company=source.company_label(),
        link=candidate.canonical_url,
        category=source.category,
        description=details.description,
        responsibilities=details.responsibilities,
        qualifications=details.qualifications,
        benefits=details.benefits,
        source_board=source.name,
        source_url=source.listing_url,
        source_external_id=candidate.canonical_url,
        last_checked_at=checked_at,
    )


def _fail_source(summary: SourceSyncSummary, message: str) -> SourceSyncSummary:
    summary.status = "error"
    summary.errors.append(message)
    LOGGER.warning(
        json.dumps({"event": "job_board_source_failed", "source": summary.source, "error": message})
    )
    return summary


class _SourceRun:
    """State for reconciling one board against its stored records."""

    def __init__(
        self,
        store: JobStore,
        source: JobBoardSource,
        *,
        fetcher: PageFetcher,
        dry_run: bool,
        concurrency: int,
        fetch_descriptions: bool,
        checked_at: str,
    ) -> None:
        self.store = store
        self.source = source
        self.fetcher = fetcher
        self.dry_run = dry_run
        self.concurrency = concurrency
        self.fetch_descriptions = fetch_descriptions
        self.checked_at = checked_at
        self.summary = SourceSyncSummary(source=source.name)

    def record_error(self, message: str) -> None:
        self.summary.errors.append(message)

    async def write_update(self, record: JobRecord, update: JobUpdate) -> bool:
        if self.dry_run:
            return True
        try:
            await asyncio.to_thread(self.store.update_job, record.id, update)
        except StorageError as exc:
            LOGGER.error(
                json.dumps(
                    {
                        "event": "job_update_failed",
                        "source": self.source.name,
                        "job_id": record.id,
                        "error": str(exc),
                    }
                )
            )
            self.record_error(f"{record.link}: update failed: {exc}")
            return False
        return True

    async def run(self) -> SourceSyncSummary:
        try:
            listing = await self.fetcher.fetch(self.source.listing_url)
        except FetchError as exc:
            return _fail_source(self.summary, f"listing fetch failed: {exc}")
        if not listing.ok:
            return _fail_source(self.summary, f"listing fetch returned HTTP {listing.status}")

        candidates = extract_links(self.source, listing.body_text)
        self.summary.candidates_found = len(candidates)

        try:
            existing = await asyncio.to_thread(self.store.list_active_jobs, self.source.name)
        except StorageError as exc:
            return _fail_source(self.summary, f"loading stored jobs failed: {exc}")

        listed_urls = {candidate.canonical_url for candidate in candidates}
        known_urls: set[str] = set()
        present: list[JobRecord] = []
        missing: list[JobRecord] = []
        for record in existing:
            try:
                key = canonicalize_url(record.link)
            except InvalidUrlError as exc:
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "stored_job_link_malformed",
                            "source": self.source.name,
                            "job_id": record.id,
                            "error": str(exc),
                        }
                    )
                )
                present.append(record)
                continue
            known_urls.add(key)
            if key in listed_urls:
                present.append(record)
            else:
                missing.append(record)

        await self.insert_new(
            [candidate for candidate in candidates if candidate.canonical_url not in known_urls]
        )
        await self.refresh_present(present)
        await self.check_missing(missing)

        if self.summary.errors:
            self.summary.status = "partial"
        return self.summary

    async def insert_new(self, new_candidates: list[CandidateLink]) -> None:
        descriptions: list[JobDescription | None] = [None] * len(new_candidates)
        if self.fetch_descriptions and not self.dry_run:
            descriptions = await run_bounded(
                [candidate.canonical_url for candidate in new_candidates],
                lambda url: fetch_description(self.fetcher, url),
                concurrency=self.concurrency,
            )

        for candidate, description in zip(new_candidates, descriptions):
            job = build_new_job(
                self.source,
                candidate,
                checked_at=self.checked_at,
                description=description,
            )
            if not self.dry_run:
                try:
                    stored = await asyncio.to_thread(self.store.insert_job, job)
                except StorageError as exc:
                    LOGGER.error(
                        json.dumps(
                            {
                                "event": "job_insert_failed",
                                "source": self.source.name,
                                "link": job.link,
                                "error": str(exc),
                            }
                        )
                    )
                    self.record_error(f"{job.link}: insert failed: {exc}")
                    continue
                if stored is None:
                    LOGGER.info(
                        json.dumps(
                            {
                                "event": "job_already_stored",
                                "source": self.source.name,
                                "link": job.link,
                            }
                        )
                    )
                    continue
            self.summary.created += 1

    async def refresh_present(self, records: list[JobRecord]) -> None:
        for record in records:
            if await self.write_update(record, JobUpdate(last_checked_at=self.checked_at)):
                self.summary.updated += 1

    async def record_check_failure(self, record: JobRecord, detail: str) -> None:
        LOGGER.warning(
            json.dumps(
                {
                    "event": "termination_check_failed",
                    "source": self.source.name,
                    "job_id": record.id,
                    "error": detail,
                }
            )
        )
        self.record_error(f"{record.link}: termination check failed: {detail}")
        await self.write_update(record, JobUpdate(last_checked_at=self.checked_at))

    async def check_missing(self, records: list[JobRecord]) -> None:
        outcomes = await run_bounded(
            [record.link for record in records],
            lambda url: fetch_detail(self.fetcher, url),
            concurrency=self.concurrency,
        )
        for record, outcome in zip(records, outcomes):
            self.summary.checked += 1
            if outcome.result is None:
                # Unreachable is not the same as gone.
                await self.record_check_failure(record, outcome.error or "no response")
                continue

            verdict = detect_termination(
                status=outcome.result.status,
                job_url=record.link,
                source_url=self.source.listing_url,
                final_url=outcome.result.final_url,
                body_text=outcome.result.body_text,
                closed_markers=self.source.markers(),
            )
            if not verdict.terminated and not outcome.result.ok:
                await self.record_check_failure(record, f"HTTP {outcome.result.status}")
                continue
            reason = verdict.reason if verdict.terminated else REASON_MISSING_FROM_LISTING
            update = JobUpdate(
                last_checked_at=self.checked_at,
                terminated=True,
                terminated_at=self.checked_at,
                termination_reason=reason,
            )
            if await self.write_update(record, update):
                self.summary.terminated += 1
                LOGGER.info(
                    json.dumps(
                        {
                            "event": "job_terminated",
                            "source": self.source.name,
                            "job_id": record.id,
                            "reason": reason,
                            "dry_run": self.dry_run,
                        }
                    )
                )


async def sync_job_boards(
    store: JobStore,
    sources: Sequence[JobBoardSource],
    *,
    fetcher: PageFetcher,
    dry_run: bool = False,
    source_name: str | None = None,
    concurrency: int = DEFAULT_DETAIL_CONCURRENCY,
    fetch_descriptions: bool = True,
    clock: Callable[[], datetime] = now_utc,
) -> SyncSummary:
    """Reconcile every configured board (or the one named) against the store.

    Boards are processed one after another. A failing board is reported in
    the summary and does not stop the others. With ``dry_run`` nothing is
    written and the counters describe what would have changed.
    """
    selected = select_sources(sources, source_name)
    started_at = clock().isoformat()
    workers = max(1, min(concurrency, MAX_DETAIL_CONCURRENCY))
    LOGGER.info(
        json.dumps(
            {
                "event": "job_board_sync_started",
                "dry_run": dry_run,
                "sources": [source.name for source in selected],
            }
        )
    )

    results: list[SourceSyncSummary] = []
    for source in selected:
        source_run = _SourceRun(
            store,
            source,
            fetcher=fetcher,
            dry_run=dry_run,
            concurrency=workers,
            fetch_descriptions=fetch_descriptions,
            checked_at=started_at,
        )
        try:
            result = await source_run.run()
        except Exception as exc:
            LOGGER.exception(
                json.dumps(
                    {"event": "job_board_source_crashed", "source": source.name, "error": str(exc)}
                )
            )
            result = source_run.summary
            result.status = "error"
            result.errors.append(f"unexpected error: {exc}")
        results.append(result)
        LOGGER.info(
            json.dumps(
                {
                    "event": "job_board_source_synced",
                    "source": result.source,
                    "status": result.status,
                    "candidates_found": result.candidates_found,
                    "created": result.created,
                    "updated": result.updated,
                    "checked": result.checked,
                    "terminated": result.terminated,
                    "errors": len(result.errors),
                    "dry_run": dry_run,
                }
            )
        )

    summary = SyncSummary(
        dry_run=dry_run,
        started_at=started_at,
        finished_at=clock().isoformat(),
        sources_processed=len(results),
        candidates_found=sum(result.candidates_found for result in results),
        created=sum(result.created for result in results),
        updated=sum(result.updated for result in results),
        checked=sum(result.checked for result in results),
        terminated=sum(result.terminated for result in results),
        errors=[
            SyncError(source=result.source, message=message)
            for result in results
            for message in result.errors
        ],
        by_source=results,
    )
    LOGGER.info(
        json.dumps(
            {
                "event": "job_board_sync_finished",
                "dry_run": dry_run,
                "sources_processed": summary.sources_processed,
                "created": summary.created,
                "terminated": summary.terminated,
                "errors": len(summary.errors),
            }
        )
    )
    return summary
