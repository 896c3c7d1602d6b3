from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from jobsync.termination import DEFAULT_CLOSED_MARKERS

JobCategory = Literal["portfolio", "network"]
SyncTrigger = Literal["manual", "scheduled"]
DEFAULT_LIST_SELECTOR = "a[href]"
DEFAULT_CATEGORY: JobCategory = "network"
MAX_DETAIL_CONCURRENCY = 8


class JobBoardSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=120)
    listing_url: str = Field(..., validation_alias=AliasChoices("listing_url", "listingUrl", "url"))
    category: JobCategory = DEFAULT_CATEGORY
    company_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("company_name", "companyName", "company"),
    )
    list_selector: str = Field(
        default=DEFAULT_LIST_SELECTOR,
        validation_alias=AliasChoices("list_selector", "listSelector"),
    )
    link_pattern: str | None = Field(
        default=None,
        validation_alias=AliasChoices("link_pattern", "linkPattern", "jobLinkPattern"),
    )
    closed_markers: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("closed_markers", "closedMarkers"),
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Source name must not be blank.")
        return cleaned

    @field_validator("listing_url")
    @classmethod
    def validate_listing_url(cls, value: str) -> str:
        cleaned = value.strip()
        parsed = urlsplit(cleaned)
        if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
            raise ValueError("listing_url must be an absolute http(s) URL.")
        return cleaned

    @field_validator("list_selector")
    @classmethod
    def validate_list_selector(cls, value: str) -> str:
        return value.strip() or DEFAULT_LIST_SELECTOR

    @field_validator("link_pattern")
    @classmethod
    def validate_link_pattern(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        try:
            re.compile(value, re.IGNORECASE)
        except re.error as exc:
            raise ValueError(f"link_pattern is not a valid regular expression: {exc}") from exc
        return value

    @field_validator("closed_markers")
    @classmethod
    def validate_closed_markers(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [marker.strip().lower() for marker in value if marker.strip()]

    def company_label(self) -> str:
        if self.company_name and self.company_name.strip():
            return self.company_name.strip()
        hostname = urlsplit(self.listing_url).hostname or ""
        return hostname.removeprefix("www.")

    def compiled_link_pattern(self) -> re.Pattern[str] | None:
        if not self.link_pattern:
            return None
        return re.compile(self.link_pattern, re.IGNORECASE)

    def markers(self) -> list[str]:
        if self.closed_markers is None:
            return list(DEFAULT_CLOSED_MARKERS)
        return list(self.closed_markers)


@dataclass(frozen=True)
class CandidateLink:
    canonical_url: str
    title: str


class JobRecord(BaseModel):
    id: str
    title: str
    company: str
    link: str
    category: str
    description: str | None = None
    responsibilities: list[str] = Field(default_factory=list)
    qualifications: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    source_board: str | None = None
    source_url: str | None = None
    source_external_id: str | None = None
    last_checked_at: str | None = None
    terminated: bool = False
    terminated_at: str | None = None
    termination_reason: str | None = None
    created_at: str
    updated_at: str


class NewJobRecord(BaseModel):
    title: str = Field(..., min_length=1)
    company: str
    link: str
    category: JobCategory
    description: str | None = None
    responsibilities: list[str] = Field(default_factory=list)
    qualifications: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    source_board: str
    source_url: str
    source_external_id: str
    last_checked_at: str


class JobUpdate(BaseModel):
    last_checked_at: str | None = None
    terminated: bool | None = None
    terminated_at: str | None = None
    termination_reason: str | None = None

    @model_validator(mode="after")
    def validate_termination(self) -> JobUpdate:
        if self.terminated is False:
            raise ValueError("Job records are never reactivated by a sync.")
        if self.terminated and not (self.terminated_at and self.termination_reason):
            raise ValueError("A terminated job needs terminated_at and termination_reason.")
        if not self.terminated and (self.terminated_at or self.termination_reason):
            raise ValueError("terminated_at and termination_reason require terminated=True.")
        return self


class SyncError(BaseModel):
    source: str
    message: str


class SourceSyncSummary(BaseModel):
    source: str
    status: Literal["ok", "partial", "error"] = "ok"
    candidates_found: int = 0
    created: int = 0
    updated: int = 0
    checked: int = 0
    terminated: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncSummary(BaseModel):
    dry_run: bool
    started_at: str
    finished_at: str
    sources_processed: int
    candidates_found: int
    created: int
    updated: int
    checked: int
    terminated: int
    errors: list[SyncError] = Field(default_factory=list)
    by_source: list[SourceSyncSummary] = Field(default_factory=list)


class SyncRequest(BaseModel):
    dry_run: bool = Field(default=False, validation_alias=AliasChoices("dry_run", "dryRun"))
    source_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_name", "sourceName"),
    )


class SyncRun(BaseModel):
    run_id: int
    trigger: SyncTrigger
    started_at: str
    finished_at: str
    sources_processed: int
    candidates_found: int
    created: int
    updated: int
    checked: int
    terminated: int
    error_count: int


class SyncSettings(BaseModel):
    fetch_timeout_seconds: float = Field(default=20.0, gt=0, le=120)
    detail_concurrency: int = 4
    fetch_descriptions: bool = True

    @field_validator("detail_concurrency")
    @classmethod
    def cap_detail_concurrency(cls, value: int) -> int:
        return max(1, min(value, MAX_DETAIL_CONCURRENCY))
