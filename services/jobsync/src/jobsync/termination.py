from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from jobsync.canonical import canonicalize_url

DEFAULT_CLOSED_MARKERS: tuple[str, ...] = (
    "position has been filled",
    "position is no longer available",
    "job is no longer available",
    "this job has expired",
    "role has been filled",
    "no openings at this time",
)

REASON_ACTIVE = "active"
REASON_REDIRECTED_TO_BOARD_HOME = "redirected_to_board_home"
REASON_MISSING_FROM_LISTING = "missing_from_listing"
TERMINAL_STATUSES = (404, 410)


@dataclass(frozen=True)
class TerminationResult:
    terminated: bool
    reason: str


ACTIVE = TerminationResult(terminated=False, reason=REASON_ACTIVE)


def _normalize_markers(closed_markers: Sequence[str] | None) -> list[str]:
    markers = DEFAULT_CLOSED_MARKERS if closed_markers is None else closed_markers
    return [marker.strip().lower() for marker in markers if marker and marker.strip()]


def detect_termination(
    *,
    status: int,
    job_url: str,
    source_url: str,
    final_url: str | None = None,
    body_text: str | None = None,
    closed_markers: Sequence[str] | None = None,
) -> TerminationResult:
    """Classify a fetched job page as active or terminated.

    Checks run in a fixed order and the first match wins: a gone status code,
    a redirect back to the board's own listing page, then a closed-posting
    phrase in the body. ``closed_markers=None`` means the built-in phrases; an
    empty sequence disables the body check.
    """
    if status in TERMINAL_STATUSES:
        return TerminationResult(terminated=True, reason=f"http_{status}")

    canonical_job = canonicalize_url(job_url)
    canonical_final = canonicalize_url(final_url) if final_url else canonical_job
    canonical_source = canonicalize_url(source_url)
    if canonical_final != canonical_job and canonical_final == canonical_source:
        return TerminationResult(terminated=True, reason=REASON_REDIRECTED_TO_BOARD_HOME)

    body = (body_text or "").lower()
    for marker in _normalize_markers(closed_markers):
        if marker in body:
            return TerminationResult(terminated=True, reason=f"content_marker:{marker}")

    return ACTIVE
