from __future__ import annotations

import pytest
from jobsync.termination import (
    DEFAULT_CLOSED_MARKERS,
    REASON_ACTIVE,
    REASON_REDIRECTED_TO_BOARD_HOME,
    TerminationResult,
    detect_termination,
)

pytestmark = pytest.mark.unit

JOB_URL = "https://jobs.example.com/positions/backend-engineer"
SOURCE_URL = "https://jobs.example.com/careers"


@pytest.mark.parametrize("status", [404, 410])
def test_gone_status_wins_over_everything(status: int) -> None:
    result = detect_termination(
        status=status,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        final_url=SOURCE_URL,
        body_text="This position has been filled.",
    )
    assert result == TerminationResult(terminated=True, reason=f"http_{status}")


def test_content_marker_is_reported_lowercased() -> None:
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        body_text="Sorry, this Position Has Been Filled.",
    )
    assert result == TerminationResult(
        terminated=True,
        reason="content_marker:position has been filled",
    )


def test_active_page_without_redirect_or_marker() -> None:
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        final_url=JOB_URL,
        body_text="Apply now",
    )
    assert result == TerminationResult(terminated=False, reason=REASON_ACTIVE)


def test_redirect_to_board_home_compares_canonical_forms() -> None:
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        final_url="https://JOBS.example.com/careers/?utm_source=redirect",
        body_text="Browse all openings",
    )
    assert result == TerminationResult(terminated=True, reason=REASON_REDIRECTED_TO_BOARD_HOME)


def test_redirect_elsewhere_is_not_a_termination() -> None:
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        final_url="https://jobs.example.com/positions/backend-engineer-2026",
        body_text="Apply now",
    )
    assert not result.terminated


def test_same_url_with_tracking_params_is_not_a_redirect() -> None:
    result = detect_termination(
        status=200,
        job_url=SOURCE_URL,
        source_url=SOURCE_URL,
        final_url=f"{SOURCE_URL}?ref=home",
        body_text="",
    )
    assert result.reason == REASON_ACTIVE


def test_redirect_check_runs_before_markers() -> None:
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        final_url=SOURCE_URL,
        body_text="No openings at this time",
    )
    assert result.reason == REASON_REDIRECTED_TO_BOARD_HOME


def test_custom_markers_replace_defaults_and_first_listed_wins() -> None:
    body = "Role has been filled. Posting archived."
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        body_text=body,
        closed_markers=["  ", "Posting Archived", "role has been filled"],
    )
    assert result.reason == "content_marker:posting archived"


def test_empty_marker_list_disables_content_check() -> None:
    result = detect_termination(
        status=200,
        job_url=JOB_URL,
        source_url=SOURCE_URL,
        body_text="This job has expired",
        closed_markers=[],
    )
    assert result.reason == REASON_ACTIVE


def test_default_markers_are_lowercase_phrases() -> None:
    assert "position has been filled" in DEFAULT_CLOSED_MARKERS
    assert all(marker == marker.lower() for marker in DEFAULT_CLOSED_MARKERS)


def test_server_error_without_other_signal_is_active() -> None:
    result = detect_termination(status=500, job_url=JOB_URL, source_url=SOURCE_URL)
    assert result.reason == REASON_ACTIVE
