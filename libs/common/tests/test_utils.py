from __future__ import annotations

from datetime import datetime

import pytest
from common.utils import normalize_whitespace, now_utc_iso

pytestmark = pytest.mark.unit


def test_normalize_whitespace_collapses_runs_and_trims() -> None:
    assert normalize_whitespace("  Backend\n   Engineer\t ") == "Backend Engineer"


def test_normalize_whitespace_returns_empty_string_for_blank_text() -> None:
    assert normalize_whitespace("   ") == ""


def test_now_utc_iso_returns_parseable_utc_timestamp() -> None:
    parsed = datetime.fromisoformat(now_utc_iso())
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() is not None
    assert parsed.utcoffset().total_seconds() == 0

