from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from jobsync.errors import SourceConfigError
from jobsync.models import JobBoardSource

LOGGER = logging.getLogger("jobboard.sources")
SOURCES_ENV_VAR = "JOB_BOARD_SOURCES_JSON"
SOURCES_PATH_ENV_VAR = "JOB_BOARD_SOURCES_PATH"
DEFAULT_SOURCES_FILE = "job-board-sources.json"


def parse_sources(raw_entries: list[Any], *, origin: str) -> list[JobBoardSource]:
    sources: list[JobBoardSource] = []
    seen_names: set[str] = set()
    for index, entry in enumerate(raw_entries):
        if not isinstance(entry, dict):
            LOGGER.warning("skipping job board source #%d in %s: not an object", index, origin)
            continue
        try:
            source = JobBoardSource.model_validate(entry)
        except ValidationError as exc:
            LOGGER.warning(
                "skipping job board source #%d in %s: %s",
                index,
                origin,
                "; ".join(error["msg"] for error in exc.errors()),
            )
            continue
        if source.name in seen_names:
            raise SourceConfigError(f"Duplicate job board source name in {origin}: {source.name}")
        seen_names.add(source.name)
        sources.append(source)
    return sources


def load_job_board_sources(
    *,
    env_value: str | None = None,
    config_path: str | Path | None = None,
) -> list[JobBoardSource]:
    """Read board sources from ``JOB_BOARD_SOURCES_JSON`` or, failing that, a JSON file.

    A broken environment value is a hard configuration error. A missing or
    unreadable file just means no sources are configured.
    """
    raw_env = env_value if env_value is not None else os.getenv(SOURCES_ENV_VAR, "")
    if raw_env.strip():
        try:
            parsed = json.loads(raw_env)
        except json.JSONDecodeError as exc:
            raise SourceConfigError(f"{SOURCES_ENV_VAR} is not valid JSON") from exc
        if not isinstance(parsed, list):
            raise SourceConfigError(f"{SOURCES_ENV_VAR} must be a JSON list of sources")
        sources = parse_sources(parsed, origin=SOURCES_ENV_VAR)
        if not sources:
            raise SourceConfigError(f"{SOURCES_ENV_VAR} contains no valid sources")
        return sources

    path = Path(config_path or os.getenv(SOURCES_PATH_ENV_VAR, "").strip() or DEFAULT_SOURCES_FILE)
    if not path.exists():
        return []
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("could not read job board sources from %s: %s", path, exc)
        return []
    if not isinstance(parsed, list):
        LOGGER.warning("ignoring %s: expected a JSON list of sources", path)
        return []
    return parse_sources(parsed, origin=str(path))
