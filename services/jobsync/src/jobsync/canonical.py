"""Canonical URL form used as the identity key for a job posting.

Every comparison between a listed link, a stored link, a redirect target and a
board URL goes through :func:`canonicalize_url`.
"""

from __future__ import annotations

import re
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from jobsync.errors import InvalidUrlError

_SLASH_RUN_RE = re.compile(r"/{2,}")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_TRACKING_PARAM_NAMES = ("ref", "source")


def is_tracking_param(name: str) -> bool:
    return name.lower().startswith("utm_") or name in _TRACKING_PARAM_NAMES


def strip_tracking_params(query: str) -> str:
    # Retained parameters keep their position and raw encoding.
    kept: list[str] = []
    for part in query.split("&"):
        if not part:
            continue
        name = unquote_plus(part.split("=", 1)[0])
        if is_tracking_param(name):
            continue
        kept.append(part)
    return "&".join(kept)


def _build_netloc(scheme: str, hostname: str, port: int | None, username: str | None, password: str | None) -> str:
    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    if username is not None:
        userinfo = username if password is None else f"{username}:{password}"
        netloc = f"{userinfo}@{netloc}"
    return netloc


def canonicalize_url(url: str) -> str:
    if not isinstance(url, str):
        raise InvalidUrlError(repr(url))
    candidate = url.strip()
    try:
        parsed = urlsplit(candidate)
        port = parsed.port
    except ValueError as exc:
        raise InvalidUrlError(candidate) from exc

    scheme = parsed.scheme.lower()
    hostname = parsed.hostname
    if not scheme or not hostname:
        raise InvalidUrlError(candidate)

    netloc = _build_netloc(scheme, hostname, port, parsed.username, parsed.password)
    path = _SLASH_RUN_RE.sub("/", parsed.path) or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    query = strip_tracking_params(parsed.query)
    return urlunsplit((scheme, netloc, path, query, ""))
