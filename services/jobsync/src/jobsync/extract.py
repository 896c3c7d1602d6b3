from __future__ import annotations

import logging
import re
from typing import Protocol
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from common.utils import normalize_whitespace

from jobsync.canonical import canonicalize_url
from jobsync.errors import InvalidUrlError
from jobsync.models import CandidateLink, JobBoardSource

LOGGER = logging.getLogger("jobboard.extract")
HTML_PARSER = "html.parser"
_WORD_START_RE = re.compile(r"\b\w")
_SLUG_SEPARATOR_RE = re.compile(r"[-_]")


class QueriedElement(Protocol):
    @property
    def text(self) -> str: ...

    def attr(self, name: str) -> str | None: ...


class DocumentQuery(Protocol):
    def select(self, html: str, selector: str) -> list[QueriedElement]: ...


class SoupElement:
    def __init__(self, tag: Tag) -> None:
        self._tag = tag

    @property
    def text(self) -> str:
        return self._tag.get_text(" ", strip=True)

    def attr(self, name: str) -> str | None:
        value = self._tag.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)


class SoupDocumentQuery:
    def __init__(self, parser: str = HTML_PARSER) -> None:
        self.parser = parser

    def select(self, html: str, selector: str) -> list[QueriedElement]:
        soup = BeautifulSoup(html, self.parser)
        return [SoupElement(tag) for tag in soup.select(selector)]


def resolve_link(base_url: str, href: str) -> str | None:
    try:
        absolute = urljoin(base_url, href.strip())
        scheme = urlsplit(absolute).scheme.lower()
    except ValueError:
        return None
    if scheme not in ("http", "https"):
        return None
    return absolute


def derive_title_from_url(url: str) -> str:
    segments = [segment for segment in urlsplit(url).path.split("/") if segment]
    slug = segments[-1] if segments else "Job"
    spaced = _SLUG_SEPARATOR_RE.sub(" ", slug)
    return _WORD_START_RE.sub(lambda match: match.group(0).upper(), spaced)


def extract_links(
    source: JobBoardSource,
    html: str,
    *,
    query: DocumentQuery | None = None,
) -> list[CandidateLink]:
    """Pull candidate job links out of a board listing page.

    Links are resolved against the listing URL, filtered by the source's
    link pattern and deduplicated on their canonical form. The first
    occurrence of a canonical URL fixes both its position and its title.
    """
    document_query = query or SoupDocumentQuery()
    pattern = source.compiled_link_pattern()
    links_by_url: dict[str, CandidateLink] = {}

    for element in document_query.select(html, source.list_selector):
        href = element.attr("href")
        if not href or not href.strip():
            continue
        absolute = resolve_link(source.listing_url, href)
        if absolute is None:
            continue
        if pattern is not None and not pattern.search(absolute):
            continue
        try:
            canonical = canonicalize_url(absolute)
        except InvalidUrlError as exc:
            LOGGER.debug("skipping malformed link on %s: %s", source.name, exc)
            continue
        if canonical in links_by_url:
            continue
        title = normalize_whitespace(element.text) or derive_title_from_url(canonical)
        links_by_url[canonical] = CandidateLink(canonical_url=canonical, title=title)

    return list(links_by_url.values())
