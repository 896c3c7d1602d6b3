from __future__ import annotations

import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup
from common.utils import normalize_whitespace

from jobsync.extract import HTML_PARSER

MAX_LIST_ITEMS = 12
MAX_HEADING_LENGTH = 80
LONG_ITEM_LENGTH = 140

SECTION_HEADINGS: dict[str, tuple[str, ...]] = {
    "description": (
        "about the role",
        "about the position",
        "job description",
        "role overview",
        "the role",
    ),
    "responsibilities": (
        "responsibilities",
        "what you will do",
        "what you'll do",
        "what we are looking for",
        "key responsibilities",
    ),
    "qualifications": (
        "qualifications",
        "requirements",
        "what we're looking for",
        "you are",
        "skills",
    ),
    "benefits": (
        "benefits",
        "what we offer",
        "perks",
        "compensation",
        "why work here",
    ),
}

_BLOCK_TAGS = [
    "p", "div", "section", "article", "header", "footer", "li", "ul", "ol", "tr",
    "h1", "h2", "h3", "h4", "h5", "h6",
]
_HEADING_TRAILER_RE = re.compile(r"[:\-\u2013\u2014]+$")
_BULLET_RE = re.compile(r"^[-*\u2022]+\s+")
_NUMBERED_RE = re.compile(r"^\d+\.\s+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass
class JobDescription:
    description: str | None = None
    responsibilities: list[str] = field(default_factory=list)
    qualifications: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)


def page_text_lines(html: str) -> list[str]:
    soup = BeautifulSoup(html, HTML_PARSER)
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    for line_break in soup.find_all("br"):
        line_break.replace_with("\n")
    for item in soup.find_all("li"):
        item.insert(0, "- ")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")

    lines = (normalize_whitespace(line) for line in soup.get_text().split("\n"))
    return [line for line in lines if line]


def match_section(line: str) -> str | None:
    heading = normalize_whitespace(_HEADING_TRAILER_RE.sub("", line.strip())).lower()
    if len(heading) > MAX_HEADING_LENGTH:
        return None
    for section, headings in SECTION_HEADINGS.items():
        if heading in headings:
            return section
    return None


def normalize_list(lines: list[str]) -> list[str]:
    items: list[str] = []
    for line in lines:
        cleaned = _NUMBERED_RE.sub("", _BULLET_RE.sub("", line)).strip()
        if not cleaned:
            continue
        if len(cleaned) > LONG_ITEM_LENGTH:
            items.extend(
                sentence.strip()
                for sentence in _SENTENCE_SPLIT_RE.split(cleaned)
                if len(sentence.strip()) > 3
            )
        elif len(cleaned) > 3:
            items.append(cleaned)
    return list(dict.fromkeys(items))[:MAX_LIST_ITEMS]


def extract_description(html: str) -> JobDescription:
    """Split a job detail page into description, responsibilities, qualifications and benefits.

    Lines before the first recognised heading form the description when the
    page has no explicit description heading.
    """
    buckets: dict[str, list[str]] = {"intro": [], **{section: [] for section in SECTION_HEADINGS}}
    current = "intro"
    for line in page_text_lines(html):
        section = match_section(line)
        if section:
            current = section
            continue
        buckets[current].append(line)

    description_lines = buckets["description"] or buckets["intro"]
    return JobDescription(
        description="\n".join(description_lines).strip() or None,
        responsibilities=normalize_list(buckets["responsibilities"]),
        qualifications=normalize_list(buckets["qualifications"]),
        benefits=normalize_list(buckets["benefits"]),
    )
