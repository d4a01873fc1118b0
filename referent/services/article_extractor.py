"""Heuristic title/date/body extraction for arbitrary article HTML.

Each field is recovered by an ordered cascade of CSS selectors, most specific
first. Publishers disagree wildly on markup, so every cascade ends in an
unconditional fallback and `extract_article` never raises: fields that could
not be recovered carry the `NOT_FOUND` placeholder.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, ParserRejectedMarkup, Tag

LOGGER = logging.getLogger("referent.extractor")

NOT_FOUND = "Not found"
MIN_TITLE_CHARS = 10
MIN_CONTENT_CHARS = 100

TITLE_SELECTORS: tuple[str, ...] = (
    "article h1",
    "h1",
    ".post-title",
    ".article-title",
    ".entry-title",
    '[class*="title"]',
    "title",
)

# (selector, read_attribute_only)
DATE_SELECTORS: tuple[tuple[str, bool], ...] = (
    ("time[datetime]", False),
    ("time", False),
    ('[class*="date"]', False),
    ('[class*="published"]', False),
    ('[class*="time"]', False),
    ('meta[property="article:published_time"]', True),
    ('meta[name="date"]', True),
    ('meta[name="publish-date"]', True),
)

CONTENT_SELECTORS: tuple[str, ...] = (
    "article",
    ".post",
    ".content",
    ".article-content",
    ".entry-content",
    ".post-content",
    '[class*="article"]',
    '[class*="content"]',
    "main",
)

NOISE_SELECTOR = "script, style, nav, header, footer, aside, .ad, .advertisement"

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ParsedArticle:
    title: str
    date: str
    content: str

    @property
    def has_content(self) -> bool:
        stripped = self.content.strip()
        return bool(stripped) and stripped != NOT_FOUND

    def as_payload(self) -> dict[str, str]:
        return {"title": self.title, "date": self.date, "content": self.content}


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_article(html: str | bytes) -> ParsedArticle:
    try:
        soup = BeautifulSoup(html, "html.parser")
    except ParserRejectedMarkup as exc:
        LOGGER.info("article markup rejected by parser error=%s", exc)
        return ParsedArticle(title=NOT_FOUND, date=NOT_FOUND, content=NOT_FOUND)
    title = _extract_title(soup)
    date = _extract_date(soup)
    content = normalize_whitespace(_extract_content(soup))
    LOGGER.debug(
        "article extracted title_found=%s date_found=%s content_chars=%s",
        bool(title),
        bool(date),
        len(content),
    )
    return ParsedArticle(
        title=title or NOT_FOUND,
        date=date or NOT_FOUND,
        content=content or NOT_FOUND,
    )


def _extract_title(soup: BeautifulSoup) -> str:
    for selector in TITLE_SELECTORS:
        found = soup.select_one(selector)
        if found is None:
            continue
        text = found.get_text().strip()
        if len(text) >= MIN_TITLE_CHARS:
            return text

    # Short titles are still better than nothing.
    document_title = soup.find("title")
    if document_title is None:
        return ""
    return document_title.get_text().strip()


def _extract_date(soup: BeautifulSoup) -> str:
    for selector, attribute_only in DATE_SELECTORS:
        found = soup.select_one(selector)
        if found is None:
            continue
        if attribute_only:
            value = _attribute_text(found, "content")
        else:
            value = _attribute_text(found, "datetime") or found.get_text().strip()
        if value:
            return value
    return ""


def _extract_content(soup: BeautifulSoup) -> str:
    for selector in CONTENT_SELECTORS:
        found = soup.select_one(selector)
        if found is None:
            continue
        text = _text_without_noise(found)
        if len(text) > MIN_CONTENT_CHARS:
            return text

    body = soup.body if soup.body is not None else soup
    return _text_without_noise(body)


def _text_without_noise(element: Tag) -> str:
    working_copy = copy.copy(element)
    for noise in working_copy.select(NOISE_SELECTOR):
        # extract() rather than decompose(): nested matches stay valid.
        noise.extract()
    return working_copy.get_text().strip()


def _attribute_text(element: Tag, name: str) -> str:
    value = element.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if not isinstance(value, str):
        return ""
    return value.strip()
