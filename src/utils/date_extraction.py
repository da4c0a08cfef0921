"""Publish-date resolution for discovered and extracted pages.

Candidates are tried in a fixed order and the first one that parses to a
plausible date wins:

1. the listing date (sitemap ``<lastmod>``, feed entry) or an HTML meta tag,
2. a JSON-LD ``datePublished``,
3. a visible date near the top of the text,
4. a date embedded in the URL path.

A plausible date is not in the future and not earlier than ``MIN_YEAR``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Iterable, Iterator

from bs4 import BeautifulSoup
from dateutil import tz
from dateutil.parser import ParserError
from dateutil.parser import parse as _dateutil_parse

from src.utils.url_classifier import extract_date_from_url

logger = logging.getLogger(__name__)

MIN_YEAR = 1995

# Define common US timezone abbreviations to avoid UnknownTimezoneWarning
_TZINFOS = {
    "CST": tz.gettz("America/Chicago"),
    "CDT": tz.gettz("America/Chicago"),
    "EST": tz.gettz("America/New_York"),
    "EDT": tz.gettz("America/New_York"),
    "MST": tz.gettz("America/Denver"),
    "MDT": tz.gettz("America/Denver"),
    "PST": tz.gettz("America/Los_Angeles"),
    "PDT": tz.gettz("America/Los_Angeles"),
}

META_DATE_KEYS = (
    "article:published_time",
    "og:article:published_time",
    "og:published_time",
    "datepublished",
    "publishdate",
    "pubdate",
    "publish-date",
    "date",
    "dc.date",
    "dc.date.issued",
    "dcterms.created",
    "parsely-pub-date",
    "sailthru.date",
    "article.published",
)

# Reader metadata keys, most specific first
METADATA_DATE_FIELDS = (
    "publishedTime",
    "published_time",
    "article:published_time",
    "og:article:published_time",
    "datePublished",
    "date",
    "pubDate",
    "publishDate",
    "created",
    "createdAt",
    "modifiedTime",
    "article:modified_time",
)

_MONTHS = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?"

TEXT_DATE_PATTERNS = [
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTHS},?\s+\d{{4}}\b", re.IGNORECASE),
    re.compile(rf"\b{_MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b", re.IGNORECASE),
    re.compile(r"\b\d{4}[-/]\d{1,2}[-/]\d{1,2}\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
]

# How much leading text is searched for a visible date
TEXT_SCAN_CHARS = 2000


def parse_date(date_string: str, **kwargs) -> datetime:
    """Wrapper around dateutil.parser.parse with US timezone mappings."""
    kwargs.setdefault("tzinfos", _TZINFOS)
    return _dateutil_parse(date_string, **kwargs)


def json_ld_objects(soup: BeautifulSoup) -> Iterator[dict[str, Any]]:
    """Yield every JSON object found in the page's JSON-LD blocks.

    ``@graph`` arrays, nested objects and lists are walked recursively.
    Malformed blocks are skipped.
    """
    for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.IGNORECASE)}):
        raw = script.string or script.get_text() or ""
        if not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except (ValueError, TypeError):
            logger.debug("Skipping malformed JSON-LD block")
            continue
        yield from _walk_json(data)


def _walk_json(node: Any) -> Iterator[dict[str, Any]]:
    if isinstance(node, list):
        for item in node:
            yield from _walk_json(item)
    elif isinstance(node, dict):
        yield node
        for value in node.values():
            if isinstance(value, (dict, list)):
                yield from _walk_json(value)


class DateExtractor:
    """Resolve a publish date from HTML or from extracted content."""

    def __init__(self, today: Callable[[], date] | None = None, min_year: int = MIN_YEAR):
        self._today = today or date.today
        self.min_year = min_year

    def normalize(self, value: Any) -> str | None:
        """Return ``value`` as ISO ``YYYY-MM-DD`` if it is a plausible date."""
        if value is None:
            return None
        if isinstance(value, datetime):
            parsed = value.date()
        elif isinstance(value, date):
            parsed = value
        elif isinstance(value, str):
            text = value.strip()
            # Bare years and fragments would be completed from today's date
            if len(text) < 6 or not re.search(r"\d{4}", text):
                return None
            try:
                parsed = parse_date(text).date()
            except (ParserError, ValueError, OverflowError, TypeError):
                return None
        else:
            return None

        if parsed.year < self.min_year or parsed > self._today():
            return None
        return parsed.isoformat()

    def first_valid(self, candidates: Iterable[Any]) -> str | None:
        for candidate in candidates:
            normalized = self.normalize(candidate)
            if normalized:
                return normalized
        return None

    def extract_from_html(
        self,
        html: str | BeautifulSoup,
        url: str,
        listing_date: Any = None,
    ) -> str | None:
        """Resolve the publish date of an HTML page."""
        soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html or "", "html.parser")
        return self.first_valid(
            self._iter_html_candidates(soup, url, listing_date)
        )

    def _iter_html_candidates(self, soup: BeautifulSoup, url: str, listing_date: Any) -> Iterator[Any]:
        yield listing_date
        yield from meta_dates(soup)
        for obj in json_ld_objects(soup):
            yield obj.get("datePublished")
            yield obj.get("dateCreated")
        body = soup.body or soup
        yield from text_dates(body.get_text(" ", strip=True)[:TEXT_SCAN_CHARS])
        yield extract_date_from_url(url)

    def extract_from_content(
        self,
        content: str,
        url: str,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Resolve the publish date of extracted markdown/text content."""

        def candidates() -> Iterator[Any]:
            if metadata:
                for key in METADATA_DATE_FIELDS:
                    yield metadata.get(key)
            yield from text_dates((content or "")[:TEXT_SCAN_CHARS])
            yield extract_date_from_url(url)

        return self.first_valid(candidates())


def meta_dates(soup: BeautifulSoup) -> Iterator[str]:
    """Yield meta-tag and ``<time>`` date values in document order of preference."""
    found: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        key = (meta.get("property") or meta.get("name") or meta.get("itemprop") or "").strip().lower()
        content = meta.get("content")
        if key in META_DATE_KEYS and content and key not in found:
            found[key] = content
    for key in META_DATE_KEYS:
        if key in found:
            yield found[key]
    for time_tag in soup.find_all("time"):
        value = time_tag.get("datetime") or time_tag.get_text(" ", strip=True)
        if value:
            yield value


def has_date_signal(soup: BeautifulSoup) -> bool:
    """True when the page carries an explicit date meta tag or ``<time>`` element."""
    return next(meta_dates(soup), None) is not None


def text_dates(text: str) -> Iterator[str]:
    """Yield date-looking substrings of ``text`` in pattern order."""
    if not text:
        return
    for pattern in TEXT_DATE_PATTERNS:
        for match in pattern.finditer(text):
            yield match.group(0)
