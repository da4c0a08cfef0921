"""Heuristics for deciding whether a fetched page is a genuine post.

The decision is deliberately recall-biased: structured data that names an
article type always wins, structured data that names a non-article type
only rejects thin pages, and everything else is accepted on any weak signal.
Pages that cannot be fetched or parsed are kept (fail-open).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Sequence

from bs4 import BeautifulSoup, Comment, Doctype

from src.config import DISCOVERY_MAX_WORKERS
from src.crawler.utils import path_segments

from .date_extraction import DateExtractor, has_date_signal, json_ld_objects
from .discovery_outcomes import DiscoveredUrl

logger = logging.getLogger(__name__)

ARTICLE_TYPES = frozenset(
    ["blogposting", "newsarticle", "article", "report", "techarticle"]
)

NON_ARTICLE_TYPES = frozenset(
    [
        "product",
        "service",
        "organization",
        "webpage",
        "collectionpage",
        "faqpage",
        "itemlist",
        "contactpage",
        "aboutpage",
        "searchresultspage",
        "website",
        "softwareapplication",
        "event",
        "place",
        "localbusiness",
    ]
)

MIN_ARTICLE_WORDS = 100
MIN_H1_CHARS = 5

# Elements that never count toward main-content word count
NON_CONTENT_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form", "template"]


@dataclass(frozen=True)
class PageValidation:
    """Structured result describing one validated page."""

    is_article: bool
    schema_types: frozenset[str]
    published_date: str | None
    title: str | None
    word_count: int
    reason: str

    def apply_to(self, candidate: DiscoveredUrl) -> DiscoveredUrl:
        """Return a copy of ``candidate`` enriched with what the page revealed."""
        return candidate.with_updates(
            title=self.title or candidate.title,
            published_date=self.published_date or candidate.published_date,
        )


class PageValidator:
    """Classify fetched HTML as article or non-article."""

    def __init__(self, date_extractor: DateExtractor | None = None, min_words: int = MIN_ARTICLE_WORDS):
        self.date_extractor = date_extractor or DateExtractor()
        self.min_words = min_words

    def validate(self, url: str, html: str, listing_date: str | None = None) -> PageValidation:
        soup = BeautifulSoup(html or "", "html.parser")

        schema_types = collect_schema_types(soup)
        title = extract_title(soup)
        published_date = self.date_extractor.extract_from_html(soup, url, listing_date)
        has_date = has_date_signal(soup)
        word_count = main_content_word_count(soup)

        def result(is_article: bool, reason: str) -> PageValidation:
            return PageValidation(
                is_article=is_article,
                schema_types=schema_types,
                published_date=published_date,
                title=title,
                word_count=word_count,
                reason=reason,
            )

        article_types = schema_types & ARTICLE_TYPES
        if article_types:
            return result(True, f"schema:{sorted(article_types)[0]}")

        non_article_types = schema_types & NON_ARTICLE_TYPES
        if non_article_types and word_count < self.min_words:
            return result(False, f"schema:{sorted(non_article_types)[0]} with {word_count} words")

        if has_date:
            return result(True, "date_signal")
        if word_count >= self.min_words:
            return result(True, f"word_count:{word_count}")
        segments = path_segments(url)
        if segments and "-" in segments[-1]:
            return result(True, "slug")
        return result(False, f"no article signal ({word_count} words)")


def collect_schema_types(soup: BeautifulSoup) -> frozenset[str]:
    """Lowercase ``@type`` values from every JSON-LD object on the page."""
    types: set[str] = set()
    for obj in json_ld_objects(soup):
        value = obj.get("@type")
        if isinstance(value, str):
            values = [value]
        elif isinstance(value, list):
            values = [item for item in value if isinstance(item, str)]
        else:
            continue
        for item in values:
            # "http://schema.org/BlogPosting" and "schema:BlogPosting" forms
            name = item.rsplit("/", 1)[-1].rsplit(":", 1)[-1].strip().lower()
            if name:
                types.add(name)
    return frozenset(types)


def extract_title(soup: BeautifulSoup) -> str | None:
    """``og:title`` > ``twitter:title`` > first ``<h1>`` (5+ chars) > ``<title>``."""
    for attrs in ({"property": "og:title"}, {"name": "twitter:title"}, {"property": "twitter:title"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and (meta.get("content") or "").strip():
            return meta["content"].strip()

    h1 = soup.find("h1")
    if h1:
        text = h1.get_text(" ", strip=True)
        if len(text) >= MIN_H1_CHARS:
            return text

    if soup.title and soup.title.string and soup.title.string.strip():
        return soup.title.string.strip()
    return None


def main_content_word_count(soup: BeautifulSoup) -> int:
    """Word count of the page's main content (``article``/``main``/body)."""
    root = soup.find("article") or soup.find("main") or soup.body or soup
    texts = []
    for element in root.find_all(string=True):
        if isinstance(element, (Comment, Doctype)):
            continue
        if element.find_parent(NON_CONTENT_TAGS):
            continue
        texts.append(str(element))
    return len(" ".join(texts).split())


def validate_candidates(
    candidates: Sequence[DiscoveredUrl],
    fetch_html: Callable[[str], str],
    max_workers: int = DISCOVERY_MAX_WORKERS,
    validator: PageValidator | None = None,
) -> list[DiscoveredUrl]:
    """Validate ``candidates`` through a bounded pool, keeping input order.

    Rejected pages are dropped. Pages that fail to fetch or parse are kept
    unchanged. Accepted pages come back enriched with title and date.
    """
    validator = validator or PageValidator()

    def check(candidate: DiscoveredUrl) -> DiscoveredUrl | None:
        try:
            html = fetch_html(candidate.url)
            validation = validator.validate(candidate.url, html, candidate.published_date)
        except Exception as exc:
            logger.warning("Validation failed for %s, keeping candidate: %s", candidate.url, exc)
            return candidate
        if not validation.is_article:
            logger.debug("Rejected %s: %s", candidate.url, validation.reason)
            return None
        return validation.apply_to(candidate)

    if not candidates:
        return []

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        results = list(executor.map(check, candidates))

    kept = [item for item in results if item is not None]
    logger.info("Validation kept %d of %d candidates", len(kept), len(candidates))
    return kept
