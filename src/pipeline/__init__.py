"""Blog import pipeline: discover, check duplicates, validate, scrape.

``BlogImportPipeline`` wires the crawler components together behind the
three calls a caller needs. Each call runs to completion; results of an
earlier phase are plain values the caller passes to the next one.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Sequence

from src.crawler import ReaderError
from src.crawler.discovery import DiscoveryChain
from src.crawler.pagination import PaginationWalker
from src.crawler.reader_client import ResilientReaderClient, build_reader_client
from src.utils.date_extraction import DateExtractor
from src.utils.discovery_outcomes import DiscoveredUrl, DiscoveryResult, DuplicateCheckResult
from src.utils.page_validator import PageValidator, validate_candidates
from src.utils.url_classifier import filter_by_language

from .duplicates import FingerprintStore, InMemoryFingerprintStore, check_for_duplicates
from .scrape import ProgressCallback, ScrapedPost, ScrapeOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 50


def _as_date(value: date | str | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def filter_by_date_range(
    urls: Sequence[DiscoveredUrl],
    date_from: date | str | None = None,
    date_to: date | str | None = None,
) -> list[DiscoveredUrl]:
    """Keep URLs dated inside ``[date_from, date_to]``; undated URLs are kept."""
    start, end = _as_date(date_from), _as_date(date_to)
    if start is None and end is None:
        return list(urls)

    kept = []
    for item in urls:
        if not item.published_date:
            kept.append(item)
            continue
        try:
            published = date.fromisoformat(item.published_date[:10])
        except ValueError:
            kept.append(item)
            continue
        if start is not None and published < start:
            continue
        if end is not None and published > end:
            continue
        kept.append(item)
    return kept


class BlogImportPipeline:
    def __init__(
        self,
        reader_client: ResilientReaderClient | None = None,
        store: FingerprintStore | None = None,
        discovery_chain: DiscoveryChain | None = None,
        walker: PaginationWalker | None = None,
        validator: PageValidator | None = None,
        date_extractor: DateExtractor | None = None,
    ):
        self.reader_client = reader_client or build_reader_client()
        self.store = store or InMemoryFingerprintStore()
        self.dates = date_extractor or DateExtractor()
        self.discovery_chain = discovery_chain or DiscoveryChain(
            reader_client=self.reader_client,
            direct_fetcher=self.reader_client.direct_fetcher,
            date_extractor=self.dates,
        )
        self.walker = walker or PaginationWalker(self.reader_client, date_extractor=self.dates)
        self.validator = validator or PageValidator(self.dates)
        self.scraper = ScrapeOrchestrator(self.reader_client, date_extractor=self.dates)

    def discover(
        self,
        url: str,
        max_urls: int = 100,
        max_posts: int | None = None,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        language: str | None = None,
        validate: bool = False,
    ) -> DiscoveryResult:
        """Discover candidate posts under ``url``.

        Falls back to walking listing pages when no discovery strategy
        produced URLs. The optional validation pass fetches each candidate
        and drops pages that are clearly not posts.
        """
        result = self.discovery_chain.discover(url, max_urls=max_urls, language_filter=language)

        if result.fallback_required:
            credits_before = self.reader_client.credits_used
            try:
                walked = self.walker.walk(
                    url,
                    max_pages=DEFAULT_MAX_PAGES,
                    max_posts=max_urls if max_posts is None else max_posts,
                )
            except ReaderError as exc:
                logger.warning("Listing walk of %s failed: %s", url, exc.message)
                result.errors["crawl"] = exc.message
                walked = []
            result.credits_used += self.reader_client.credits_used - credits_before
            walked = filter_by_language(walked, language)
            result.urls = walked[:max_urls]
            result.content_sections = sorted({item.content_section for item in result.urls if item.content_section})
            result.detected_languages = sorted({item.language for item in result.urls if item.language})
            result.fallback_required = not result.urls

        urls = filter_by_date_range(result.urls, date_from, date_to)
        if len(urls) != len(result.urls):
            logger.info("Date range kept %d of %d URLs", len(urls), len(result.urls))

        if validate and urls:
            urls = validate_candidates(
                urls,
                self._fetch_html,
                max_workers=self.discovery_chain.max_workers,
                validator=self.validator,
            )

        if max_posts is not None:
            urls = urls[:max_posts]
        result.urls = urls
        return result

    def _fetch_html(self, url: str) -> str:
        if self.reader_client.configured_providers:
            return self.reader_client.fetch(url, format="html").content
        return self.discovery_chain.fetcher.get(url).text

    def check_duplicates(self, urls: Sequence[DiscoveredUrl | str], scope: str) -> DuplicateCheckResult:
        return check_for_duplicates(urls, scope, self.store)

    def scrape_selected(
        self,
        urls: Sequence[DiscoveredUrl | str],
        on_progress: ProgressCallback | None = None,
    ) -> list[ScrapedPost]:
        return self.scraper.scrape_selected(urls, on_progress)


__all__ = [
    "BlogImportPipeline",
    "filter_by_date_range",
]
