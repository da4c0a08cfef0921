"""Full-content extraction for a user-confirmed list of post URLs.

URLs are processed one at a time so the provider rate limits are the only
pacing in play. A failure on one URL is recorded on its entry and never
aborts the batch; the output always has one entry per input URL, in order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Sequence

from src.crawler import ConfigurationError, ContentUnavailable, ReaderError
from src.crawler.reader_client import ResilientReaderClient
from src.crawler.utils import derive_title_from_slug
from src.utils.content_cleaner import ContentCleaner
from src.utils.date_extraction import DateExtractor
from src.utils.discovery_outcomes import DiscoveredUrl

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_FIRST_HEADING = re.compile(r"^\s{0,3}#\s+(.+?)\s*#*\s*$", re.MULTILINE)


@dataclass
class ScrapedPost:
    url: str
    title: str
    content: str
    published_date: str | None
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeSummary:
    """Counts for one scrape batch, plus the per-URL errors."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    credits_used: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_posts(cls, posts: Sequence[ScrapedPost], credits_used: int = 0) -> "ScrapeSummary":
        return cls(
            total=len(posts),
            succeeded=sum(1 for post in posts if post.success),
            failed=sum(1 for post in posts if not post.success),
            credits_used=credits_used,
            errors={post.url: post.error or "" for post in posts if not post.success},
        )


def _split_item(item: DiscoveredUrl | str) -> tuple[str, str | None, str | None]:
    if isinstance(item, DiscoveredUrl):
        return item.url, item.title, item.published_date
    return item, None, None


class ScrapeOrchestrator:
    """Fetch, clean and date each selected URL through the reader client."""

    def __init__(
        self,
        reader_client: ResilientReaderClient,
        cleaner: ContentCleaner | None = None,
        date_extractor: DateExtractor | None = None,
    ):
        self.reader_client = reader_client
        self.cleaner = cleaner or ContentCleaner()
        self.dates = date_extractor or DateExtractor()
        self.last_summary: ScrapeSummary | None = None

    def scrape_single_url(self, item: DiscoveredUrl | str) -> ScrapedPost:
        """Scrape one URL; errors propagate to the caller."""
        url, known_title, known_date = _split_item(item)
        result = self.reader_client.fetch(url, format="markdown")
        content = self.cleaner.clean(result.content)
        if not content.strip():
            raise ContentUnavailable(f"No readable content left after cleaning {url}")

        heading = _FIRST_HEADING.search(content)
        title = (
            result.title
            or (heading.group(1).strip() if heading else None)
            or known_title
            or derive_title_from_slug(url)
        )
        published = self.dates.normalize(known_date) or self.dates.extract_from_content(
            content, url, result.metadata
        )
        return ScrapedPost(
            url=url,
            title=title,
            content=content,
            published_date=published,
            success=True,
        )

    def scrape_selected(
        self,
        urls: Sequence[DiscoveredUrl | str],
        on_progress: ProgressCallback | None = None,
    ) -> list[ScrapedPost]:
        """Scrape ``urls`` sequentially; one entry per input, in input order."""
        if hasattr(self.reader_client, "configured_providers") and not self.reader_client.configured_providers:
            raise ConfigurationError(
                "No reader API key configured; set JINA_API_KEY or FIRECRAWL_API_KEY"
            )

        credits_before = getattr(self.reader_client, "credits_used", 0)
        total = len(urls)
        posts: list[ScrapedPost] = []

        for index, item in enumerate(urls):
            if on_progress is not None:
                on_progress(index + 1, total)
            url, known_title, known_date = _split_item(item)
            try:
                post = self.scrape_single_url(item)
            except ReaderError as exc:
                logger.warning("Failed to scrape %s: %s", url, exc.message)
                post = self._failed(url, known_title, known_date, exc.message or type(exc).__name__)
            except Exception as exc:
                logger.exception("Unexpected error scraping %s", url)
                post = self._failed(url, known_title, known_date, str(exc) or type(exc).__name__)
            posts.append(post)

        credits_used = getattr(self.reader_client, "credits_used", 0) - credits_before
        self.last_summary = ScrapeSummary.from_posts(posts, credits_used)
        logger.info(
            "Scraped %d URLs: %d succeeded, %d failed, %d credits used",
            self.last_summary.total,
            self.last_summary.succeeded,
            self.last_summary.failed,
            credits_used,
        )
        return posts

    @staticmethod
    def _failed(url: str, title: str | None, published: str | None, error: str) -> ScrapedPost:
        return ScrapedPost(
            url=url,
            title=title or derive_title_from_slug(url),
            content="",
            published_date=published,
            success=False,
            error=error,
        )


def scrape_selected(
    urls: Sequence[DiscoveredUrl | str],
    reader_client: ResilientReaderClient,
    on_progress: ProgressCallback | None = None,
) -> list[ScrapedPost]:
    return ScrapeOrchestrator(reader_client).scrape_selected(urls, on_progress)


def scrape_single_url(url: str, reader_client: ResilientReaderClient) -> ScrapedPost:
    return ScrapeOrchestrator(reader_client).scrape_single_url(url)
