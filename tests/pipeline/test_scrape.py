from __future__ import annotations

from datetime import date

import pytest

from src.crawler import ConfigurationError, ContentUnavailable, NotFoundError, RateLimited
from src.crawler.reader_client import ReaderResult
from src.pipeline.scrape import ScrapedPost, ScrapeOrchestrator, ScrapeSummary, scrape_selected, scrape_single_url
from src.utils.date_extraction import DateExtractor
from src.utils.discovery_outcomes import DiscoveredUrl

ARTICLE = """Skip to content

# Lessons from a year of on-call rotations

Published 12 January 2023

The first paragraph of the post.

The second paragraph of the post.
"""


class FakeReaderClient:
    def __init__(self, pages=None, errors=None, providers=("jina",)):
        self.pages = pages or {}
        self.errors = errors or {}
        self.configured_providers = list(providers)
        self.credits_used = 0
        self.calls = []

    def fetch(self, url, format="markdown"):
        self.calls.append((url, format))
        if url in self.errors:
            raise self.errors[url]
        self.credits_used += 1
        content, metadata = self.pages.get(url, (ARTICLE, {}))
        return ReaderResult(content=content, metadata=metadata, url=url, provider="jina", credits_used=1)


def orchestrator(client):
    return ScrapeOrchestrator(client, date_extractor=DateExtractor(today=lambda: date(2025, 1, 1)))


def post_urls(count):
    return [f"https://example.com/blog/post-{n}" for n in range(1, count + 1)]


class TestScrapeSingleUrl:
    def test_cleans_content_and_resolves_title_and_date(self):
        client = FakeReaderClient()

        post = orchestrator(client).scrape_single_url("https://example.com/blog/post-1")

        assert post.success is True
        assert post.title == "Lessons from a year of on-call rotations"
        assert post.published_date == "2023-01-12"
        assert post.content.startswith("# Lessons from a year")
        assert "Skip to content" not in post.content
        assert client.calls == [("https://example.com/blog/post-1", "markdown")]

    def test_metadata_title_and_date_win(self):
        url = "https://example.com/blog/post-1"
        client = FakeReaderClient({url: (ARTICLE, {"title": "Reader title", "publishedTime": "2024-02-02T00:00:00Z"})})

        post = orchestrator(client).scrape_single_url(url)

        assert post.title == "Reader title"
        assert post.published_date == "2024-02-02"

    def test_discovered_date_and_title_used_as_fallbacks(self):
        url = "https://example.com/blog/post-1"
        client = FakeReaderClient({url: ("Just a paragraph without any heading.", {})})
        item = DiscoveredUrl(url=url, title="Listing title", published_date="2022-08-08")

        post = orchestrator(client).scrape_single_url(item)

        assert post.title == "Listing title"
        assert post.published_date == "2022-08-08"

    def test_slug_title_as_last_resort(self):
        url = "https://example.com/blog/why-we-moved-to-postgres"
        client = FakeReaderClient({url: ("Just a paragraph without any heading.", {})})

        post = orchestrator(client).scrape_single_url(url)

        assert post.title == "Why We Moved To Postgres"
        assert post.published_date is None

    def test_empty_content_raises(self):
        url = "https://example.com/blog/post-1"
        client = FakeReaderClient({url: ("Skip to content\n\nShare on Facebook Twitter LinkedIn", {})})

        with pytest.raises(ContentUnavailable):
            orchestrator(client).scrape_single_url(url)

    def test_module_level_wrapper(self):
        post = scrape_single_url("https://example.com/blog/post-1", FakeReaderClient())

        assert isinstance(post, ScrapedPost)
        assert post.success


class TestScrapeSelected:
    def test_failure_is_isolated_and_order_kept(self):
        urls = post_urls(5)
        client = FakeReaderClient(errors={urls[2]: NotFoundError(f"{urls[2]} returned HTTP 404", status_code=404)})
        progress = []
        scraper = orchestrator(client)

        posts = scraper.scrape_selected(urls, on_progress=lambda done, total: progress.append((done, total)))

        assert [post.url for post in posts] == urls
        assert [post.success for post in posts] == [True, True, False, True, True]
        assert posts[2].error
        assert posts[2].content == ""
        assert progress == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]

        summary = scraper.last_summary
        assert (summary.total, summary.succeeded, summary.failed) == (5, 4, 1)
        assert summary.credits_used == 4
        assert set(summary.errors) == {urls[2]}

    def test_unexpected_exception_is_recorded(self):
        urls = post_urls(2)
        client = FakeReaderClient(errors={urls[0]: RuntimeError("boom")})

        posts = orchestrator(client).scrape_selected(urls)

        assert posts[0].success is False
        assert posts[0].error == "boom"
        assert posts[1].success is True

    def test_rate_limit_error_keeps_known_metadata(self):
        url = "https://example.com/blog/post-1"
        client = FakeReaderClient(errors={url: RateLimited("Rate limited", retry_after=30)})
        item = DiscoveredUrl(url=url, title="Known title", published_date="2024-01-01")

        (post,) = orchestrator(client).scrape_selected([item])

        assert post.success is False
        assert post.title == "Known title"
        assert post.published_date == "2024-01-01"
        assert post.error == "Rate limited"

    def test_no_configured_provider_fails_fast(self):
        client = FakeReaderClient(providers=())

        with pytest.raises(ConfigurationError):
            orchestrator(client).scrape_selected(post_urls(2))

        assert client.calls == []

    def test_empty_batch(self):
        scraper = orchestrator(FakeReaderClient())

        assert scraper.scrape_selected([]) == []
        assert scraper.last_summary.total == 0

    def test_module_level_wrapper(self):
        posts = scrape_selected(post_urls(2), FakeReaderClient())

        assert [post.success for post in posts] == [True, True]


def test_summary_from_posts():
    posts = [
        ScrapedPost(url="https://example.com/a", title="A", content="x", published_date=None, success=True),
        ScrapedPost(url="https://example.com/b", title="B", content="", published_date=None, success=False, error="gone"),
    ]

    summary = ScrapeSummary.from_posts(posts, credits_used=3)

    assert summary == ScrapeSummary(total=2, succeeded=1, failed=1, credits_used=3, errors={"https://example.com/b": "gone"})
