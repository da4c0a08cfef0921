from __future__ import annotations

from datetime import date
from types import SimpleNamespace

import pytest

from src.crawler import NotFoundError, ServiceUnavailable
from src.crawler.reader_client import DirectFetcher
from src.crawler.discovery import (
    MAX_CHILD_SITEMAPS,
    DiscoveryChain,
    feed_candidates,
    is_post_like,
    parse_sitemap,
    sitemap_candidates,
    validate_discovered_urls,
)
from src.utils.date_extraction import DateExtractor
from src.utils.discovery_outcomes import DiscoveredUrl


class FakeFetcher:
    """``DirectFetcher`` stand-in serving fixed documents; everything else 404s."""

    def __init__(self, documents=None, errors=None):
        self.documents = documents or {}
        self.errors = errors or {}
        self.requested = []

    def get(self, url, *, timeout=None, accept=None, track_failures=True):
        self.requested.append(url)
        if url in self.errors:
            raise self.errors[url]
        if url not in self.documents:
            raise NotFoundError(f"{url} returned HTTP 404", status_code=404)
        return SimpleNamespace(status_code=200, text=self.documents[url])


class BlockingSession:
    """Transport that answers 403 to everything except the listed documents."""

    def __init__(self, response_factory, documents):
        self.response_factory = response_factory
        self.documents = documents
        self.requested = []

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        self.requested.append(url)
        if url in self.documents:
            return self.response_factory(200, text=self.documents[url])
        return self.response_factory(403)


class FakeMapClient:
    def __init__(self, links, credits_per_call=1):
        self.links = links
        self.credits_per_call = credits_per_call
        self.credits_used = 0
        self.mapper = object()
        self.calls = []

    def map_urls(self, url, **kwargs):
        self.calls.append((url, kwargs))
        self.credits_used += self.credits_per_call
        return list(self.links)


def urlset(*locs, lastmod=None):
    entries = "".join(
        f"<url><loc>{loc}</loc>{f'<lastmod>{lastmod}</lastmod>' if lastmod else ''}</url>"
        for loc in locs
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    )


def sitemap_index(*locs):
    entries = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    )


RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Example</title>
{items}
</channel></rss>"""

RSS_ITEM = """<item><title>{title}</title><link>{link}</link>
<pubDate>Mon, 04 Mar 2024 10:00:00 GMT</pubDate></item>"""


def rss(*links):
    items = "".join(RSS_ITEM.format(title=f"Post {index}", link=link) for index, link in enumerate(links))
    return RSS.format(items=items)


def make_chain(fetcher, reader_client=None):
    return DiscoveryChain(
        reader_client=reader_client,
        direct_fetcher=fetcher,
        max_workers=2,
        date_extractor=DateExtractor(today=lambda: date(2025, 1, 1)),
    )


class TestCandidates:
    def test_section_specific_sitemaps_come_first(self):
        candidates = sitemap_candidates("https://example.com/blog")

        assert candidates[0] == "https://example.com/sitemap-blog.xml"
        assert "https://example.com/sitemap.xml" in candidates
        assert len(candidates) == len(set(candidates))

    def test_feed_candidates_for_site_root(self):
        candidates = feed_candidates("example.com")

        assert candidates[0] == "https://example.com/feed"
        assert len(candidates) == len(set(candidates))


class TestParseSitemap:
    def test_urlset_with_lastmod(self):
        kind, entries = parse_sitemap(urlset("https://example.com/a", lastmod="2024-01-02"))

        assert kind == "urlset"
        assert entries == [("https://example.com/a", "2024-01-02")]

    def test_index(self):
        kind, entries = parse_sitemap(sitemap_index("https://example.com/post-sitemap.xml"))

        assert kind == "index"
        assert entries == [("https://example.com/post-sitemap.xml", None)]

    def test_malformed_xml_is_scanned_leniently(self):
        broken = "<urlset><url><loc>https://example.com/a & b</loc><lastmod>2024-02-03</lastmod></url>"

        kind, entries = parse_sitemap(broken)

        assert kind == "urlset"
        assert entries == [("https://example.com/a & b", "2024-02-03")]


class TestValidateDiscoveredUrls:
    def test_drops_shallow_urls_and_orders_target_section_first(self):
        items = [
            DiscoveredUrl(url="https://example.com/news/launch-of-the-new-thing", title="a", content_section="news"),
            DiscoveredUrl(url="https://example.com/about", title="b"),
            DiscoveredUrl(url="https://example.com/blog/another-great-post", title="c", content_section="blog"),
        ]

        valid = validate_discovered_urls(items, "https://example.com/blog")

        assert [item.title for item in valid] == ["c", "a"]

    def test_is_post_like(self):
        assert is_post_like(DiscoveredUrl(url="https://example.com/blog/a-long-slug-here", title="x"))
        assert is_post_like(DiscoveredUrl(url="https://example.com/2024/01/15/x", title="x"))
        assert not is_post_like(DiscoveredUrl(url="https://example.com/blog/short", title="x"))


class TestDiscoveryChain:
    def test_sitemap_keeps_only_slugged_posts(self):
        posts = [f"https://example.com/blog/my-article-title-slug-{n}" for n in (1, 2, 3)]
        fetcher = FakeFetcher(
            {
                "https://example.com/sitemap.xml": urlset(
                    *posts,
                    "https://example.com/category/news",
                    "https://example.com/category/resources",
                )
            }
        )

        result = make_chain(fetcher).discover("https://example.com/blog")

        assert [item.url for item in result.urls] == posts
        assert result.method == "sitemap"
        assert result.fallback_required is False
        assert result.credits_used == 0
        assert result.content_sections == ["blog"]
        assert result.urls[0].title == "My Article Title Slug 1"

    def test_blocked_candidate_paths_do_not_suppress_domain(self, response_factory):
        posts = [f"https://example.com/blog/my-article-title-slug-{n}" for n in range(6)]
        session = BlockingSession(response_factory, {"https://example.com/post-sitemap.xml": urlset(*posts)})
        fetcher = DirectFetcher(session, failure_threshold=3)

        result = make_chain(fetcher).discover("https://example.com/blog")

        assert result.method == "sitemap"
        assert [item.url for item in result.urls] == posts
        assert "https://example.com/post-sitemap.xml" in session.requested
        assert fetcher.is_suppressed("https://example.com/blog") is False
        assert fetcher.domain_failures == {}

    def test_sitemap_index_follows_bounded_children(self):
        children = [f"https://example.com/sitemap-{n}.xml" for n in range(MAX_CHILD_SITEMAPS + 3)]
        documents = {"https://example.com/sitemap.xml": sitemap_index(*children)}
        for n, child in enumerate(children):
            documents[child] = urlset(
                *(f"https://example.com/blog/post-number-{n}-{i}-title" for i in range(2))
            )
        fetcher = FakeFetcher(documents)

        urls = make_chain(fetcher).discover_from_sitemap("https://example.com")

        assert len(urls) == MAX_CHILD_SITEMAPS * 2
        assert children[-1] not in fetcher.requested

    def test_sitemap_lastmod_becomes_published_date(self):
        fetcher = FakeFetcher(
            {
                "https://example.com/sitemap.xml": urlset(
                    "https://example.com/blog/dated-article-title", lastmod="2024-06-01T08:00:00+00:00"
                )
            }
        )

        urls = make_chain(fetcher).discover_from_sitemap("https://example.com/blog")

        assert urls[0].published_date == "2024-06-01"

    def test_rss_used_when_no_sitemap(self):
        links = [f"https://example.com/blog/feed-post-title-{n}" for n in range(6)]
        fetcher = FakeFetcher({"https://example.com/blog/feed": rss(*links)})

        result = make_chain(fetcher).discover("https://example.com/blog")

        assert result.method == "rss"
        assert [item.url for item in result.urls] == links
        assert result.urls[0].title == "Post 0"
        assert result.urls[0].published_date == "2024-03-04"

    def test_rss_second_opinion_beats_thin_sitemap(self):
        sitemap_posts = [f"https://example.com/blog/sitemap-post-title-{n}" for n in range(2)]
        feed_posts = [f"https://example.com/blog/feed-post-title-{n}" for n in range(4)]
        fetcher = FakeFetcher(
            {
                "https://example.com/sitemap.xml": urlset(*sitemap_posts),
                "https://example.com/feed": rss(*feed_posts),
            }
        )

        result = make_chain(fetcher).discover("https://example.com/")

        assert result.method == "rss"
        assert len(result.urls) == 4

    def test_map_used_after_free_strategies_and_counts_credits(self):
        client = FakeMapClient(
            [
                "https://example.com/blog/mapped-post-title-one",
                "https://example.com/tag/news",
                "https://example.com/",
            ]
        )

        result = make_chain(FakeFetcher(), reader_client=client).discover("https://example.com", max_urls=10)

        assert result.method == "map"
        assert [item.url for item in result.urls] == ["https://example.com/blog/mapped-post-title-one"]
        assert result.credits_used == 1
        assert client.calls[0][1] == {"limit": 20}

    def test_paid_strategy_skipped_without_mapper(self):
        client = FakeMapClient([])
        client.mapper = None

        result = make_chain(FakeFetcher(), reader_client=client).discover("https://example.com")

        assert client.calls == []
        assert result.method == "crawl"
        assert result.fallback_required is True

    def test_strategy_errors_are_isolated(self):
        client = FakeMapClient([])

        def failing_map(url, **kwargs):
            raise ServiceUnavailable("map down")

        client.map_urls = failing_map

        result = make_chain(FakeFetcher(), reader_client=client).discover("https://example.com")

        assert result.fallback_required is True
        assert result.errors == {"map": "map down"}

    def test_max_urls_truncates(self):
        posts = [f"https://example.com/blog/truncated-post-title-{n}" for n in range(8)]
        fetcher = FakeFetcher({"https://example.com/sitemap.xml": urlset(*posts)})

        result = make_chain(fetcher).discover("https://example.com/blog", max_urls=5)

        assert [item.url for item in result.urls] == posts[:5]

    def test_language_filter_applies_to_results(self):
        posts = [
            "https://example.com/de/blog/deutscher-artikel-titel",
            "https://example.com/fr/blog/article-en-francais",
            "https://example.com/blog/neutral-post-title",
        ] + [f"https://example.com/de/blog/weiterer-artikel-{n}" for n in range(4)]
        fetcher = FakeFetcher({"https://example.com/sitemap.xml": urlset(*posts)})

        result = make_chain(fetcher).discover("https://example.com", language_filter="german")

        urls = [item.url for item in result.urls]
        assert "https://example.com/fr/blog/article-en-francais" not in urls
        assert "https://example.com/blog/neutral-post-title" in urls
        assert result.detected_languages == ["de"]

    @pytest.mark.parametrize("bad", ["https://example.com/blog", "https://example.com/blog/page/2"])
    def test_listing_urls_never_emitted(self, bad):
        fetcher = FakeFetcher(
            {"https://example.com/sitemap.xml": urlset(bad, "https://example.com/blog/real-post-title-here")}
        )

        urls = make_chain(fetcher).discover_from_sitemap("https://example.com")

        assert [item.url for item in urls] == ["https://example.com/blog/real-post-title-here"]
