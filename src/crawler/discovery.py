"""Cost-ordered URL discovery for a blog or content section.

The chain tries free strategies first and only then spends reader credits:

1. ``sitemap``: section-specific and common sitemap locations, following
   sitemap indexes to a bounded number of child sitemaps.
2. ``rss``: section-specific and common RSS/Atom feed locations, parsed
   with feedparser.
3. ``map``: the Firecrawl map endpoint (1 credit).

When every strategy comes back empty the result asks the caller to fall
back to walking the listing pages (``fallback_required``).
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

import feedparser  # type: ignore[import]

from src.config import DISCOVERY_MAX_WORKERS, DISCOVERY_TIMEOUT
from src.utils.date_extraction import DateExtractor
from src.utils.discovery_outcomes import DiscoveredUrl, DiscoveryResult
from src.utils.url_classifier import (
    detect_content_section,
    detect_language_from_url,
    extract_date_from_url,
    filter_by_language,
    is_candidate_post_url,
    is_excluded_url,
)

from . import NotFoundError, ReaderError
from .reader_client import DirectFetcher, ResilientReaderClient
from .utils import canonicalize_url, derive_title_from_slug, normalize_url, path_segments, site_root

logger = logging.getLogger(__name__)

MAX_CHILD_SITEMAPS = 10
SITEMAP_URL_LIMIT = 100
RSS_URL_LIMIT = 50
# Below this many sitemap URLs the RSS feed is consulted as a second opinion
MIN_SITEMAP_URLS = 5

SITEMAP_ACCEPT = "application/xml, text/xml;q=0.9, */*;q=0.8"
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"

_LOC_PATTERN = re.compile(r"<loc>\s*(?:<!\[CDATA\[)?\s*(.*?)\s*(?:\]\]>)?\s*</loc>", re.IGNORECASE | re.DOTALL)
_LASTMOD_PATTERN = re.compile(r"<lastmod>\s*(.*?)\s*</lastmod>", re.IGNORECASE | re.DOTALL)
_URL_BLOCK_PATTERN = re.compile(r"<url>(.*?)</url>", re.IGNORECASE | re.DOTALL)

StrategyFn = Callable[[str, int], list[DiscoveredUrl]]


def sitemap_candidates(blog_url: str) -> list[str]:
    """Sitemap locations to try, section-specific ones first."""
    base = site_root(blog_url)
    candidates: list[str] = []
    segments = path_segments(normalize_url(blog_url))
    if segments:
        section = segments[0].lower()
        candidates.extend(
            [
                f"{base}/sitemap-{section}.xml",
                f"{base}/{section}/sitemap.xml",
                f"{base}/sitemap_{section}.xml",
                f"{base}/wp-sitemap-posts-{section}-1.xml",
            ]
        )
    candidates.extend(
        [
            f"{base}/sitemap.xml",
            f"{base}/sitemap_index.xml",
            f"{base}/sitemap-index.xml",
            f"{base}/wp-sitemap.xml",
            f"{base}/wp-sitemap-posts-post-1.xml",
            f"{base}/wp-sitemap-posts-page-1.xml",
            f"{base}/post-sitemap.xml",
            f"{base}/page-sitemap.xml",
            f"{base}/sitemap-blog.xml",
            f"{base}/sitemap-posts.xml",
            f"{base}/sitemap-pages.xml",
            f"{base}/news-sitemap.xml",
            f"{base}/articles-sitemap.xml",
        ]
    )
    return list(dict.fromkeys(candidates))


def feed_candidates(blog_url: str) -> list[str]:
    """RSS/Atom locations to try, section-specific ones first."""
    base = site_root(blog_url)
    blog_url = normalize_url(blog_url).rstrip("/")
    candidates: list[str] = []
    segments = path_segments(blog_url)
    if segments:
        section = segments[0].lower()
        candidates.extend(
            [
                f"{base}/{section}/feed",
                f"{base}/{section}/rss",
                f"{base}/{section}/feed.xml",
                f"{base}/{section}/rss.xml",
                f"{base}/feed/{section}",
                f"{base}/rss/{section}",
            ]
        )
    candidates.extend(
        [
            f"{base}/feed",
            f"{base}/rss",
            f"{base}/rss.xml",
            f"{base}/feed.xml",
            f"{base}/atom.xml",
            f"{base}/index.xml",
            f"{base}/blog/feed",
            f"{base}/blog/rss",
            f"{base}/blog/feed.xml",
            f"{base}/news/feed",
            f"{base}/articles/feed",
            f"{blog_url}/feed",
            f"{blog_url}/rss",
        ]
    )
    return list(dict.fromkeys(candidates))


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def parse_sitemap(xml: str) -> tuple[str, list[tuple[str, str | None]]]:
    """Parse a sitemap document.

    Returns ``("index", [(child_url, lastmod), ...])`` for a sitemap index
    and ``("urlset", [(loc, lastmod), ...])`` otherwise. Documents that are
    not well-formed XML are scanned for ``<loc>`` entries instead.
    """
    try:
        root = ET.fromstring(xml.strip().encode("utf-8"))
    except (ET.ParseError, ValueError):
        return _parse_sitemap_leniently(xml)

    kind = "index" if _local_name(root.tag) == "sitemapindex" else "urlset"
    entries: list[tuple[str, str | None]] = []
    for child in root:
        if _local_name(child.tag) not in ("url", "sitemap"):
            continue
        loc = None
        lastmod = None
        for field in child:
            name = _local_name(field.tag)
            if name == "loc" and field.text:
                loc = field.text.strip()
            elif name == "lastmod" and field.text:
                lastmod = field.text.strip()
        if loc:
            entries.append((loc, lastmod))
    return kind, entries


def _parse_sitemap_leniently(xml: str) -> tuple[str, list[tuple[str, str | None]]]:
    kind = "index" if "<sitemapindex" in xml.lower() else "urlset"
    entries: list[tuple[str, str | None]] = []
    blocks = _URL_BLOCK_PATTERN.findall(xml) if kind == "urlset" else []
    if blocks:
        for block in blocks:
            loc = _LOC_PATTERN.search(block)
            if not loc:
                continue
            lastmod = _LASTMOD_PATTERN.search(block)
            entries.append((loc.group(1).strip(), lastmod.group(1).strip() if lastmod else None))
    else:
        entries = [(loc.strip(), None) for loc in _LOC_PATTERN.findall(xml)]
    return kind, entries


def _struct_time_to_datetime(value: Any) -> datetime | None:
    """Convert a feedparser published_parsed/updated_parsed to datetime safely."""
    try:
        if not value:
            return None
        year, month, day, hour, minute, second = list(value)[:6]
        return datetime(year, month, day, hour, minute, second)
    except (TypeError, ValueError):
        return None


def _entry_link(entry: Mapping[str, Any]) -> str:
    link = entry.get("link")
    if link:
        return str(link).strip()
    for candidate in entry.get("links") or []:
        href = candidate.get("href")
        if href and candidate.get("rel", "alternate") == "alternate":
            return str(href).strip()
    entry_id = str(entry.get("id") or "")
    return entry_id if entry_id.startswith("http") else ""


def _entry_title(entry: Mapping[str, Any]) -> str:
    title = entry.get("title")
    if isinstance(title, list):
        return " ".join(str(part) for part in title if part).strip()
    return str(title or "").strip()


def is_post_like(item: DiscoveredUrl) -> bool:
    segments = path_segments(item.url)
    if not segments:
        return False
    last = segments[-1]
    return ("-" in last and len(last) > 10) or extract_date_from_url(item.url) is not None


def validate_discovered_urls(urls: Iterable[DiscoveredUrl], provided_url: str) -> list[DiscoveredUrl]:
    """Drop items that cannot be single posts and put the target section first."""
    valid = []
    for item in urls:
        segments = path_segments(item.url)
        if not segments:
            continue
        last = segments[-1]
        has_slug = "-" in last and len(last) > 10
        has_depth = len(segments) >= 2 and len(last) > 5
        has_section = bool(item.content_section) and len(segments) >= 2
        if has_slug or has_depth or has_section:
            valid.append(item)

    target_section = detect_content_section(normalize_url(provided_url))
    if target_section:
        # sorted() is stable, so discovery order is kept within each group
        valid = sorted(valid, key=lambda item: item.content_section != target_section)
    return valid


class DiscoveryChain:
    """Run the discovery strategies in cost order.

    ``strategies`` is a plain list of ``(name, callable, credit_cost)``
    tuples; tests and callers may reorder or replace it.
    """

    def __init__(
        self,
        reader_client: ResilientReaderClient | None = None,
        direct_fetcher: DirectFetcher | None = None,
        max_workers: int = DISCOVERY_MAX_WORKERS,
        timeout: float = DISCOVERY_TIMEOUT,
        date_extractor: DateExtractor | None = None,
    ):
        self.reader_client = reader_client
        self.fetcher = direct_fetcher or DirectFetcher(timeout=timeout)
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.dates = date_extractor or DateExtractor()
        self.strategies: list[tuple[str, StrategyFn, int]] = [
            ("sitemap", self.discover_from_sitemap, 0),
            ("rss", self.discover_from_rss, 0),
            ("map", self.discover_from_map, 1),
        ]

    def discover(
        self,
        base_url: str,
        max_urls: int = 100,
        language_filter: str | None = None,
        include_undetected_language: bool = True,
    ) -> DiscoveryResult:
        """Discover up to ``max_urls`` candidate post URLs under ``base_url``."""
        base_url = normalize_url(base_url)
        result = DiscoveryResult()

        for name, strategy, credit_cost in self.strategies:
            if credit_cost and not self._paid_strategies_available():
                logger.info("Skipping paid discovery strategy %s: no reader credentials", name)
                continue
            credits_before = self._credits_used()
            urls = self._run_strategy(name, strategy, base_url, max_urls, result)
            result.credits_used += self._credits_used() - credits_before
            if urls is None:
                continue
            urls = self._refine(urls, base_url, language_filter, include_undetected_language)

            if name == "sitemap" and urls and self._needs_second_opinion(urls):
                rss_urls = self._run_strategy("rss", self.discover_from_rss, base_url, max_urls, result)
                if rss_urls:
                    rss_urls = self._refine(rss_urls, base_url, language_filter, include_undetected_language)
                    if len(rss_urls) > len(urls):
                        logger.info(
                            "RSS second opinion beat sitemap for %s (%d vs %d URLs)",
                            base_url,
                            len(rss_urls),
                            len(urls),
                        )
                        urls, name = rss_urls, "rss"

            if urls:
                return self._finish(result, urls[:max_urls], name, base_url)
            logger.info("Discovery strategy %s found no usable URLs for %s", name, base_url)

        result.method = "crawl"
        result.fallback_required = True
        logger.info("All discovery strategies failed for %s; listing walk required", base_url)
        return result

    def _run_strategy(
        self,
        name: str,
        strategy: StrategyFn,
        base_url: str,
        max_urls: int,
        result: DiscoveryResult,
    ) -> list[DiscoveredUrl] | None:
        try:
            return strategy(base_url, max_urls)
        except ReaderError as exc:
            logger.warning("Discovery strategy %s failed for %s: %s", name, base_url, exc.message)
            result.errors[name] = exc.message
        except Exception as exc:
            logger.warning("Discovery strategy %s crashed for %s: %s", name, base_url, exc)
            result.errors[name] = str(exc)
        return None

    def _refine(
        self,
        urls: list[DiscoveredUrl],
        base_url: str,
        language_filter: str | None,
        include_undetected_language: bool,
    ) -> list[DiscoveredUrl]:
        urls = validate_discovered_urls(urls, base_url)
        return filter_by_language(urls, language_filter, include_undetected_language)

    def _paid_strategies_available(self) -> bool:
        return self.reader_client is not None and self.reader_client.mapper is not None

    def _credits_used(self) -> int:
        return self.reader_client.credits_used if self.reader_client is not None else 0

    @staticmethod
    def _needs_second_opinion(urls: list[DiscoveredUrl]) -> bool:
        return len(urls) < MIN_SITEMAP_URLS or not any(is_post_like(item) for item in urls)

    def _finish(
        self,
        result: DiscoveryResult,
        urls: list[DiscoveredUrl],
        method: str,
        base_url: str,
    ) -> DiscoveryResult:
        result.urls = urls
        result.method = method
        result.fallback_required = False
        result.content_sections = sorted({item.content_section for item in urls if item.content_section})
        result.detected_languages = sorted({item.language for item in urls if item.language})
        logger.info(
            "Discovered %d URLs for %s via %s (sections=%s, languages=%s)",
            len(urls),
            base_url,
            method,
            result.content_sections,
            result.detected_languages,
        )
        return result

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _fetch_document(self, url: str, accept: str) -> str | None:
        try:
            response = self.fetcher.get(url, timeout=self.timeout, accept=accept, track_failures=False)
        except NotFoundError:
            logger.debug("Not found: %s", url)
            return None
        except ReaderError as exc:
            logger.debug("Could not fetch %s: %s", url, exc.message)
            return None
        return response.text

    def _fetch_in_order(
        self,
        urls: list[str],
        accept: str,
        stop: Callable[[], bool] = lambda: False,
    ) -> Iterable[tuple[str, str]]:
        """Fetch ``urls`` in worker-sized batches, yielding bodies in input order."""
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for start in range(0, len(urls), self.max_workers):
                if stop():
                    return
                batch = urls[start : start + self.max_workers]
                bodies = list(executor.map(lambda url: self._fetch_document(url, accept), batch))
                for url, body in zip(batch, bodies):
                    if body:
                        yield url, body

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def discover_from_sitemap(self, base_url: str, max_urls: int = SITEMAP_URL_LIMIT) -> list[DiscoveredUrl]:
        found: dict[str, DiscoveredUrl] = {}
        processed: set[str] = set()

        def full() -> bool:
            return len(found) >= SITEMAP_URL_LIMIT

        for sitemap_url, xml in self._fetch_in_order(sitemap_candidates(base_url), SITEMAP_ACCEPT, full):
            if sitemap_url in processed:
                continue
            processed.add(sitemap_url)
            kind, entries = parse_sitemap(xml)

            if kind == "index":
                children = [loc for loc, _ in entries if loc not in processed][:MAX_CHILD_SITEMAPS]
                logger.debug("Sitemap index %s references %d sitemaps", sitemap_url, len(entries))
                for child_url, child_xml in self._fetch_in_order(children, SITEMAP_ACCEPT, full):
                    processed.add(child_url)
                    child_kind, child_entries = parse_sitemap(child_xml)
                    if child_kind == "urlset":
                        self._collect_sitemap_entries(child_entries, found)
            else:
                self._collect_sitemap_entries(entries, found)

            if full():
                break

        logger.info("Sitemap discovery found %d URLs for %s", len(found), base_url)
        return list(found.values())

    def _collect_sitemap_entries(
        self,
        entries: list[tuple[str, str | None]],
        found: dict[str, DiscoveredUrl],
    ) -> None:
        for loc, lastmod in entries:
            if len(found) >= SITEMAP_URL_LIMIT:
                return
            url = canonicalize_url(loc)
            if url in found or not is_candidate_post_url(url):
                continue
            found[url] = self._discovered(url, None, lastmod)

    def discover_from_rss(self, base_url: str, max_urls: int = RSS_URL_LIMIT) -> list[DiscoveredUrl]:
        found: dict[str, DiscoveredUrl] = {}

        def full() -> bool:
            return len(found) >= RSS_URL_LIMIT

        for feed_url, body in self._fetch_in_order(feed_candidates(base_url), FEED_ACCEPT, full):
            parsed = feedparser.parse(body)
            entries = parsed.get("entries") or []
            if not entries:
                if parsed.get("bozo"):
                    logger.debug("Feed %s could not be parsed: %s", feed_url, parsed.get("bozo_exception"))
                continue
            before = len(found)
            for entry in entries:
                if full():
                    break
                link = _entry_link(entry)
                if not link.startswith(("http://", "https://")):
                    continue
                url = canonicalize_url(link)
                if url in found or is_excluded_url(url):
                    continue
                published = _struct_time_to_datetime(
                    entry.get("published_parsed") or entry.get("updated_parsed")
                ) or entry.get("published") or entry.get("updated")
                found[url] = self._discovered(url, _entry_title(entry), published)
            logger.debug("Feed %s contributed %d URLs", feed_url, len(found) - before)
            if full():
                break

        logger.info("RSS discovery found %d URLs for %s", len(found), base_url)
        return list(found.values())

    def discover_from_map(self, base_url: str, max_urls: int = 100) -> list[DiscoveredUrl]:
        if self.reader_client is None or self.reader_client.mapper is None:
            logger.info("Skipping map discovery for %s: no map-capable provider configured", base_url)
            return []

        links = self.reader_client.map_urls(base_url, limit=max_urls * 2)
        found: dict[str, DiscoveredUrl] = {}
        for link in links:
            url = canonicalize_url(link)
            if url in found or not is_candidate_post_url(url):
                continue
            found[url] = self._discovered(url, None, None)
        logger.info("Map discovery kept %d of %d URLs for %s", len(found), len(links), base_url)
        return list(found.values())

    def _discovered(self, url: str, title: str | None, listing_date: Any) -> DiscoveredUrl:
        published = self.dates.normalize(listing_date) or self.dates.normalize(extract_date_from_url(url))
        return DiscoveredUrl(
            url=url,
            title=title or derive_title_from_slug(url),
            published_date=published,
            content_section=detect_content_section(url),
            language=detect_language_from_url(url),
        )
