"""Breadth-first walker over blog listing pages.

Used when discovery could not find a sitemap, feed or map result. Each
listing page is fetched as HTML through the reader client; post links and
pagination links are pulled out of it. The walk stops when ``max_pages``
pages were fetched, when ``max_posts`` new posts were found, or after two
consecutive pages that produced no new posts.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from src.utils.date_extraction import DateExtractor
from src.utils.discovery_outcomes import DiscoveredUrl
from src.utils.url_classifier import (
    detect_content_section,
    detect_language_from_url,
    extract_date_from_url,
    is_excluded_listing_link,
)

from . import ReaderError
from .reader_client import ReaderResult
from .utils import canonicalize_url, get_domain, resolve_url

logger = logging.getLogger(__name__)

POST_LINK_SELECTORS = (
    "article a[href]",
    ".blog-post a[href]",
    ".post a[href]",
    'a[href*="/blog/"]',
    'a[href*="/post/"]',
    'a[href*="/article/"]',
    ".entry-title a[href]",
    "h2 a[href]",
    "h3 a[href]",
    ".card a[href]",
    '[class*="blog"] a[href]',
    '[class*="post"] a[href]',
)

PAGINATION_CONTAINERS = (
    ".pagination a[href]",
    ".nav-links a[href]",
    ".pager a[href]",
    ".page-numbers[href]",
    ".wp-pagenavi a[href]",
    'nav[aria-label*="agination"] a[href]',
)

NEXT_TEXT = re.compile(
    r"^\s*(next|older|older posts|older entries|next page|more posts|load more|[›»→]|next\s*[›»→])\s*$",
    re.IGNORECASE,
)

MIN_TITLE_CHARS = 10
MAX_EMPTY_PAGES = 2

# Speculative next-page URL patterns, in probing order
PAGE_PATTERNS = ("query_page", "path_page", "query_paged")

_PATH_PAGE = re.compile(r"/page/(\d+)/?$", re.IGNORECASE)


class ListingFetcher(Protocol):
    def fetch(self, url: str, format: str = "markdown") -> ReaderResult: ...


def parse_page_number(url: str) -> tuple[str | None, int]:
    """Return ``(pattern, page)`` parsed from ``url``; ``(None, 1)`` when absent."""
    parsed = urlparse(url)
    for key, value in parse_qsl(parsed.query):
        if key == "page" and value.isdigit():
            return "query_page", int(value)
        if key == "paged" and value.isdigit():
            return "query_paged", int(value)
    match = _PATH_PAGE.search(parsed.path)
    if match:
        return "path_page", int(match.group(1))
    return None, 1


def build_page_url(url: str, pattern: str, page: int) -> str:
    """Build the URL for ``page`` of the listing at ``url`` using ``pattern``."""
    parsed = urlparse(url)
    path = _PATH_PAGE.sub("", parsed.path) or "/"
    query = [(key, value) for key, value in parse_qsl(parsed.query) if key not in ("page", "paged")]

    if pattern == "path_page":
        path = f"{path.rstrip('/')}/page/{page}/"
    elif pattern == "query_page":
        query.append(("page", str(page)))
    elif pattern == "query_paged":
        query.append(("paged", str(page)))
    else:
        raise ValueError(f"Unknown pagination pattern: {pattern}")
    return urlunparse((parsed.scheme, parsed.netloc, path, "", urlencode(query), ""))


class PaginationWalker:
    """Walk listing pages breadth-first and collect post URLs."""

    def __init__(
        self,
        client: ListingFetcher,
        date_extractor: DateExtractor | None = None,
        use_renderer: bool = True,
    ):
        self.client = client
        self.dates = date_extractor or DateExtractor()
        self.use_renderer = use_renderer
        self.working_pattern: str | None = None
        self.pages_fetched = 0

    def walk(self, start_url: str, max_pages: int = 50, max_posts: int | None = None) -> list[DiscoveredUrl]:
        start_url = canonicalize_url(start_url)
        queue: deque[str] = deque([start_url])
        queued: set[str] = {start_url}
        visited: set[str] = set()
        seen_posts: set[str] = set()
        posts: list[DiscoveredUrl] = []
        # speculative URL -> (pattern, page it was derived from, page number)
        guesses: dict[str, tuple[str, str, int]] = {}
        tried_patterns: dict[str, set[str]] = {}
        empty_pages = 0
        self.working_pattern = None
        self.pages_fetched = 0
        if max_posts is not None and max_posts <= 0:
            return posts

        while queue and self.pages_fetched < max_pages:
            page_url = queue.popleft()
            if page_url in visited:
                continue
            visited.add(page_url)
            self.pages_fetched += 1

            soup = self._load(page_url, first=self.pages_fetched == 1)
            new_posts = 0
            next_links: list[str] = []
            if soup is not None:
                for candidate in self.extract_post_links(soup, page_url, start_url):
                    if candidate.url in seen_posts or candidate.url in visited:
                        continue
                    seen_posts.add(candidate.url)
                    posts.append(candidate)
                    new_posts += 1
                    if max_posts is not None and len(posts) >= max_posts:
                        logger.info("Reached max_posts=%d while walking %s", max_posts, start_url)
                        return posts
                next_links = self.extract_pagination_links(soup, page_url)

            logger.debug("Listing page %s yielded %d new posts", page_url, new_posts)

            guess = guesses.pop(page_url, None)
            if guess is not None:
                pattern, origin, origin_page = guess
                if new_posts:
                    self.working_pattern = pattern
                elif self._queue_guess(origin, origin_page, visited, queued, guesses, tried_patterns, queue):
                    # An unsupported URL pattern is not evidence of the end
                    continue

            if new_posts:
                empty_pages = 0
            else:
                empty_pages += 1
                if empty_pages >= MAX_EMPTY_PAGES:
                    logger.info(
                        "Stopping walk of %s after %d consecutive pages without new posts",
                        start_url,
                        empty_pages,
                    )
                    break

            fresh = [link for link in next_links if link not in visited and link not in queued]
            for link in fresh:
                queued.add(link)
                queue.append(link)

            if not next_links and new_posts and not queue:
                _, current_page = parse_page_number(page_url)
                self._queue_guess(page_url, current_page, visited, queued, guesses, tried_patterns, queue)

        logger.info(
            "Walked %d listing pages from %s and found %d posts",
            self.pages_fetched,
            start_url,
            len(posts),
        )
        return posts

    def _queue_guess(
        self,
        origin: str,
        origin_page: int,
        visited: set[str],
        queued: set[str],
        guesses: dict[str, tuple[str, str, int]],
        tried_patterns: dict[str, set[str]],
        queue: deque[str],
    ) -> bool:
        """Queue a speculative next-page URL derived from ``origin``.

        The page number comes from the URL itself. A pattern already present
        in the URL or one that worked before is used directly; otherwise the
        untried patterns are tried in order.
        """
        url_pattern, _ = parse_page_number(origin)
        tried = tried_patterns.setdefault(origin, set())
        if url_pattern or self.working_pattern:
            options = [url_pattern or self.working_pattern]
        else:
            options = list(PAGE_PATTERNS)

        for pattern in options:
            if pattern in tried:
                continue
            tried.add(pattern)
            candidate = canonicalize_url(build_page_url(origin, pattern, origin_page + 1))
            if candidate in visited or candidate in queued:
                continue
            guesses[candidate] = (pattern, origin, origin_page)
            queued.add(candidate)
            queue.append(candidate)
            logger.debug("Speculative next page for %s: %s", origin, candidate)
            return True
        return False

    def _load(self, page_url: str, first: bool = False) -> BeautifulSoup | None:
        try:
            result = self.client.fetch(page_url, format="html")
        except ReaderError as exc:
            logger.warning("Failed to fetch listing page %s: %s", page_url, exc.message)
            return None
        soup = BeautifulSoup(result.content or "", "html.parser")

        render = getattr(self.client, "render", None)
        if (
            first
            and self.use_renderer
            and callable(render)
            and getattr(self.client, "renderer", None) is not None
            and not soup.select("a[href]")
        ):
            logger.info("Listing %s has no links; rendering it headlessly", page_url)
            try:
                rendered = render(page_url, format="html")
            except ReaderError as exc:
                logger.warning("Headless render of %s failed: %s", page_url, exc.message)
            else:
                soup = BeautifulSoup(rendered.content or "", "html.parser")
        return soup

    def extract_post_links(self, soup: BeautifulSoup, page_url: str, start_url: str) -> list[DiscoveredUrl]:
        """Post candidates on a listing page, in selector then document order."""
        found: dict[str, DiscoveredUrl] = {}
        for selector in POST_LINK_SELECTORS:
            for anchor in soup.select(selector):
                href = anchor.get("href")
                absolute = resolve_url(page_url, href) if isinstance(href, str) else None
                if not absolute or is_excluded_listing_link(absolute, start_url):
                    continue
                url = canonicalize_url(absolute)
                if url in found:
                    continue
                title = self._link_title(anchor)
                if not title or len(title) < MIN_TITLE_CHARS:
                    continue
                found[url] = DiscoveredUrl(
                    url=url,
                    title=title,
                    published_date=self._listing_date(anchor, url),
                    content_section=detect_content_section(url),
                    language=detect_language_from_url(url),
                )
        return list(found.values())

    @staticmethod
    def _container(anchor: Tag) -> Tag | None:
        return anchor.find_parent(["article"]) or anchor.find_parent(
            class_=re.compile(r"\b(post|blog-post|card)\b")
        )

    def _link_title(self, anchor: Tag) -> str:
        title = " ".join(anchor.get_text(" ", strip=True).split())
        if len(title) >= MIN_TITLE_CHARS:
            return title
        container = self._container(anchor)
        if container is not None:
            heading = container.select_one("h1, h2, h3, .title, .entry-title")
            if heading is not None:
                text = " ".join(heading.get_text(" ", strip=True).split())
                if text:
                    return text
        return title

    def _listing_date(self, anchor: Tag, url: str) -> str | None:
        container = self._container(anchor)
        if container is not None:
            time_tag = container.find("time")
            if time_tag is not None:
                value = time_tag.get("datetime") or time_tag.get_text(" ", strip=True)
                normalized = self.dates.normalize(value)
                if normalized:
                    return normalized
        return self.dates.normalize(extract_date_from_url(url))

    def extract_pagination_links(self, soup: BeautifulSoup, page_url: str) -> list[str]:
        """Explicit next-page links, ``rel=next`` first."""
        domain = get_domain(page_url)
        _, current_page = parse_page_number(page_url)
        links: list[str] = []

        def add(href: str | None) -> None:
            absolute = resolve_url(page_url, href) if isinstance(href, str) else None
            if not absolute or get_domain(absolute) != domain:
                return
            url = canonicalize_url(absolute)
            if url == canonicalize_url(page_url) or url in links:
                return
            pattern, number = parse_page_number(url)
            if pattern is not None and number <= current_page:
                return
            links.append(url)

        for element in soup.select('link[rel~="next"], a[rel~="next"]'):
            add(element.get("href"))
        for selector in PAGINATION_CONTAINERS:
            for anchor in soup.select(selector):
                add(anchor.get("href"))
        for anchor in soup.find_all("a", href=True):
            text = anchor.get_text(" ", strip=True)
            if text and NEXT_TEXT.match(text):
                add(anchor["href"])
                continue
            href = anchor["href"]
            absolute = resolve_url(page_url, href)
            if absolute and parse_page_number(absolute)[0] is not None:
                add(href)
        return links
