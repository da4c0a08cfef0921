"""Resilient access to paid "reader" APIs and to websites directly.

A reader provider turns a URL into rendered markdown or HTML. Each provider
client owns its own rate limiter, circuit breaker and credit tracker, so two
clients never share state. :class:`ResilientReaderClient` composes the
configured providers with the unauthenticated :class:`DirectFetcher` and the
optional out-of-process :class:`HeadlessRenderer`.

Call path for one ``fetch``::

    breaker check -> rate limiter (FIFO) -> HTTP call -> retry/backoff
        -> next provider -> direct fetch fallback
"""

from __future__ import annotations

import json
import logging
import random
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from fnmatch import fnmatch
from typing import Any, Callable, Iterable, Sequence
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from src.config import (
    CRAWL_TIMEOUT,
    DISCOVERY_TIMEOUT,
    PAGE_FETCH_TIMEOUT,
    READER_TIMEOUT,
    ReaderSettings,
    load_reader_settings,
)

from . import (
    CircuitOpenError,
    ConfigurationError,
    ContentUnavailable,
    CreditLimitExceeded,
    NetworkError,
    NotFoundError,
    RateLimited,
    ReaderError,
    ReaderTimeout,
    ServiceUnavailable,
)
from .rate_limiting import CircuitBreaker, CreditTracker, RateLimiter
from .utils import get_domain, mask_api_key

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("markdown", "html")

# Jina returns a plain-text header block ahead of the markdown body
READER_HEADER_FIELDS = {
    "title": "title",
    "url source": "url",
    "published time": "publishedTime",
    "description": "description",
}

# Paths excluded from Firecrawl crawls; listings and archives only
DEFAULT_CRAWL_EXCLUDES = ("/tag/*", "/category/*", "/author/*", "/page/*", "/search/*")
MAX_CRAWL_PAGES = 20

# Markers of an anti-bot challenge page served with a 200 status
CHALLENGE_MARKERS = (
    "checking your browser",
    "just a moment...",
    "attention required! | cloudflare",
    "please verify you are human",
    "px-captcha",
    "geo.captcha-delivery.com",
)


@dataclass
class ReaderResult:
    """Normalized payload returned by every ``fetch`` implementation."""

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    url: str = ""
    provider: str = ""
    credits_used: int = 0

    @property
    def title(self) -> str | None:
        title = self.metadata.get("title") or self.metadata.get("ogTitle")
        return title.strip() if isinstance(title, str) and title.strip() else None


def parse_retry_after(value: str | None) -> float | None:
    """Return the ``Retry-After`` header as seconds (delta or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())


def error_for_status(
    status_code: int,
    message: str,
    *,
    provider: str | None = None,
    retry_after: float | None = None,
) -> ReaderError:
    """Map an HTTP status onto the crawler's error taxonomy."""
    if status_code in (404, 410):
        return NotFoundError(message, status_code=status_code, provider=provider)
    if status_code == 401:
        return ConfigurationError(
            f"{message} (credentials rejected)", status_code=status_code, provider=provider
        )
    if status_code == 402:
        return CreditLimitExceeded(message, status_code=status_code, provider=provider)
    if status_code == 408:
        return ReaderTimeout(message, status_code=status_code, provider=provider)
    if status_code == 422:
        return ContentUnavailable(message, status_code=status_code, provider=provider)
    if status_code == 429:
        return RateLimited(message, retry_after=retry_after, provider=provider)
    if status_code == 503:
        return ServiceUnavailable(message, provider=provider)
    if status_code >= 500:
        return ReaderError(message, status_code=status_code, provider=provider)
    return ReaderError(message, status_code=status_code, provider=provider, retryable=False)


def parse_reader_header(text: str) -> tuple[dict[str, Any], str]:
    """Split Jina's ``Title:/URL Source:/Markdown Content:`` preamble off ``text``.

    Returns ``(metadata, body)``. Text without the preamble is returned as is.
    """
    metadata: dict[str, Any] = {}
    lines = text.splitlines()
    for index, line in enumerate(lines[:20]):
        stripped = line.strip()
        if stripped.lower().startswith("markdown content:"):
            body = "\n".join(lines[index + 1 :]).strip()
            return metadata, body
        key, sep, value = stripped.partition(":")
        if not sep:
            continue
        mapped = READER_HEADER_FIELDS.get(key.strip().lower())
        if mapped and value.strip():
            metadata[mapped] = value.strip()
    return metadata, text


def html_to_text(html: str) -> tuple[str, str | None]:
    """Reduce an HTML page to paragraph text plus its ``<title>``."""
    soup = BeautifulSoup(html, "html.parser")
    title = None
    if soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    for element in soup(["script", "style", "noscript", "nav", "header", "footer", "aside", "form"]):
        element.decompose()

    root = soup.find("article") or soup.find("main") or soup.body or soup
    blocks: list[str] = []
    for element in root.find_all(["h1", "h2", "h3", "h4", "p", "li", "blockquote"]):
        text = element.get_text(" ", strip=True)
        if not text:
            continue
        if element.name in ("h1", "h2", "h3", "h4"):
            level = int(element.name[1])
            text = f"{'#' * level} {text}"
        blocks.append(text)
    if not blocks:
        fallback = root.get_text("\n", strip=True)
        return fallback, title
    return "\n\n".join(blocks), title


def detect_challenge_page(text: str) -> bool:
    if not text:
        return False
    head = text[:5000].lower()
    return any(marker in head for marker in CHALLENGE_MARKERS)


class ReaderProviderClient:
    """Base class for authenticated reader providers.

    Subclasses implement :meth:`_fetch_once`. This class supplies the
    wrappers shared by every provider: breaker check, FIFO rate limiting,
    retry with backoff, the one-shot proxy-less retry on 422 and credit
    accounting.
    """

    name = "reader"
    credit_cost = 0

    def __init__(
        self,
        api_key: str | None,
        *,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        credit_tracker: CreditTracker | None = None,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        rate_limit_backoff: float = 2.0,
        max_backoff: float = 60.0,
        proxy_country: str | None = None,
        timeout: float = READER_TIMEOUT,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or RateLimiter(name=self.name)
        self.breaker = circuit_breaker or CircuitBreaker(name=self.name)
        self.credits = credit_tracker or CreditTracker(name=self.name)
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self.rate_limit_backoff = rate_limit_backoff
        self.max_backoff = max_backoff
        self.proxy_country = proxy_country
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}(api_key={mask_api_key(self.api_key)!r})"

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def fetch(self, url: str, format: str = "markdown") -> ReaderResult:
        """Fetch ``url`` rendered as ``format`` ("markdown" or "html")."""
        if format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format: {format}")
        return self._call(
            lambda use_proxy: self._fetch_once(url, format, use_proxy),
            operation="fetch",
            target=url,
            credits=self.credit_cost,
        )

    def _fetch_once(self, url: str, format: str, use_proxy: bool) -> ReaderResult:
        raise NotImplementedError

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise ConfigurationError(
                f"{self.name} API key is not configured", provider=self.name
            )

    def _call(
        self,
        attempt: Callable[[bool], ReaderResult],
        *,
        operation: str,
        target: str,
        credits: int = 0,
    ) -> ReaderResult:
        self._require_api_key()
        if credits:
            self.credits.ensure_available(credits)

        if not self.breaker.allow_request():
            raise CircuitOpenError(
                f"{self.name} circuit breaker is open "
                f"({self.breaker.remaining_cooldown():.0f}s remaining)",
                provider=self.name,
            )

        # A half-open trial gets exactly one real attempt
        max_attempts = 1 if self.breaker.is_trial() else self.max_retries + 1
        use_proxy = bool(self.proxy_country)
        proxy_retry_used = False
        attempts = 0

        while True:
            attempts += 1
            try:
                result = self.rate_limiter.run(lambda: attempt(use_proxy))
            except ContentUnavailable as exc:
                if use_proxy and not proxy_retry_used:
                    logger.warning(
                        "%s %s returned 422 for %s via %s proxy; retrying once without proxy",
                        self.name,
                        operation,
                        target,
                        self.proxy_country,
                    )
                    use_proxy = False
                    proxy_retry_used = True
                    attempts -= 1
                    continue
                self._record_outcome(exc)
                raise
            except ReaderError as exc:
                if not exc.retryable or attempts >= max_attempts:
                    self._record_outcome(exc)
                    if exc.retryable:
                        logger.warning(
                            "%s %s failed for %s after %d attempt(s): %s",
                            self.name,
                            operation,
                            target,
                            attempts,
                            exc.message,
                        )
                    raise
                delay = self._backoff_delay(exc, attempts)
                logger.warning(
                    "%s %s failed for %s (%s); retry %d/%d in %.1fs",
                    self.name,
                    operation,
                    target,
                    exc.message,
                    attempts,
                    max_attempts - 1,
                    delay,
                )
                time.sleep(delay)
                continue
            except Exception:
                self.breaker.record_failure()
                raise

            self.breaker.record_success()
            if credits:
                self.credits.record(result.credits_used or credits)
                result.credits_used = result.credits_used or credits
            return result

    def _record_outcome(self, exc: ReaderError) -> None:
        # The provider answered; the target page is what failed
        if isinstance(exc, (NotFoundError, ContentUnavailable)):
            self.breaker.record_success()
        else:
            self.breaker.record_failure()

    def _backoff_delay(self, exc: ReaderError, attempt: int) -> float:
        if isinstance(exc, RateLimited):
            delay = self.rate_limit_backoff * attempt
            if exc.retry_after and exc.retry_after > delay:
                delay = exc.retry_after
        elif isinstance(exc, ServiceUnavailable):
            delay = self.backoff_base * (2 ** (attempt - 1))
        else:
            delay = self.backoff_base * attempt
        return min(delay, self.max_backoff)

    def _send(self, method: str, url: str, *, timeout: float | None = None, **kwargs) -> requests.Response:
        """Issue one HTTP request and translate transport and status errors."""
        timeout = timeout or self.timeout
        try:
            response = self.session.request(method, url, timeout=timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise ReaderTimeout(
                f"{self.name} request timed out after {timeout}s", provider=self.name
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"{self.name} request failed: {exc}", provider=self.name) from exc

        if response.status_code >= 400:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise error_for_status(
                response.status_code,
                f"{self.name} returned HTTP {response.status_code}",
                provider=self.name,
                retry_after=retry_after,
            )
        return response

    def _json(self, response: requests.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ReaderError(
                f"{self.name} returned a non-JSON body", provider=self.name
            ) from exc
        if not isinstance(payload, dict):
            raise ReaderError(f"{self.name} returned an unexpected payload", provider=self.name)
        return payload


class JinaReaderClient(ReaderProviderClient):
    """Client for the Jina reader (``https://r.jina.ai/<url>``)."""

    name = "jina"
    base_url = "https://r.jina.ai/"

    def __init__(self, api_key: str | None, **kwargs):
        kwargs.setdefault("rate_limiter", RateLimiter(min_delay=0.5, name=self.name))
        super().__init__(api_key, **kwargs)
        self.remove_selector = (
            "nav,footer,header,.navigation,.sidebar,.menu,.breadcrumb,.social-share,"
            ".related-posts,.comments,.newsletter,.subscribe,.cookie-banner,.popup,.modal"
        )
        self.target_selector: str | None = None

    def _headers(self, format: str, use_proxy: bool) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "X-Return-Format": format,
            "X-No-Cache": "true",
            "X-Timeout": str(int(self.timeout)),
        }
        if self.remove_selector:
            headers["X-Remove-Selector"] = self.remove_selector
        if self.target_selector:
            headers["X-Target-Selector"] = self.target_selector
        if use_proxy and self.proxy_country:
            headers["X-Proxy"] = self.proxy_country
        return headers

    def _fetch_once(self, url: str, format: str, use_proxy: bool) -> ReaderResult:
        logger.debug("Jina fetch %s (format=%s, proxy=%s)", url, format, use_proxy)
        response = self._send(
            "GET", f"{self.base_url}{url}", headers=self._headers(format, use_proxy)
        )

        content = ""
        metadata: dict[str, Any] = {}
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            data = payload["data"]
            content = data.get("content") or data.get("html") or ""
            metadata = {
                key: value
                for key, value in data.items()
                if key not in ("content", "html") and value not in (None, "")
            }
        else:
            metadata, content = parse_reader_header(response.text or "")

        if len(content.strip()) < 100:
            raise ContentUnavailable(
                f"jina returned insufficient content for {url}", provider=self.name
            )
        return ReaderResult(content=content, metadata=metadata, url=url, provider=self.name)


class FirecrawlClient(ReaderProviderClient):
    """Client for the Firecrawl v1 API: scrape, map and crawl."""

    name = "firecrawl"
    base_url = "https://api.firecrawl.dev/v1"
    credit_cost = 1

    def __init__(
        self,
        api_key: str | None,
        *,
        crawl_timeout: float = CRAWL_TIMEOUT,
        poll_interval: float = 2.0,
        **kwargs,
    ):
        kwargs.setdefault(
            "rate_limiter", RateLimiter(min_delay=1.0, concurrency_cap=2, name=self.name)
        )
        kwargs.setdefault(
            "credit_tracker", CreditTracker(limit=500, warning_threshold=400, name=self.name)
        )
        super().__init__(api_key, **kwargs)
        self.crawl_timeout = crawl_timeout
        self.poll_interval = poll_interval

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _fetch_once(self, url: str, format: str, use_proxy: bool) -> ReaderResult:
        body: dict[str, Any] = {
            "url": url,
            "formats": [format],
            "onlyMainContent": True,
            "waitFor": 2000,
            "timeout": int(self.timeout * 1000),
        }
        if use_proxy and self.proxy_country:
            body["location"] = {"country": self.proxy_country}

        logger.debug("Firecrawl scrape %s (format=%s, proxy=%s)", url, format, use_proxy)
        response = self._send(
            "POST", f"{self.base_url}/scrape", headers=self._headers(), data=json.dumps(body)
        )
        payload = self._json(response)
        if not payload.get("success", True):
            raise ReaderError(
                f"firecrawl scrape failed: {payload.get('error', 'unknown error')}",
                provider=self.name,
            )

        data = payload.get("data") or {}
        content = data.get(format) or ""
        if not content.strip():
            raise ContentUnavailable(f"firecrawl returned no {format} for {url}", provider=self.name)
        metadata = dict(data.get("metadata") or {})
        return ReaderResult(
            content=content,
            metadata=metadata,
            url=url,
            provider=self.name,
            credits_used=self.credit_cost,
        )

    def map_urls(
        self,
        url: str,
        *,
        limit: int = 200,
        search: str | None = None,
        include_paths: Sequence[str] | None = None,
        exclude_paths: Sequence[str] | None = None,
    ) -> list[str]:
        """List URLs Firecrawl knows for a site (1 credit).

        ``include_paths``/``exclude_paths`` are shell-style globs matched
        against the URL path, applied after the call.
        """

        def attempt(_use_proxy: bool) -> ReaderResult:
            body: dict[str, Any] = {"url": url, "limit": limit}
            if search:
                body["search"] = search
            response = self._send(
                "POST", f"{self.base_url}/map", headers=self._headers(), data=json.dumps(body)
            )
            payload = self._json(response)
            if not payload.get("success", True):
                raise ReaderError(
                    f"firecrawl map failed: {payload.get('error', 'unknown error')}",
                    provider=self.name,
                )
            links = [
                link.get("url") if isinstance(link, dict) else link
                for link in payload.get("links") or []
            ]
            return ReaderResult(
                content="",
                metadata={"links": [link for link in links if isinstance(link, str)]},
                url=url,
                provider=self.name,
                credits_used=1,
            )

        result = self._call(attempt, operation="map", target=url, credits=1)
        links = filter_paths(result.metadata["links"], include_paths, exclude_paths)
        logger.info("Firecrawl map returned %d URLs for %s", len(links), url)
        return links

    def crawl(
        self,
        url: str,
        *,
        max_pages: int = MAX_CRAWL_PAGES,
        exclude_paths: Sequence[str] = DEFAULT_CRAWL_EXCLUDES,
        format: str = "markdown",
    ) -> list[ReaderResult]:
        """Crawl up to ``max_pages`` pages under ``url`` (1 credit per page)."""
        max_pages = max(1, min(max_pages, MAX_CRAWL_PAGES))

        def attempt(_use_proxy: bool) -> ReaderResult:
            body = {
                "url": url,
                "limit": max_pages,
                "excludePaths": list(exclude_paths),
                "scrapeOptions": {"formats": [format], "onlyMainContent": True},
            }
            response = self._send(
                "POST", f"{self.base_url}/crawl", headers=self._headers(), data=json.dumps(body)
            )
            payload = self._json(response)
            job_id = payload.get("id")
            if not job_id:
                raise ReaderError("firecrawl crawl did not return a job id", provider=self.name)
            pages = self._poll_crawl(job_id)
            return ReaderResult(
                content="",
                metadata={"pages": pages},
                url=url,
                provider=self.name,
                credits_used=max(1, len(pages)),
            )

        result = self._call(attempt, operation="crawl", target=url, credits=max_pages)
        pages = []
        for page in result.metadata["pages"]:
            page_metadata = dict(page.get("metadata") or {})
            page_url = page_metadata.get("sourceURL") or page_metadata.get("url") or ""
            pages.append(
                ReaderResult(
                    content=page.get(format) or "",
                    metadata=page_metadata,
                    url=page_url,
                    provider=self.name,
                )
            )
        logger.info("Firecrawl crawl of %s returned %d pages", url, len(pages))
        return pages

    def _poll_crawl(self, job_id: str) -> list[dict[str, Any]]:
        deadline = time.monotonic() + self.crawl_timeout
        status_url = f"{self.base_url}/crawl/{job_id}"
        while True:
            response = self._send("GET", status_url, headers=self._headers(), timeout=DISCOVERY_TIMEOUT)
            payload = self._json(response)
            status = payload.get("status")
            if status == "completed":
                return list(payload.get("data") or [])
            if status in ("failed", "cancelled"):
                raise ReaderError(f"firecrawl crawl {job_id} {status}", provider=self.name)
            if time.monotonic() >= deadline:
                raise ReaderTimeout(
                    f"firecrawl crawl {job_id} did not finish within {self.crawl_timeout}s",
                    provider=self.name,
                )
            time.sleep(self.poll_interval)


def filter_paths(
    urls: Iterable[str],
    include_paths: Sequence[str] | None = None,
    exclude_paths: Sequence[str] | None = None,
) -> list[str]:
    """Keep URLs whose path matches any include glob and no exclude glob."""
    kept = []
    for url in urls:
        try:
            path = urlparse(url).path or "/"
        except ValueError:
            continue
        if include_paths and not any(fnmatch(path, pattern) for pattern in include_paths):
            continue
        if exclude_paths and any(fnmatch(path, pattern) for pattern in exclude_paths):
            continue
        kept.append(url)
    return kept


class DirectFetcher:
    """Unauthenticated fetches with browser-like headers.

    Used for sitemaps and feeds during discovery, and as the last-resort
    fallback once reader providers are exhausted. Domains that keep blocking
    us are suppressed after ``failure_threshold`` consecutive failures.
    """

    name = "direct"

    user_agent_pool = [
        (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/129.0.0.0 Safari/537.36"
        ),
        (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/128.0.0.0 Safari/537.36"
        ),
        (
            "Mozilla/5.0 (X11; Linux x86_64; rv:130.0) "
            "Gecko/20100101 Firefox/130.0"
        ),
        (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
            "AppleWebKit/605.1.15 (KHTML, like Gecko) "
            "Version/18.0 Safari/605.1.15"
        ),
    ]

    accept_language_pool = [
        "en-US,en;q=0.9",
        "en-GB,en;q=0.9",
        "en-US,en;q=0.8",
    ]

    accept_html = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: float = PAGE_FETCH_TIMEOUT,
        failure_threshold: int = 3,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.failure_threshold = failure_threshold
        self.domain_failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def browser_headers(self, accept: str | None = None) -> dict[str, str]:
        return {
            "User-Agent": random.choice(self.user_agent_pool),
            "Accept": accept or self.accept_html,
            "Accept-Language": random.choice(self.accept_language_pool),
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }

    def is_suppressed(self, url: str) -> bool:
        domain = get_domain(url)
        with self._lock:
            return self.domain_failures.get(domain, 0) >= self.failure_threshold

    def _record_failure(self, domain: str) -> None:
        with self._lock:
            count = self.domain_failures.get(domain, 0) + 1
            self.domain_failures[domain] = count
        if count == self.failure_threshold:
            logger.warning(
                "Direct fetch suppressed for %s after %d consecutive failures", domain, count
            )

    def _record_success(self, domain: str) -> None:
        with self._lock:
            self.domain_failures.pop(domain, None)

    def get(
        self,
        url: str,
        *,
        timeout: float | None = None,
        accept: str | None = None,
        track_failures: bool = True,
    ) -> requests.Response:
        """GET ``url`` directly, raising taxonomy errors on failure.

        404/410 are reported as :class:`NotFoundError` without counting
        against the domain; blocks, timeouts and server errors do count.
        ``track_failures=False`` is for guessed URLs (sitemap and feed
        candidates): their failures never suppress the domain.
        """
        domain = get_domain(url)
        if self.is_suppressed(url):
            raise ServiceUnavailable(
                f"direct fetch suppressed for {domain}", provider=self.name, retryable=False
            )

        timeout = timeout or self.timeout
        try:
            response = self.session.get(
                url,
                headers=self.browser_headers(accept),
                timeout=timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout as exc:
            if track_failures:
                self._record_failure(domain)
            raise ReaderTimeout(f"direct fetch of {url} timed out after {timeout}s", provider=self.name) from exc
        except requests.exceptions.RequestException as exc:
            if track_failures:
                self._record_failure(domain)
            raise NetworkError(f"direct fetch of {url} failed: {exc}", provider=self.name) from exc

        if response.status_code in (404, 410):
            raise NotFoundError(
                f"{url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                provider=self.name,
            )
        if response.status_code >= 400:
            if track_failures:
                self._record_failure(domain)
            raise error_for_status(
                response.status_code,
                f"direct fetch of {url} returned HTTP {response.status_code}",
                provider=self.name,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if track_failures:
            self._record_success(domain)
        return response

    def fetch(self, url: str, format: str = "html") -> ReaderResult:
        """Fetch a page directly; markdown requests get a text rendering."""
        response = self.get(url)
        html = response.text or ""
        if detect_challenge_page(html):
            self._record_failure(get_domain(url))
            raise ContentUnavailable(
                f"direct fetch of {url} hit a bot challenge page",
                status_code=response.status_code,
                provider=self.name,
            )
        if not html.strip():
            raise ContentUnavailable(f"direct fetch of {url} returned an empty body", provider=self.name)

        metadata: dict[str, Any] = {"fallback": self.name, "status_code": response.status_code}
        if format == "markdown":
            content, title = html_to_text(html)
            if title:
                metadata["title"] = title
        else:
            content = html
        return ReaderResult(content=content, metadata=metadata, url=url, provider=self.name)


class HeadlessRenderer:
    """Out-of-process headless browser behind the ``fetch`` contract.

    ``command`` is run with the target URL appended as the last argument and
    must print the rendered HTML on stdout.
    """

    name = "renderer"

    def __init__(self, command: str | Sequence[str], *, timeout: float = CRAWL_TIMEOUT):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout

    def fetch(self, url: str, format: str = "html") -> ReaderResult:
        logger.info("Rendering %s with headless renderer", url)
        try:
            completed = subprocess.run(
                [*self.command, url],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ReaderTimeout(
                f"renderer timed out after {self.timeout}s for {url}", provider=self.name
            ) from exc
        except OSError as exc:
            raise ConfigurationError(f"renderer command could not start: {exc}", provider=self.name) from exc

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {completed.returncode}"
            raise ReaderError(f"renderer failed for {url}: {detail}", provider=self.name, retryable=False)

        html = completed.stdout or ""
        if not html.strip():
            raise ContentUnavailable(f"renderer returned no output for {url}", provider=self.name)

        metadata: dict[str, Any] = {"renderer": True}
        if format == "markdown":
            content, title = html_to_text(html)
            if title:
                metadata["title"] = title
            return ReaderResult(content=content, metadata=metadata, url=url, provider=self.name)
        return ReaderResult(content=html, metadata=metadata, url=url, provider=self.name)


class ResilientReaderClient:
    """Uniform ``fetch(url, format)`` over providers, direct fetch and renderer."""

    def __init__(
        self,
        providers: Sequence[ReaderProviderClient],
        *,
        direct_fetcher: DirectFetcher | None = None,
        renderer: HeadlessRenderer | None = None,
    ):
        self.providers = list(providers)
        self.direct_fetcher = direct_fetcher
        self.renderer = renderer

    @property
    def configured_providers(self) -> list[ReaderProviderClient]:
        return [provider for provider in self.providers if provider.configured]

    @property
    def credits_used(self) -> int:
        return sum(provider.credits.credits_used for provider in self.providers)

    def fetch(self, url: str, format: str = "markdown") -> ReaderResult:
        """Fetch ``url`` through the first provider that succeeds.

        Raises :class:`ConfigurationError` if no provider has credentials,
        :class:`NotFoundError` as soon as a provider reports the page
        missing, and :class:`CircuitOpenError` when every provider's breaker
        is open (no direct fallback in that case). Otherwise, once all
        providers are exhausted, the direct fetcher gets one attempt.
        """
        providers = self.configured_providers
        if not providers:
            raise ConfigurationError(
                "No reader API key configured; set JINA_API_KEY or FIRECRAWL_API_KEY"
            )

        errors: list[ReaderError] = []
        exhausted = False
        for provider in providers:
            try:
                return provider.fetch(url, format)
            except NotFoundError:
                raise
            except CircuitOpenError as exc:
                logger.info("Skipping %s for %s: %s", provider.name, url, exc.message)
                errors.append(exc)
            except (ConfigurationError, CreditLimitExceeded) as exc:
                logger.warning("Skipping %s for %s: %s", provider.name, url, exc.message)
                errors.append(exc)
            except ReaderError as exc:
                exhausted = True
                errors.append(exc)

        if exhausted and self.direct_fetcher is not None and not self.direct_fetcher.is_suppressed(url):
            logger.info("Reader providers exhausted for %s; trying direct fetch", url)
            try:
                return self.direct_fetcher.fetch(url, format)
            except ReaderError as exc:
                errors.append(exc)

        raise errors[-1]

    def render(self, url: str, format: str = "html") -> ReaderResult:
        """Render ``url`` with the headless renderer (last resort for JS listings)."""
        if self.renderer is None:
            raise ConfigurationError("No headless renderer configured; set RENDERER_COMMAND")
        return self.renderer.fetch(url, format)

    @property
    def mapper(self) -> FirecrawlClient | None:
        for provider in self.configured_providers:
            if isinstance(provider, FirecrawlClient):
                return provider
        return None

    def map_urls(self, url: str, **kwargs) -> list[str]:
        mapper = self.mapper
        if mapper is None:
            raise ConfigurationError("URL mapping requires FIRECRAWL_API_KEY")
        return mapper.map_urls(url, **kwargs)

    def crawl(self, url: str, **kwargs) -> list[ReaderResult]:
        mapper = self.mapper
        if mapper is None:
            raise ConfigurationError("Crawling requires FIRECRAWL_API_KEY")
        return mapper.crawl(url, **kwargs)


def build_reader_client(
    settings: ReaderSettings | None = None,
    *,
    session: requests.Session | None = None,
) -> ResilientReaderClient:
    """Build the production client stack from :class:`ReaderSettings`.

    The provider named by ``scraping_provider`` is tried first. Clients are
    built even without keys so that discovery's free strategies still work;
    the first keyed call raises :class:`ConfigurationError`.
    """
    settings = settings or load_reader_settings()
    session = session or requests.Session()

    common = {
        "session": session,
        "max_retries": settings.max_retries,
        "proxy_country": settings.proxy_country,
        "timeout": settings.reader_timeout,
    }
    jina = JinaReaderClient(
        settings.jina_api_key,
        rate_limiter=RateLimiter(min_delay=settings.jina_min_delay, name="jina"),
        circuit_breaker=CircuitBreaker(
            threshold=settings.breaker_threshold, cooldown=settings.breaker_cooldown, name="jina"
        ),
        **common,
    )
    firecrawl = FirecrawlClient(
        settings.firecrawl_api_key,
        crawl_timeout=settings.crawl_timeout,
        rate_limiter=RateLimiter(
            min_delay=settings.firecrawl_min_delay,
            concurrency_cap=settings.firecrawl_concurrency,
            name="firecrawl",
        ),
        circuit_breaker=CircuitBreaker(
            threshold=settings.breaker_threshold, cooldown=settings.breaker_cooldown, name="firecrawl"
        ),
        credit_tracker=CreditTracker(
            limit=settings.firecrawl_credit_limit,
            warning_threshold=settings.firecrawl_credit_warning,
            name="firecrawl",
        ),
        **common,
    )
    providers: list[ReaderProviderClient] = [jina, firecrawl]
    if settings.scraping_provider == "firecrawl":
        providers.reverse()

    direct = None
    if settings.direct_fetch_enabled:
        direct = DirectFetcher(
            session,
            timeout=settings.page_timeout,
            failure_threshold=settings.direct_failure_threshold,
        )
    renderer = None
    if settings.renderer_command:
        renderer = HeadlessRenderer(settings.renderer_command, timeout=settings.crawl_timeout)

    logger.info(
        "Reader client configured: providers=%s jina_key=%s firecrawl_key=%s direct=%s renderer=%s",
        [provider.name for provider in providers],
        mask_api_key(settings.jina_api_key),
        mask_api_key(settings.firecrawl_api_key),
        direct is not None,
        renderer is not None,
    )
    return ResilientReaderClient(providers, direct_fetcher=direct, renderer=renderer)
