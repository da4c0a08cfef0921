"""Centralized configuration for the blog import crawler.

Values are read from the environment once at import time. Reader provider
settings are also exposed through :func:`load_reader_settings` so callers
(and tests) can build a fresh snapshot after changing the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/blog_import.db")

# Default worker pool size for discovery and validation fan-out
DISCOVERY_MAX_WORKERS = _env_int("DISCOVERY_MAX_WORKERS", 5)

# Timeouts (seconds) per operation type
DISCOVERY_TIMEOUT = _env_int("DISCOVERY_TIMEOUT", 10)
PAGE_FETCH_TIMEOUT = _env_int("PAGE_FETCH_TIMEOUT", 30)
READER_TIMEOUT = _env_int("READER_TIMEOUT", 60)
CRAWL_TIMEOUT = _env_int("CRAWL_TIMEOUT", 120)


@dataclass(frozen=True)
class ReaderSettings:
    """Snapshot of reader provider configuration."""

    scraping_provider: str = "jina"
    jina_api_key: str | None = None
    firecrawl_api_key: str | None = None
    proxy_country: str | None = None
    jina_min_delay: float = 0.5
    firecrawl_min_delay: float = 1.0
    firecrawl_concurrency: int = 2
    firecrawl_credit_limit: int = 500
    firecrawl_credit_warning: int = 400
    breaker_threshold: int = 3
    breaker_cooldown: float = 60.0
    max_retries: int = 2
    direct_fetch_enabled: bool = True
    direct_failure_threshold: int = 3
    renderer_command: str | None = None
    reader_timeout: int = READER_TIMEOUT
    crawl_timeout: int = CRAWL_TIMEOUT
    page_timeout: int = PAGE_FETCH_TIMEOUT

    @property
    def has_reader_credentials(self) -> bool:
        return bool(self.jina_api_key or self.firecrawl_api_key)


def load_reader_settings() -> ReaderSettings:
    """Build :class:`ReaderSettings` from the current environment."""
    provider = (os.getenv("SCRAPING_PROVIDER") or "jina").strip().lower()
    return ReaderSettings(
        scraping_provider=provider,
        jina_api_key=os.getenv("JINA_API_KEY") or None,
        firecrawl_api_key=os.getenv("FIRECRAWL_API_KEY") or None,
        proxy_country=os.getenv("READER_PROXY_COUNTRY") or None,
        jina_min_delay=_env_float("JINA_MIN_DELAY", 0.5),
        firecrawl_min_delay=_env_float("FIRECRAWL_MIN_DELAY", 1.0),
        firecrawl_concurrency=_env_int("FIRECRAWL_CONCURRENCY", 2),
        firecrawl_credit_limit=_env_int("FIRECRAWL_CREDIT_LIMIT", 500),
        firecrawl_credit_warning=_env_int("FIRECRAWL_CREDIT_WARNING", 400),
        breaker_threshold=_env_int("READER_BREAKER_THRESHOLD", 3),
        breaker_cooldown=_env_float("READER_BREAKER_COOLDOWN", 60.0),
        max_retries=_env_int("READER_MAX_RETRIES", 2),
        direct_fetch_enabled=_env_bool("DIRECT_FETCH_ENABLED", True),
        direct_failure_threshold=_env_int("DIRECT_FETCH_FAILURE_THRESHOLD", 3),
        renderer_command=os.getenv("RENDERER_COMMAND") or None,
        reader_timeout=READER_TIMEOUT,
        crawl_timeout=CRAWL_TIMEOUT,
        page_timeout=PAGE_FETCH_TIMEOUT,
    )
