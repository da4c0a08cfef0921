"""Result types shared by discovery, duplicate checking and scraping."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class DiscoveredUrl:
    """A candidate post URL. ``url`` is the canonical absolute URL."""

    url: str
    title: str
    published_date: str | None = None
    content_section: str | None = None
    language: str | None = None

    def with_updates(self, **changes: Any) -> "DiscoveredUrl":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CheckedUrl(DiscoveredUrl):
    is_duplicate: bool = False
    existing_fingerprint_id: str | None = None

    @classmethod
    def from_discovered(
        cls,
        discovered: DiscoveredUrl,
        existing_fingerprint_id: str | None = None,
    ) -> "CheckedUrl":
        return cls(
            url=discovered.url,
            title=discovered.title,
            published_date=discovered.published_date,
            content_section=discovered.content_section,
            language=discovered.language,
            is_duplicate=existing_fingerprint_id is not None,
            existing_fingerprint_id=existing_fingerprint_id,
        )


@dataclass
class DiscoveryResult:
    """Outcome of one discovery run.

    ``method`` names the strategy that produced ``urls`` ("sitemap", "rss",
    "map") or "crawl" when every strategy failed and the caller should walk
    the listing pages itself (``fallback_required``).
    """

    urls: list[DiscoveredUrl] = field(default_factory=list)
    method: str = "crawl"
    credits_used: int = 0
    fallback_required: bool = False
    content_sections: list[str] = field(default_factory=list)
    detected_languages: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.urls)

    def to_dict(self) -> dict[str, Any]:
        return {
            "urls": [item.to_dict() for item in self.urls],
            "method": self.method,
            "credits_used": self.credits_used,
            "fallback_required": self.fallback_required,
            "content_sections": list(self.content_sections),
            "detected_languages": list(self.detected_languages),
            "errors": dict(self.errors),
        }


@dataclass
class DuplicateCheckResult:
    all: list[CheckedUrl] = field(default_factory=list)
    new: list[CheckedUrl] = field(default_factory=list)
    duplicates: list[CheckedUrl] = field(default_factory=list)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "total": len(self.all),
            "new": len(self.new),
            "duplicates": len(self.duplicates),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "all": [item.to_dict() for item in self.all],
            "new": [item.to_dict() for item in self.new],
            "duplicates": [item.to_dict() for item in self.duplicates],
            "stats": self.stats,
        }
