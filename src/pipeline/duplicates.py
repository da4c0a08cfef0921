"""Partition candidate URLs against content that was already imported."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol, Sequence

from sqlalchemy import select

from src.crawler.utils import derive_title_from_slug
from src.models import IngestedAsset
from src.models.database import DatabaseManager
from src.utils.discovery_outcomes import CheckedUrl, DiscoveredUrl, DuplicateCheckResult

logger = logging.getLogger(__name__)


class FingerprintStore(Protocol):
    """Read-only view of already-ingested source URLs."""

    def list_fingerprints(self, scope: str) -> Mapping[str, str]:
        """Return ``{source_url: fingerprint_id}`` for ``scope``."""
        ...


class InMemoryFingerprintStore:
    """Fingerprints held by the caller, keyed by scope."""

    def __init__(self, fingerprints: Mapping[str, Mapping[str, str]] | None = None):
        self._fingerprints: dict[str, dict[str, str]] = {
            scope: dict(entries) for scope, entries in (fingerprints or {}).items()
        }

    def add(self, scope: str, source_url: str, fingerprint_id: str) -> None:
        self._fingerprints.setdefault(scope, {})[source_url] = fingerprint_id

    def list_fingerprints(self, scope: str) -> Mapping[str, str]:
        return dict(self._fingerprints.get(scope, {}))


class SqlFingerprintStore:
    """Fingerprints read from the ``ingested_assets`` table."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def list_fingerprints(self, scope: str) -> Mapping[str, str]:
        with self.db.session_scope() as session:
            rows = session.execute(
                select(IngestedAsset.source_url, IngestedAsset.id)
                .where(IngestedAsset.scope == scope)
                .order_by(IngestedAsset.created_at)
            ).all()
        fingerprints: dict[str, str] = {}
        for source_url, asset_id in rows:
            # Oldest row wins when the same URL was imported twice
            fingerprints.setdefault(source_url, asset_id)
        logger.debug("Loaded %d fingerprints for scope %s", len(fingerprints), scope)
        return fingerprints

    def record(self, scope: str, items: Iterable[tuple[str, str | None]]) -> int:
        """Insert ``(source_url, title)`` fingerprints not yet present in ``scope``."""
        existing = set(self.list_fingerprints(scope))
        added = 0
        with self.db.session_scope() as session:
            for source_url, title in items:
                if source_url in existing:
                    continue
                session.add(IngestedAsset(scope=scope, source_url=source_url, title=title))
                existing.add(source_url)
                added += 1
        logger.info("Recorded %d new fingerprints for scope %s", added, scope)
        return added


def _as_discovered(item: DiscoveredUrl | str) -> DiscoveredUrl:
    if isinstance(item, DiscoveredUrl):
        return item
    return DiscoveredUrl(url=item, title=derive_title_from_slug(item))


def check_for_duplicates(
    urls: Sequence[DiscoveredUrl | str],
    scope: str,
    store: FingerprintStore,
) -> DuplicateCheckResult:
    """Split ``urls`` into new and already-ingested items.

    One batch read of the store, exact source-URL matching, no network.
    Every input lands in exactly one of ``new``/``duplicates``, in input
    order.
    """
    fingerprints = store.list_fingerprints(scope)
    result = DuplicateCheckResult()

    for item in urls:
        discovered = _as_discovered(item)
        checked = CheckedUrl.from_discovered(discovered, fingerprints.get(discovered.url))
        result.all.append(checked)
        if checked.is_duplicate:
            result.duplicates.append(checked)
        else:
            result.new.append(checked)

    logger.info(
        "Duplicate check for scope %s: %d total, %d new, %d duplicates",
        scope,
        len(result.all),
        len(result.new),
        len(result.duplicates),
    )
    return result
