"""Duplicate check command.

Reads a JSON file of candidate URLs and splits it against the fingerprints
stored for a scope. The file may hold a list of URL strings, a list of
``{"url": ...}`` objects, or the output of ``discover-urls --json``.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from src.crawler.utils import derive_title_from_slug
from src.utils.discovery_outcomes import DiscoveredUrl

logger = logging.getLogger(__name__)

_DISCOVERED_FIELDS = ("url", "title", "published_date", "content_section", "language")


def load_url_items(path: str | Path) -> list[DiscoveredUrl]:
    """Load candidate URLs from a JSON file."""
    with open(path, encoding="utf-8") as handle:
        payload: Any = json.load(handle)
    if isinstance(payload, dict):
        payload = payload.get("urls", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a list of URLs")

    items = []
    for entry in payload:
        if isinstance(entry, str):
            items.append(DiscoveredUrl(url=entry, title=derive_title_from_slug(entry)))
        elif isinstance(entry, dict) and entry.get("url"):
            fields = {key: entry.get(key) for key in _DISCOVERED_FIELDS}
            fields["title"] = fields["title"] or derive_title_from_slug(entry["url"])
            items.append(DiscoveredUrl(**fields))
        else:
            logger.warning("Skipping unrecognised entry in %s: %r", path, entry)
    return items


def add_check_duplicates_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "check-duplicates",
        help="Split discovered URLs into new and already imported",
    )
    parser.add_argument("file", help="JSON file with candidate URLs")
    parser.add_argument("--scope", required=True, help="Library scope to check against")
    parser.add_argument(
        "--database-url",
        dest="database_url",
        default=None,
        help="Override DATABASE_URL",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        default=False,
        help="Print the full result as JSON",
    )
    parser.set_defaults(func=handle_check_duplicates_command)
    return parser


def handle_check_duplicates_command(args) -> int:
    from src.models.database import DatabaseManager
    from src.pipeline.duplicates import SqlFingerprintStore, check_for_duplicates

    try:
        items = load_url_items(args.file)
    except (OSError, ValueError) as exc:
        print(f"❌ Could not read {args.file}: {exc}")
        return 1

    with DatabaseManager(args.database_url) as db:
        result = check_for_duplicates(items, args.scope, SqlFingerprintStore(db))

    if args.as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    stats = result.stats
    print(f"Checked {stats['total']} URLs against scope '{args.scope}'")
    print(f"  New: {stats['new']}")
    print(f"  Duplicates: {stats['duplicates']}")
    for item in result.duplicates:
        print(f"  = {item.url} (existing {item.existing_fingerprint_id})")
    return 0
