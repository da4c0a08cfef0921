"""Scrape command: extract cleaned content for confirmed URLs."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from src.crawler import ConfigurationError

logger = logging.getLogger(__name__)


def add_scrape_selected_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "scrape-selected",
        help="Extract cleaned content for the given post URLs",
    )
    parser.add_argument("urls", nargs="*", help="Post URLs to scrape")
    parser.add_argument(
        "--from-file",
        dest="from_file",
        default=None,
        help="JSON file of URLs (same formats as check-duplicates)",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write scraped posts to this JSON file instead of stdout",
    )
    parser.add_argument(
        "--record-scope",
        dest="record_scope",
        default=None,
        help="Record successfully scraped URLs as fingerprints in this scope",
    )
    parser.add_argument("--database-url", dest="database_url", default=None)
    parser.set_defaults(func=handle_scrape_selected_command)
    return parser


def _print_progress(completed: int, total: int) -> None:
    print(f"[{completed}/{total}] scraping...", file=sys.stderr)


def handle_scrape_selected_command(args) -> int:
    from src.crawler.reader_client import build_reader_client
    from src.pipeline.scrape import ScrapeOrchestrator

    from .duplicates import load_url_items

    urls = list(args.urls)
    if args.from_file:
        try:
            urls.extend(load_url_items(args.from_file))
        except (OSError, ValueError) as exc:
            print(f"❌ Could not read {args.from_file}: {exc}")
            return 1
    if not urls:
        print("❌ No URLs given")
        return 1

    orchestrator = ScrapeOrchestrator(build_reader_client())
    try:
        posts = orchestrator.scrape_selected(urls, on_progress=_print_progress)
    except ConfigurationError as exc:
        print(f"❌ {exc.message}")
        return 1

    payload = json.dumps([post.to_dict() for post in posts], indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as handle:
            handle.write(payload)
        logger.info("Wrote %d posts to %s", len(posts), args.output)
    else:
        print(payload)

    if args.record_scope:
        from src.models.database import DatabaseManager
        from src.pipeline.duplicates import SqlFingerprintStore

        with DatabaseManager(args.database_url) as db:
            SqlFingerprintStore(db).record(
                args.record_scope,
                [(post.url, post.title) for post in posts if post.success],
            )

    summary = orchestrator.last_summary
    if summary is not None:
        print(
            f"✅ {summary.succeeded} succeeded, ❌ {summary.failed} failed, "
            f"{summary.credits_used} credits used",
            file=sys.stderr,
        )
        return 0 if summary.succeeded or not summary.total else 1
    return 0
