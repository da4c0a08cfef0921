"""URL discovery command."""

from __future__ import annotations

import argparse
import json
import logging

from src.crawler import ReaderError

logger = logging.getLogger(__name__)


def add_discover_urls_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "discover-urls",
        help="Discover candidate post URLs for a blog or content section",
    )
    parser.add_argument("url", help="Blog home page or content section URL")
    parser.add_argument(
        "--max-urls",
        type=int,
        default=100,
        help="Maximum number of URLs to return (default: 100)",
    )
    parser.add_argument(
        "--max-posts",
        type=int,
        default=None,
        help="Stop the listing walk after this many posts",
    )
    parser.add_argument(
        "--language",
        default=None,
        help="Keep only URLs in this language (code or name, e.g. 'de' or 'german')",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        default=False,
        help="Fetch each candidate and drop pages that are not posts",
    )
    parser.add_argument("--date-from", dest="date_from", default=None, help="YYYY-MM-DD")
    parser.add_argument("--date-to", dest="date_to", default=None, help="YYYY-MM-DD")
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        default=False,
        help="Print the full result as JSON",
    )
    parser.set_defaults(func=handle_discovery_command)
    return parser


def handle_discovery_command(args) -> int:
    from src.pipeline import BlogImportPipeline

    try:
        pipeline = BlogImportPipeline()
        result = pipeline.discover(
            args.url,
            max_urls=args.max_urls,
            max_posts=args.max_posts,
            date_from=args.date_from,
            date_to=args.date_to,
            language=args.language,
            validate=args.validate,
        )
    except (ReaderError, ValueError) as exc:
        logger.error("Discovery failed for %s: %s", args.url, exc)
        print(f"❌ Discovery failed: {exc}")
        return 1

    if args.as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    print()
    print(f"🔎 Discovery for {args.url}")
    print("=" * 70)
    print(f"Method: {result.method}")
    print(f"URLs found: {result.total}")
    print(f"Credits used: {result.credits_used}")
    if result.content_sections:
        print(f"Sections: {', '.join(result.content_sections)}")
    if result.detected_languages:
        print(f"Languages: {', '.join(result.detected_languages)}")
    for name, error in result.errors.items():
        print(f"  ⚠️  {name}: {error}")
    print()
    for item in result.urls:
        date = item.published_date or "----------"
        print(f"  {date}  {item.url}")
        print(f"              {item.title}")
    if result.fallback_required:
        print("No URLs found; the site may need manual review.")
    return 0
