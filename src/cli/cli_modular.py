"""``blog-import`` entry point.

Command modules under ``src.cli.commands`` are imported only once the
command name is known, so ``blog-import`` without arguments stays cheap.
Each module exposes ``add_<command>_parser(subparsers)`` and a handler that
takes the parsed namespace and returns an exit code.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
from collections.abc import Callable
from typing import NamedTuple

logger = logging.getLogger(__name__)

CommandHandler = Callable[[argparse.Namespace], int]
ParserAdder = Callable[[argparse._SubParsersAction], argparse.ArgumentParser]


class CommandSpec(NamedTuple):
    module: str
    handler: str
    summary: str


COMMANDS: dict[str, CommandSpec] = {
    "discover-urls": CommandSpec(
        "discovery",
        "handle_discovery_command",
        "Discover candidate post URLs for a blog",
    ),
    "check-duplicates": CommandSpec(
        "duplicates",
        "handle_check_duplicates_command",
        "Split discovered URLs into new and already imported",
    ),
    "scrape-selected": CommandSpec(
        "scrape",
        "handle_scrape_selected_command",
        "Extract cleaned content for selected URLs",
    ),
}

COMMAND_HANDLER_ATTRS: dict[str, str] = {name: spec.handler for name, spec in COMMANDS.items()}


def create_parser() -> argparse.ArgumentParser:
    """Top-level parser: global options plus the bare command name."""
    parser = argparse.ArgumentParser(
        prog="blog-import",
        description="Discover, deduplicate and import blog posts",
        add_help=False,
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    parser.add_argument("command", nargs="?", help="Command to run; COMMAND --help lists its options")
    return parser


def _load_command_parser(command: str) -> tuple[ParserAdder, CommandHandler] | None:
    """Import the module behind ``command``; None when it is unknown or broken."""
    spec = COMMANDS.get(command)
    if spec is None:
        return None

    try:
        module = importlib.import_module(f"src.cli.commands.{spec.module}")
    except ImportError as exc:
        logger.warning("Could not import command %s: %s", command, exc)
        return None

    add_parser = getattr(module, f"add_{command.replace('-', '_')}_parser", None)
    handler = getattr(module, spec.handler, None)
    if add_parser is None or handler is None:
        logger.warning("Command module %s is missing its parser or handler", spec.module)
        return None
    return add_parser, handler


def _print_command_list() -> None:
    width = max(len(name) for name in COMMANDS) + 2
    print("Available commands:", file=sys.stderr)
    for name, spec in COMMANDS.items():
        print(f"  {name.ljust(width)}{spec.summary}", file=sys.stderr)
    print("Run 'blog-import COMMAND --help' for command options", file=sys.stderr)


def _build_command_parser(command: str, add_parser: ParserAdder) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blog-import")
    parser.add_argument("--log-level", default="INFO")
    add_parser(parser.add_subparsers(dest="command"))
    return parser


def main(
    argv: list[str] | None = None,
    *,
    setup_logging_func: Callable[[str], None] | None = None,
    handler_overrides: dict[str, CommandHandler] | None = None,
) -> int:
    """Parse ``argv``, configure logging and dispatch to the command handler."""
    args, remaining = create_parser().parse_known_args(argv)

    if setup_logging_func is None:
        from .context import setup_logging

        setup_logging_func = setup_logging
    setup_logging_func(args.log_level or "INFO")

    if not args.command:
        _print_command_list()
        return 1

    loaded = _load_command_parser(args.command)
    if loaded is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    add_parser, handler = loaded
    handler = (handler_overrides or {}).get(args.command, handler)

    command_args = _build_command_parser(args.command, add_parser).parse_args([args.command, *remaining])
    return handler(command_args)


if __name__ == "__main__":
    sys.exit(main())
