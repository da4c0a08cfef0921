"""Shared setup for CLI commands."""

from __future__ import annotations

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for a CLI run."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    # Per-request connection chatter drowns out pipeline progress
    logging.getLogger("urllib3").setLevel(max(log_level, logging.WARNING))
