"""Database manager used by the CLI and the SQL fingerprint store."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from . import create_database_engine, create_tables, get_session

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Own one engine and hand out sessions.

    Usable as a context manager; ``close`` disposes of the engine.
    """

    def __init__(self, database_url: str | None = None, create: bool = True):
        if database_url is None:
            from src.config import DATABASE_URL

            database_url = DATABASE_URL
        self.database_url = database_url
        self._ensure_sqlite_directory(database_url)
        self.engine = create_database_engine(database_url)
        if create:
            create_tables(self.engine)

    @staticmethod
    def _ensure_sqlite_directory(database_url: str) -> None:
        prefix = "sqlite:///"
        if not database_url.startswith(prefix):
            return
        path = database_url[len(prefix) :]
        if not path or path == ":memory:":
            return
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = get_session(self.engine)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
