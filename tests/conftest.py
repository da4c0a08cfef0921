"""Pytest-wide fixtures for the blog import tests."""

from __future__ import annotations

import os
import tempfile
from types import SimpleNamespace

import pytest

# Force tests onto SQLite before anything imports src.config
if "DATABASE_URL" not in os.environ:
    test_db_path = os.path.join(tempfile.gettempdir(), "test_blog_import.db")
    os.environ["DATABASE_URL"] = f"sqlite:///{test_db_path}"

# Never pick up real reader credentials from the developer's shell
for key in ["JINA_API_KEY", "FIRECRAWL_API_KEY", "RENDERER_COMMAND", "READER_PROXY_COUNTRY"]:
    if os.environ.get("PYTEST_KEEP_READER_ENV") != "true":
        os.environ.pop(key, None)


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_database():
    """Remove the file-based SQLite test database after the session."""
    yield
    test_db_path = os.path.join(tempfile.gettempdir(), "test_blog_import.db")
    if os.path.exists(test_db_path):
        try:
            os.remove(test_db_path)
        except OSError:
            pass


class TimeStub:
    """Replacement for the ``time`` module with a controllable clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def time_stub() -> TimeStub:
    return TimeStub()


def make_response(status_code: int = 200, text: str = "", json_data=None, headers=None):
    """Minimal stand-in for ``requests.Response``."""

    def _json():
        if json_data is None:
            raise ValueError("No JSON body")
        return json_data

    return SimpleNamespace(
        status_code=status_code,
        text=text,
        headers=headers or {},
        json=_json,
        ok=status_code < 400,
    )


@pytest.fixture
def sqlite_db(tmp_path):
    """A fresh file-backed ``DatabaseManager``."""
    from src.models.database import DatabaseManager

    db = DatabaseManager(f"sqlite:///{tmp_path / 'fingerprints.db'}")
    yield db
    db.close()


@pytest.fixture
def response_factory():
    return make_response
