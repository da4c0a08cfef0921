"""SQLAlchemy model for already-imported content plus engine helpers."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Column, DateTime, Index, String, Text, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Mapped, Session, declarative_base, mapped_column, sessionmaker

Base: Any = declarative_base()


def _new_fingerprint_id() -> str:
    return str(uuid.uuid4())


class IngestedAsset(Base):
    """Content already imported into the library, keyed by source URL.

    Only the fingerprint columns are modelled here; the library's own CRUD
    layer owns the rest of the record.
    """

    __tablename__ = "ingested_assets"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_fingerprint_id)
    scope = Column(String, nullable=False)  # Account/workspace the asset belongs to
    source_url = Column(Text, nullable=False)
    title = Column(Text)
    created_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (Index("ix_ingested_assets_scope_url", "scope", "source_url"),)

    def __repr__(self) -> str:
        return f"<IngestedAsset {self.id} {self.source_url}>"


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # Validation threads share one engine; wait on locks instead of failing
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_size": 5, "max_overflow": 10, "pool_timeout": 30, "pool_pre_ping": True}


def create_database_engine(database_url: str = "sqlite:///data/blog_import.db") -> Engine:
    """Engine for ``database_url`` with per-dialect pool settings."""
    return create_engine(database_url, echo=False, **_engine_options(database_url))


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def get_session(engine: Engine) -> Session:
    return sessionmaker(bind=engine)()
