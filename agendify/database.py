"""
Database engine and session factory for the job queue.
The engine is built by init_db() at startup; DATABASE_URL must be set by then.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agendify.config import DATABASE_URL
from agendify.models import Base

engine: Engine | None = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def _make_engine(url: str) -> Engine:
    # SQLite: in-memory needs StaticPool so all connections share the same DB (for tests)
    # File-based SQLite needs check_same_thread=False since queue work runs in worker threads
    if url.startswith("sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def init_db(url: str | None = DATABASE_URL) -> Engine:
    """Create the engine (once) and all tables. Raises RuntimeError if no URL is configured."""
    global engine
    if engine is None:
        if not url:
            raise RuntimeError("DATABASE_URL is not set")
        engine = _make_engine(url)
        SessionLocal.configure(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine
