"""
Pytest configuration for agendify. In-memory SQLite so tests don't touch the filesystem;
the engagement trigger is not armed when the app lifespan runs.
"""
import os

import pytest

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENGAGEMENT_UPDATE_ENABLED"] = "0"
os.environ.setdefault("CLIENT_ID", "test-client")
os.environ.setdefault("CLIENT_SECRET", "test-secret")


@pytest.fixture
def db():
    """Fresh scheduled_jobs table per test."""
    from agendify.database import SessionLocal, init_db
    from agendify.models import ScheduledJob

    init_db()
    session = SessionLocal()
    try:
        session.query(ScheduledJob).delete()
        session.commit()
        yield session
    finally:
        session.close()
