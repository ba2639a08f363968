"""
Test configuration and fixtures.

Backends are switched to their in-memory variants before anything from
linkflow is imported, so no Redis server is needed. The analytics store
uses a throwaway SQLite file.
"""

import os

os.environ["CODE_STORE_BACKEND"] = "memory"
os.environ["EVENT_CHANNEL_BACKEND"] = "memory"
os.environ["ANALYTICS_DATABASE_URL"] = "sqlite:///./test_analytics.db"
os.environ["RETRY_DELAY_SECONDS"] = "0"
os.environ["CONSUME_BLOCK_MS"] = "0"

import pytest
from fastapi.testclient import TestClient

from main import app
from linkflow.database.connection import Base, SessionLocal, engine
from linkflow.models import ClickRecord  # noqa: F401  registers the table
from linkflow.storage.strategies import SQLAlchemyClickStore


@pytest.fixture(scope="function")
def db_session_factory():
    """
    Fresh analytics tables for each test.
    """
    Base.metadata.create_all(bind=engine)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def click_store(db_session_factory):
    return SQLAlchemyClickStore(session_factory=db_session_factory, deduplicate=True)


@pytest.fixture(scope="function")
def client():
    """
    Test client running the full app lifespan with in-memory backends.
    """
    with TestClient(app) as test_client:
        yield test_client
