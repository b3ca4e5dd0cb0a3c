"""Shared pytest fixtures for Featur tests.

Every test gets its own SQLite database under ``tmp_path`` and a container
wired to an in-process change feed.  Retry backoff is zeroed so that retry
paths run instantly.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from featur.config import Settings
from featur.container import build_container
from featur.database import create_engine_from_settings, create_schema
from featur.realtime import InMemoryChangeFeed
from featur.schemas.profile import Profile


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'featur.db'}",
        REDIS_URL="",
        GCS_BUCKET_NAME="",
        TELEMETRY_ENDPOINT="",
        MATCH_BACKOFF_BASE_SECONDS=0,
        UPLOAD_BACKOFF_BASE_SECONDS=0,
    )


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def media_storage():
    """Stand-in for MediaStorage; uploads return a bucket URL."""
    storage = MagicMock()
    storage.upload = AsyncMock(
        side_effect=lambda data, path, content_type: f"https://storage.googleapis.com/featur-media/{path}"
    )
    storage.delete = AsyncMock(return_value=None)
    return storage


@pytest_asyncio.fixture
async def container(settings, feed, media_storage):
    engine = create_engine_from_settings(settings)
    await create_schema(engine)
    built = build_container(settings, engine, feed, storage=media_storage)
    try:
        yield built
    finally:
        await built.aclose()


@pytest.fixture
def make_profile():
    def _make(uid=None, **fields):
        return Profile(uid=uid or f"user-{uuid.uuid4().hex[:8]}", **fields)

    return _make


@pytest.fixture
def user_a():
    return "creator-alice"


@pytest.fixture
def user_b():
    return "creator-bob"
