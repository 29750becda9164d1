from __future__ import annotations

import os

# Point the module-level engine at SQLite before any schoolhub module builds it.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from schoolhub.core.config import InlineMediaConfig, get_settings
from schoolhub.domain.models import Base
from schoolhub.services.media.inline_media import InlineMediaService
from schoolhub.services.telemetry import reset_telemetry
from schoolhub.tests.utils.media import MEDIA_BASE_URL, FakeStorage, FrozenClock


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings and metrics are process-wide; isolate every test from env tweaks.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_telemetry()


@pytest.fixture
async def db_engine():
    # StaticPool keeps a single in-memory database alive for the whole test.
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def media_config() -> InlineMediaConfig:
    return InlineMediaConfig(public_base_url=MEDIA_BASE_URL, temp_ttl_minutes=60)


@pytest.fixture
def media_service(media_config: InlineMediaConfig, storage: FakeStorage, clock: FrozenClock) -> InlineMediaService:
    return InlineMediaService(media_config, storage=storage, clock=clock)
