import os

# placement.main はインポート時にエンジンを作るため、先に SQLite を指定しておく
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import fakeredis
import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from placement import schema
from placement.config import Settings
from placement.orchestrator import OrderPlacementOrchestrator
from tests.helpers import TENANT


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await schema.create_all(engine)
    async with engine.begin() as conn:
        await conn.execute(
            text("INSERT INTO stores (id, name) VALUES (:id, :name)"),
            {"id": TENANT, "name": "Test Store"},
        )
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def settings():
    return Settings(lock_ttl=30, processing_ttl=300, completed_ttl=3600, failed_ttl=600)


@pytest.fixture
def orchestrator(session_factory, redis, settings):
    return OrderPlacementOrchestrator(session_factory, redis, settings)
