import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient
from network_blocker import install_network_blocker

from core.redis import _RedisState  # noqa: E402
from db.models import ALL_DOCUMENT_MODELS  # noqa: E402
from redis_fakes import FakeRedis  # noqa: E402
from trip_repository import TripRepository  # noqa: E402


@pytest.fixture(autouse=True)
def _default_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379")
    install_network_blocker(monkeypatch)


@pytest.fixture(autouse=True)
def reset_shared_redis_state():
    _RedisState.client = None
    yield
    _RedisState.client = None


@pytest.fixture
def fake_redis() -> FakeRedis:
    client = FakeRedis()
    _RedisState.client = client
    return client


@pytest.fixture
def mongo_db():
    client = AsyncMongoMockClient()
    return client["test_db"]


@pytest.fixture
def repository(mongo_db) -> TripRepository:
    return TripRepository(
        trips_col=mongo_db["trips"],
        routes_col=mongo_db["routes"],
        archive_col=mongo_db["archived_trips"],
    )


@pytest.fixture
async def beanie_db():
    client = AsyncMongoMockClient()
    database = client["test_db"]
    await init_beanie(database=database, document_models=ALL_DOCUMENT_MODELS)
    return database
