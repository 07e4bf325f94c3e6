"""Shared pytest fixtures: both storage backends, the router and the app."""
from typing import Iterable, Optional

import fakeredis
import pytest
from fastapi.testclient import TestClient

from config import StorageConfig
from db import init_db, make_engine
from main import create_app
from migrations import MigrationLedger
from storage import KeyBlobAdapter, RelationalAdapter, StorageRouter

ADMIN_TOKEN = "test-admin-token"


class MemoryObjectStore:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def put(self, key: str, data: bytes) -> None:
        self.objects[key] = data

    def get(self, key: str) -> Optional[bytes]:
        return self.objects.get(key)

    def delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.deleted.append(key)
            self.objects.pop(key, None)


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def legacy(redis_client) -> KeyBlobAdapter:
    return KeyBlobAdapter(redis_client)


@pytest.fixture
def relational(engine) -> RelationalAdapter:
    return RelationalAdapter(engine)


@pytest.fixture(params=["legacy", "new"])
def backend(request, legacy, relational):
    """Runs the test once against each backend implementation."""
    return legacy if request.param == "legacy" else relational


@pytest.fixture
def ledger(engine) -> MigrationLedger:
    return MigrationLedger(engine)


@pytest.fixture
def make_router(legacy, relational):
    def _make(failures: Optional[list] = None, with_legacy: bool = True, with_new: bool = True, **config):
        return StorageRouter(
            StorageConfig(**config),
            legacy=legacy if with_legacy else None,
            new=relational if with_new else None,
            on_dual_write_failure=failures.append if failures is not None else None,
        )

    return _make


@pytest.fixture
def object_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def app_config() -> StorageConfig:
    return StorageConfig(dual_write=True, migration_token=ADMIN_TOKEN, canary_users=frozenset({"canary@example.com"}))


@pytest.fixture
def client(app_config, redis_client, engine, object_store):
    app = create_app(app_config, redis_client=redis_client, engine=engine, object_store=object_store)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
