from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from onair.core.settings import Settings
from onair.db.backends import EmbeddedStore
from onair.db.schema import SchemaMigrator
from onair.main import create_app
from onair.services.ledger import VoteLedger


@pytest_asyncio.fixture()
async def store() -> AsyncIterator[EmbeddedStore]:
    backend = EmbeddedStore(":memory:")
    try:
        yield backend
    finally:
        await backend.close()


@pytest_asyncio.fixture()
async def migrated_store(store: EmbeddedStore) -> EmbeddedStore:
    result = await SchemaMigrator(store).run()
    assert result.ready, result.errors
    return store


@pytest.fixture()
def ledger(migrated_store: EmbeddedStore) -> VoteLedger:
    return VoteLedger(migrated_store)


@pytest.fixture()
def test_settings() -> Settings:
    """Isolated settings backed by an in-memory database."""
    return Settings(
        database_type="sqlite",
        db_path=":memory:",
        api_prefix="/api",
        startup_migration_attempts=1,
    )


@pytest.fixture()
def client(test_settings: Settings) -> Iterator[TestClient]:
    with TestClient(create_app(test_settings), base_url="http://test") as test_client:
        yield test_client
