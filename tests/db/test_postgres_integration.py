"""End-to-end checks against a live PostgreSQL server.

Set ``TEST_POSTGRES_URL`` (``postgresql+asyncpg://...``) to a disposable
database to run them.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from onair.db.backends import PooledRelationalStore
from onair.db.errors import ConstraintViolation
from onair.db.schema import SchemaMigrator, SchemaState
from onair.services.ledger import VoteLedger, VoteTally

POSTGRES_URL = os.getenv("TEST_POSTGRES_URL")

pytestmark = pytest.mark.skipif(not POSTGRES_URL, reason="TEST_POSTGRES_URL not set")


@pytest_asyncio.fixture()
async def pg_store() -> AsyncIterator[PooledRelationalStore]:
    store = PooledRelationalStore(POSTGRES_URL, pool_size=2)
    await store.execute_script(
        [
            "DROP TABLE IF EXISTS song_votes_backup",
            "DROP TABLE IF EXISTS song_votes",
            "DROP TABLE IF EXISTS song_ratings",
        ]
    )
    try:
        yield store
    finally:
        await store.execute_script(["DROP TABLE IF EXISTS song_votes"])
        await store.close()


@pytest.mark.asyncio
async def test_bootstrap_and_ledger(pg_store: PooledRelationalStore) -> None:
    migrator = SchemaMigrator(pg_store)
    assert (await migrator.run()).state is SchemaState.ABSENT
    second = await migrator.run()
    assert second.state is SchemaState.CURRENT
    assert second.actions == []

    ledger = VoteLedger(pg_store)
    assert await ledger.submit_vote("s1", "f1", 1) == VoteTally(1, 0, 1)
    assert await ledger.submit_vote("s1", "f1", -1) == VoteTally(0, 1, -1)
    assert (await ledger.submit_vote("s1", "f2", 1)).upvotes == 1


@pytest.mark.asyncio
async def test_insert_reports_id_and_unique_index_rejects(pg_store: PooledRelationalStore) -> None:
    await SchemaMigrator(pg_store).run()
    statement = "INSERT INTO song_votes (song_id, voter_fingerprint, polarity) VALUES (?, ?, ?)"

    outcome = await pg_store.execute(statement, ("s1", "f1", 1))

    assert outcome.inserted_id is not None
    assert outcome.rows_affected == 1
    with pytest.raises(ConstraintViolation):
        await pg_store.execute(statement, ("s1", "f1", -1))


@pytest.mark.asyncio
async def test_legacy_table_is_repaired(pg_store: PooledRelationalStore) -> None:
    await pg_store.execute_script(
        [
            "CREATE TABLE song_votes (id SERIAL PRIMARY KEY, song_id TEXT, "
            "voter_fingerprint TEXT, polarity INTEGER)",
            "CREATE UNIQUE INDEX idx_song_votes_song ON song_votes (song_id, polarity)",
            "INSERT INTO song_votes (song_id, voter_fingerprint, polarity) VALUES "
            "('s1', 'f1', 1), ('s1', 'f1', -1), ('s2', 'f1', 1)",
        ]
    )

    result = await SchemaMigrator(pg_store).run()

    assert result.state is SchemaState.LEGACY
    assert result.ready, result.errors
    rows = await pg_store.query(
        "SELECT song_id, voter_fingerprint, polarity FROM song_votes ORDER BY id"
    )
    assert rows == [
        {"song_id": "s1", "voter_fingerprint": "f1", "polarity": -1},
        {"song_id": "s2", "voter_fingerprint": "f1", "polarity": 1},
    ]


@pytest.mark.asyncio
async def test_song_ratings_table_is_carried_over(pg_store: PooledRelationalStore) -> None:
    await pg_store.execute_script(
        [
            "CREATE TABLE song_ratings (id SERIAL PRIMARY KEY, song_id TEXT NOT NULL, "
            "session_id TEXT, ip_address TEXT, user_fingerprint TEXT, "
            "rating INTEGER NOT NULL, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)",
            "INSERT INTO song_ratings (song_id, ip_address, user_fingerprint, rating) VALUES "
            "('s1', '10.0.0.1', 'f1', 1), ('s1', '10.0.0.2', 'f1', -1)",
        ]
    )

    result = await SchemaMigrator(pg_store).run()

    assert result.state is SchemaState.LEGACY
    assert result.ready, result.errors
    assert await VoteLedger(pg_store).get_votes("s1", "f1") == VoteTally(0, 1, -1)
    assert await pg_store.query_one(
        "SELECT 1 AS present FROM information_schema.tables "
        "WHERE table_schema = current_schema() AND table_name = ?",
        ("song_ratings",),
    ) is None
