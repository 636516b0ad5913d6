"""Tests for the SQLite-backed store."""

from __future__ import annotations

import pytest

from onair.db.backends import EmbeddedStore, ExecResult
from onair.db.errors import ConstraintViolation, StorageError, TranslationError


async def _create_items(store: EmbeddedStore) -> None:
    await store.execute(
        "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT UNIQUE, qty INTEGER)"
    )


@pytest.mark.asyncio
async def test_insert_reports_generated_id(store: EmbeddedStore) -> None:
    await _create_items(store)
    first = await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("a", 1))
    second = await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("b", 2))
    assert first == ExecResult(inserted_id=1, rows_affected=1)
    assert second.inserted_id == 2


@pytest.mark.asyncio
async def test_update_reports_rows_affected_without_id(store: EmbeddedStore) -> None:
    await _create_items(store)
    await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("a", 1))
    await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("b", 1))
    outcome = await store.execute("UPDATE items SET qty = ? WHERE qty = ?", (5, 1))
    assert outcome.inserted_id is None
    assert outcome.rows_affected == 2


@pytest.mark.asyncio
async def test_ddl_reports_zero_rows(store: EmbeddedStore) -> None:
    outcome = await store.execute("CREATE TABLE t (x INTEGER)")
    assert outcome.rows_affected == 0
    assert outcome.inserted_id is None


@pytest.mark.asyncio
async def test_reads_return_dict_rows(store: EmbeddedStore) -> None:
    await _create_items(store)
    await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("what?", 3))
    rows = await store.query("SELECT name, qty FROM items WHERE name = 'what?' AND qty = ?", (3,))
    assert rows == [{"name": "what?", "qty": 3}]
    assert await store.query_one("SELECT name FROM items WHERE qty = ?", (99,)) is None
    assert await store.query("SELECT name FROM items WHERE qty = ?", (99,)) == []


@pytest.mark.asyncio
async def test_unique_conflict_raises_constraint_violation(store: EmbeddedStore) -> None:
    await _create_items(store)
    await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("a", 1))
    with pytest.raises(ConstraintViolation) as excinfo:
        await store.execute("INSERT INTO items (name, qty) VALUES (?, ?)", ("a", 2))
    assert "UNIQUE" in excinfo.value.message
    assert excinfo.value.statement is not None


@pytest.mark.asyncio
async def test_malformed_statement_raises_storage_error(store: EmbeddedStore) -> None:
    with pytest.raises(StorageError) as excinfo:
        await store.query("SELEC 1")
    assert not isinstance(excinfo.value, ConstraintViolation)
    assert "syntax error" in excinfo.value.message


@pytest.mark.asyncio
async def test_placeholder_mismatch_fails_before_execution(store: EmbeddedStore) -> None:
    with pytest.raises(TranslationError):
        await store.query("SELECT ?", ())


@pytest.mark.asyncio
async def test_script_is_all_or_nothing(store: EmbeddedStore) -> None:
    await _create_items(store)
    with pytest.raises(StorageError):
        await store.execute_script(
            [
                "CREATE TABLE scratch (x INTEGER)",
                "INSERT INTO items (name, qty) VALUES ('a', 1)",
                "INSERT INTO missing_table VALUES (1)",
            ]
        )
    assert await store.query("SELECT name FROM sqlite_master WHERE name = 'scratch'") == []
    assert await store.query("SELECT * FROM items") == []


@pytest.mark.asyncio
async def test_file_database_persists_across_instances(tmp_path) -> None:
    path = str(tmp_path / "radio.db")
    first = EmbeddedStore(path)
    await first.execute("CREATE TABLE t (x INTEGER)")
    await first.execute("INSERT INTO t (x) VALUES (?)", (7,))
    await first.close()

    second = EmbeddedStore(path)
    try:
        assert await second.query("SELECT x FROM t") == [{"x": 7}]
    finally:
        await second.close()
