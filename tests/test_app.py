"""Tests for application wiring and startup migration."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from onair.db.backends import EmbeddedStore
from onair.db.schema import MigrationResult, SchemaState
from onair.main import create_app, run_startup_migration


def test_startup_opens_backend_and_migrates(test_settings) -> None:
    app = create_app(test_settings)
    with TestClient(app, base_url="http://test") as client:
        assert isinstance(app.state.backend, EmbeddedStore)
        assert app.state.migration.ready
        assert client.get("/").json()["name"] == test_settings.app_name
    assert app.state.backend is None


def test_disabled_startup_migration_reports_degraded(test_settings) -> None:
    test_settings.migrate_on_startup = False
    with TestClient(create_app(test_settings), base_url="http://test") as client:
        body = client.get("/api/health").json()
    assert body["status"] == "degraded"
    assert body["schema"]["ready"] is False


def test_custom_api_prefix(test_settings) -> None:
    test_settings.api_prefix = "/radio/v2"
    with TestClient(create_app(test_settings), base_url="http://test") as client:
        assert client.get("/radio/v2/ratings/s1").status_code == 200
        assert client.get("/api/ratings/s1").status_code == 404


@pytest.mark.asyncio
async def test_failed_startup_migration_is_retried(mocker) -> None:
    failed = MigrationResult(state=SchemaState.LEGACY, errors=["migration: locked"])
    succeeded = MigrationResult(state=SchemaState.LEGACY, actions=["rebuilt table song_votes"])
    migrator = mocker.MagicMock()
    migrator.run = mocker.AsyncMock(side_effect=[failed, succeeded])
    mocker.patch("onair.main.SchemaMigrator", return_value=migrator)
    sleep = mocker.patch("onair.main.asyncio.sleep", new=mocker.AsyncMock())

    result = await run_startup_migration(mocker.MagicMock(), attempts=3)

    assert result is succeeded
    assert migrator.run.await_count == 2
    sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_startup_migration_gives_up_without_raising(mocker, caplog) -> None:
    failed = MigrationResult(state=None, errors=["migration: connection refused"])
    migrator = mocker.MagicMock()
    migrator.run = mocker.AsyncMock(return_value=failed)
    mocker.patch("onair.main.SchemaMigrator", return_value=migrator)
    mocker.patch("onair.main.asyncio.sleep", new=mocker.AsyncMock())

    result = await run_startup_migration(mocker.MagicMock(), attempts=2)

    assert not result.ready
    assert migrator.run.await_count == 2
    assert "unreconciled vote table" in caplog.text
