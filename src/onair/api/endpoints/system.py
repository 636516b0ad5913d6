"""Health and readiness endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from onair.api.dependencies import BackendDep
from onair.db.errors import StorageError
from onair.db.schema import MigrationResult

router = APIRouter(tags=["system"])


@router.get("/health")
async def get_health(request: Request, backend: BackendDep) -> dict[str, object]:
    """Report database reachability and whether the vote schema is reconciled.

    ``status`` is ``degraded`` while the last migration has not completed
    cleanly, since one-vote-per-voter may then be unenforced.
    """
    try:
        await backend.query_one("SELECT 1 AS ok")
        db_status = "healthy"
    except StorageError as e:
        db_status = f"unhealthy: {e.message}"

    migration: MigrationResult | None = getattr(request.app.state, "migration", None)
    schema = migration.as_dict() if migration else {"state": None, "ready": False}

    if db_status != "healthy":
        status = "unhealthy"
    elif not schema["ready"]:
        status = "degraded"
    else:
        status = "ok"

    return {
        "status": status,
        "database": db_status,
        "schema": schema,
        "timestamp": int(time.time()),
    }
