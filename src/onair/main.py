"""Main entry point for the OnAir application."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from onair.api import ratings_router, system_router
from onair.core.settings import Settings, settings
from onair.db.backends import StorageBackend
from onair.db.errors import StorageError, TransientStorageError
from onair.db.schema import MigrationResult, SchemaMigrator
from onair.db.session import create_backend
from onair.services.ledger import VoteValidationError

logger = logging.getLogger(__name__)

STARTUP_RETRY_DELAY_SECONDS = 0.5


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def run_startup_migration(backend: StorageBackend, attempts: int = 1) -> MigrationResult:
    """Run the schema migrator, retrying a failed run up to ``attempts`` times in total.

    Never raises; the final result is returned even when it is not ready.
    """
    migrator = SchemaMigrator(backend)
    result = await migrator.run()
    attempt = 1
    while not result.ready and attempt < attempts:
        attempt += 1
        logger.warning("Retrying vote table migration (attempt %d of %d)", attempt, attempts)
        await asyncio.sleep(STARTUP_RETRY_DELAY_SECONDS)
        result = await migrator.run()
    if not result.ready:
        logger.error("Starting with an unreconciled vote table: %s", "; ".join(result.errors))
    return result


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(VoteValidationError)
    async def _vote_validation(_request: Request, exc: VoteValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": exc.reason})

    @app.exception_handler(TransientStorageError)
    async def _storage_busy(_request: Request, exc: TransientStorageError) -> JSONResponse:
        logger.warning("Storage temporarily unavailable: %s", exc.message)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Storage temporarily unavailable, please retry"},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(StorageError)
    async def _storage_failed(_request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage error: %s (statement: %s)", exc.message, exc.statement)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal storage error"},
        )


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application around one storage backend."""
    config = app_settings or settings

    app = FastAPI(
        title=config.app_name,
        description="Listener-facing radio API with anonymous song ratings",
        version=config.app_version,
    )
    app.state.settings = config
    app.state.backend = None
    app.state.migration = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware)

    app.include_router(ratings_router, prefix=config.api_prefix)
    app.include_router(system_router, prefix=config.api_prefix)
    _register_exception_handlers(app)

    @app.on_event("startup")
    async def on_startup() -> None:
        configure_logging(config.log_level)
        backend = create_backend(config)
        app.state.backend = backend
        if config.migrate_on_startup:
            app.state.migration = await run_startup_migration(
                backend, config.startup_migration_attempts
            )
        else:
            logger.info("Startup migration disabled; run onair-migrate before serving votes")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        backend: StorageBackend | None = app.state.backend
        if backend is not None:
            await backend.close()
            app.state.backend = None

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": config.app_name,
            "version": config.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("onair.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
