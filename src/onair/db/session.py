"""Storage backend selection."""

from __future__ import annotations

import logging

from onair.core.settings import Settings
from onair.db.backends import EmbeddedStore, PooledRelationalStore, StorageBackend

logger = logging.getLogger(__name__)


def create_backend(config: Settings) -> StorageBackend:
    """Build the storage backend named by ``config.database_type``.

    The choice is made once here; nothing downstream branches on the
    backend type again.
    """
    if config.database_type == "postgres":
        logger.info(
            "Using PostgreSQL at %s:%s/%s (pool size %d)",
            config.postgres_host,
            config.postgres_port,
            config.postgres_db,
            config.db_pool_size,
        )
        return PooledRelationalStore(
            config.postgres_url,
            pool_size=config.db_pool_size,
            pool_timeout=config.db_pool_timeout_seconds,
            connect_timeout=config.db_connect_timeout_seconds,
            pool_recycle=config.db_pool_recycle_seconds,
            echo=config.sql_debug,
        )

    logger.info("Using SQLite database: %s", config.db_path)
    return EmbeddedStore(config.db_path, echo=config.sql_debug)
