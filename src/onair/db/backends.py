"""Storage backends behind a uniform, backend-neutral query interface.

Two implementations exist:

- ``EmbeddedStore``: single-process SQLite (file or memory). Every call runs
  synchronously inside the coroutine and is serialized by a process-wide
  lock, so callers never suspend.
- ``PooledRelationalStore``: PostgreSQL over asyncpg with a bounded pool.
  Calls suspend while waiting for a connection or the server; waiting longer
  than the pool timeout raises ``ConnectionExhausted``.

Both accept neutral statements (``?`` placeholders), translate them once and
return plain ``dict`` rows or an ``ExecResult``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import create_engine, event, exc
from sqlalchemy.engine import URL, CursorResult
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from onair.db.errors import (
    BackendUnavailable,
    ConnectionExhausted,
    ConstraintViolation,
    StorageError,
)
from onair.db.translator import (
    PostgresTranslator,
    QueryTranslator,
    SqliteTranslator,
    TranslatedStatement,
)

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@dataclass(frozen=True)
class ExecResult:
    """Uniform outcome of a mutation on any backend."""

    inserted_id: int | None
    rows_affected: int


class StorageBackend(Protocol):
    """Operations the rest of the service needs from a database."""

    dialect: str
    translator: QueryTranslator

    async def query(self, statement: str, params: Sequence[Any] = ()) -> list[Row]:
        ...

    async def query_one(self, statement: str, params: Sequence[Any] = ()) -> Row | None:
        ...

    async def execute(self, statement: str, params: Sequence[Any] = ()) -> ExecResult:
        ...

    async def execute_script(self, statements: Sequence[str]) -> None:
        ...

    async def close(self) -> None:
        ...


def _backend_message(error: exc.SQLAlchemyError) -> str:
    original = getattr(error, "orig", None)
    return str(original) if original is not None else str(error)


def _storage_error(
    error: exc.SQLAlchemyError,
    statement: str | None,
    *,
    transient: tuple[type[BaseException], ...] = (),
) -> StorageError:
    """Map a SQLAlchemy exception onto the storage error taxonomy."""
    message = _backend_message(error)
    if isinstance(error, exc.IntegrityError):
        return ConstraintViolation(message, statement=statement)
    if isinstance(error, exc.TimeoutError):
        return ConnectionExhausted(message, statement=statement)
    if isinstance(error, transient) or getattr(error, "connection_invalidated", False):
        return BackendUnavailable(message, statement=statement)
    return StorageError(message, statement=statement)


def _unreachable(error: BaseException, statement: str | None) -> BackendUnavailable:
    # Raw socket and connect-timeout errors can escape the driver unwrapped.
    return BackendUnavailable(str(error) or type(error).__name__, statement=statement)


def _materialize(
    result: CursorResult[Any],
    translated: TranslatedStatement,
) -> tuple[list[Row], ExecResult]:
    rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
    affected = result.rowcount if result.rowcount is not None else -1
    if affected < 0:
        affected = len(rows) if translated.returns_id else 0

    inserted_id: int | None = None
    if translated.returns_id:
        inserted_id = rows[0].get("id") if rows else None
    elif translated.is_insert:
        inserted_id = result.lastrowid
    return rows, ExecResult(inserted_id=inserted_id, rows_affected=affected)


class EmbeddedStore:
    """SQLite-backed store for development and tests."""

    dialect = "sqlite"

    def __init__(self, path: str = ":memory:", *, echo: bool = False) -> None:
        self.path = path
        self.translator: QueryTranslator = SqliteTranslator()
        self._lock = threading.RLock()

        if path == ":memory:":
            # A single shared connection keeps the in-memory database alive.
            self._engine = create_engine(
                "sqlite+pysqlite:///:memory:",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self._engine = create_engine(
                f"sqlite+pysqlite:///{path}",
                echo=echo,
                connect_args={"check_same_thread": False},
            )

        # pysqlite only opens transactions before DML on its own; take over so
        # DDL inside ``begin()`` commits or rolls back with everything else.
        @event.listens_for(self._engine, "connect")
        def _disable_driver_transactions(dbapi_connection: Any, _record: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(self._engine, "begin")
        def _emit_begin(connection: Any) -> None:
            connection.exec_driver_sql("BEGIN")

    def _run(self, translated: TranslatedStatement) -> tuple[list[Row], ExecResult]:
        with self._lock:
            try:
                with self._engine.begin() as conn:
                    result = conn.exec_driver_sql(translated.sql, translated.params)
                    return _materialize(result, translated)
            except exc.SQLAlchemyError as error:
                logger.debug("SQLite statement failed: %s", error)
                raise _storage_error(error, translated.sql) from error

    async def query(self, statement: str, params: Sequence[Any] = ()) -> list[Row]:
        rows, _ = self._run(self.translator.translate(statement, params))
        return rows

    async def query_one(self, statement: str, params: Sequence[Any] = ()) -> Row | None:
        rows = await self.query(statement, params)
        return rows[0] if rows else None

    async def execute(self, statement: str, params: Sequence[Any] = ()) -> ExecResult:
        _, outcome = self._run(self.translator.translate(statement, params, mutation=True))
        return outcome

    async def execute_script(self, statements: Sequence[str]) -> None:
        """Run parameterless statements in one transaction."""
        translated = [self.translator.translate(sql) for sql in statements]
        with self._lock:
            current: str | None = None
            try:
                with self._engine.begin() as conn:
                    for item in translated:
                        current = item.sql
                        conn.exec_driver_sql(item.sql)
            except exc.SQLAlchemyError as error:
                raise _storage_error(error, current) from error

    async def close(self) -> None:
        with self._lock:
            self._engine.dispose()


class PooledRelationalStore:
    """PostgreSQL store with a bounded asyncpg connection pool."""

    dialect = "postgresql"

    _TRANSIENT = (exc.OperationalError, exc.InterfaceError)

    def __init__(
        self,
        url: str | URL,
        *,
        pool_size: int = 20,
        pool_timeout: float = 2.0,
        connect_timeout: float = 2.0,
        pool_recycle: int = 1800,
        echo: bool = False,
    ) -> None:
        self.translator: QueryTranslator = PostgresTranslator()
        self._engine = create_async_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            connect_args={"timeout": connect_timeout},
        )

    async def _run(self, translated: TranslatedStatement) -> tuple[list[Row], ExecResult]:
        try:
            async with self._engine.begin() as conn:
                result = await conn.exec_driver_sql(translated.sql, translated.params)
                return _materialize(result, translated)
        except exc.SQLAlchemyError as error:
            logger.debug("PostgreSQL statement failed: %s", error)
            raise _storage_error(error, translated.sql, transient=self._TRANSIENT) from error
        except (OSError, TimeoutError) as error:
            raise _unreachable(error, translated.sql) from error

    async def query(self, statement: str, params: Sequence[Any] = ()) -> list[Row]:
        rows, _ = await self._run(self.translator.translate(statement, params))
        return rows

    async def query_one(self, statement: str, params: Sequence[Any] = ()) -> Row | None:
        rows = await self.query(statement, params)
        return rows[0] if rows else None

    async def execute(self, statement: str, params: Sequence[Any] = ()) -> ExecResult:
        _, outcome = await self._run(self.translator.translate(statement, params, mutation=True))
        return outcome

    async def execute_script(self, statements: Sequence[str]) -> None:
        """Run parameterless statements in one transaction."""
        translated = [self.translator.translate(sql) for sql in statements]
        current: str | None = None
        try:
            async with self._engine.begin() as conn:
                for item in translated:
                    current = item.sql
                    await conn.exec_driver_sql(item.sql)
        except exc.SQLAlchemyError as error:
            raise _storage_error(error, current, transient=self._TRANSIENT) from error
        except (OSError, TimeoutError) as error:
            raise _unreachable(error, current) from error

    async def close(self) -> None:
        await self._engine.dispose()
