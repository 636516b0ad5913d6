"""Vote table bootstrap and repair migration.

``SchemaMigrator.run()`` inspects the live ``song_votes`` table and moves it
to the current shape:

- absent: create it, unless votes still live in the earlier ``song_ratings``
  table (``ip_address``, ``user_fingerprint``, ``rating``, ``created_at``),
  which is repaired like a legacy table under the current column names.
- legacy (no ``voter_fingerprint`` column, a unique index that ignores the
  fingerprint, or duplicate voter rows with no unique fingerprint index):
  copy to a backup table, recreate, re-populate keeping the highest id per
  ``(song_id, voter_fingerprint)``, drop the backup. All in one transaction.
- current but missing auxiliary columns: add them in place.

Index creation runs last on every path. Failures are logged and recorded on
the returned ``MigrationResult``; they never propagate, so the service can
start while the uniqueness guarantee is temporarily unenforced.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final

from onair.db.backends import StorageBackend
from onair.db.errors import MigrationFailure

logger = logging.getLogger(__name__)

VOTE_TABLE: Final[str] = "song_votes"
# Earlier generations stored votes under this name with older column names.
LEGACY_TABLE: Final[str] = "song_ratings"
BACKUP_TABLE: Final[str] = "song_votes_backup"
LOOKUP_INDEX: Final[str] = "idx_song_votes_song_address"
FINGERPRINT_INDEX: Final[str] = "idx_song_votes_song_fingerprint"

# Current column -> every name it has had, newest first. Insert order follows the keys.
COLUMN_HISTORY: Final[dict[str, tuple[str, ...]]] = {
    "song_id": ("song_id",),
    "session_id": ("session_id",),
    "network_address": ("network_address", "ip_address"),
    "voter_fingerprint": ("voter_fingerprint", "user_fingerprint"),
    "polarity": ("polarity", "rating"),
    "recorded_at": ("recorded_at", "created_at"),
}

# Columns that may be added to an otherwise current table without moving data.
ADDITIVE_COLUMNS: Final[dict[str, str]] = {
    "session_id": "TEXT",
    "network_address": "TEXT",
    "recorded_at": "TIMESTAMP",
}

INDEX_DDL: Final[dict[str, str]] = {
    LOOKUP_INDEX: (
        f"CREATE INDEX IF NOT EXISTS {LOOKUP_INDEX} "
        f"ON {VOTE_TABLE} (song_id, network_address)"
    ),
    FINGERPRINT_INDEX: (
        f"CREATE UNIQUE INDEX IF NOT EXISTS {FINGERPRINT_INDEX} "
        f"ON {VOTE_TABLE} (song_id, voter_fingerprint) "
        "WHERE voter_fingerprint IS NOT NULL"
    ),
}


class SchemaState(str, Enum):
    """Shape of the vote table as found before migrating."""

    ABSENT = "absent"
    LEGACY = "legacy"
    MISSING_COLUMNS = "missing_columns"
    CURRENT = "current"


@dataclass(frozen=True)
class IndexInfo:
    name: str
    unique: bool
    columns: tuple[str, ...]


@dataclass(frozen=True)
class SchemaInspection:
    state: SchemaState
    columns: tuple[str, ...] = ()
    indexes: tuple[IndexInfo, ...] = ()
    reason: str = ""
    source: str = VOTE_TABLE


@dataclass
class MigrationResult:
    """Outcome of one migrator run, exposed as a readiness signal."""

    state: SchemaState | None = None
    actions: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    finished_at: float | None = None

    @property
    def ready(self) -> bool:
        return self.state is not None and not self.errors

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value if self.state else None,
            "ready": self.ready,
            "actions": list(self.actions),
            "errors": list(self.errors),
            "finished_at": self.finished_at,
        }


def _column_mapping(columns: tuple[str, ...]) -> dict[str, str]:
    """Map each current column to the name it carries in ``columns``, if any."""
    mapping: dict[str, str] = {}
    for current, names in COLUMN_HISTORY.items():
        for name in names:
            if name in columns:
                mapping[current] = name
                break
    return mapping


class SchemaDialect:
    """Table DDL and catalog queries for one database engine."""

    id_column_ddl: str = ""

    def create_table_sql(self) -> str:
        return (
            f"CREATE TABLE {VOTE_TABLE} (\n"
            f"  {self.id_column_ddl},\n"
            "  song_id TEXT NOT NULL,\n"
            "  session_id TEXT,\n"
            "  network_address TEXT,\n"
            "  voter_fingerprint TEXT,\n"
            "  polarity INTEGER NOT NULL CHECK (polarity IN (1, -1)),\n"
            "  recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP\n"
            ")"
        )

    async def table_exists(self, backend: StorageBackend, table: str) -> bool:
        raise NotImplementedError

    async def columns(self, backend: StorageBackend, table: str) -> tuple[str, ...]:
        raise NotImplementedError

    async def indexes(self, backend: StorageBackend, table: str) -> tuple[IndexInfo, ...]:
        raise NotImplementedError


class SqliteSchema(SchemaDialect):
    id_column_ddl = "id INTEGER PRIMARY KEY AUTOINCREMENT"

    async def table_exists(self, backend: StorageBackend, table: str) -> bool:
        row = await backend.query_one(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )
        return row is not None

    async def columns(self, backend: StorageBackend, table: str) -> tuple[str, ...]:
        rows = await backend.query("SELECT name FROM pragma_table_info(?) ORDER BY cid", (table,))
        return tuple(row["name"] for row in rows)

    async def indexes(self, backend: StorageBackend, table: str) -> tuple[IndexInfo, ...]:
        listed = await backend.query(
            'SELECT name, "unique" AS is_unique, origin FROM pragma_index_list(?)',
            (table,),
        )
        found: list[IndexInfo] = []
        for entry in listed:
            if entry["origin"] == "pk":
                continue
            members = await backend.query(
                "SELECT name FROM pragma_index_info(?) ORDER BY seqno",
                (entry["name"],),
            )
            found.append(
                IndexInfo(
                    name=entry["name"],
                    unique=bool(entry["is_unique"]),
                    columns=tuple(member["name"] for member in members),
                )
            )
        return tuple(found)


class PostgresSchema(SchemaDialect):
    id_column_ddl = "id BIGSERIAL PRIMARY KEY"

    async def table_exists(self, backend: StorageBackend, table: str) -> bool:
        row = await backend.query_one(
            "SELECT 1 AS present FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = ?",
            (table,),
        )
        return row is not None

    async def columns(self, backend: StorageBackend, table: str) -> tuple[str, ...]:
        rows = await backend.query(
            "SELECT column_name AS name FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = ? "
            "ORDER BY ordinal_position",
            (table,),
        )
        return tuple(row["name"] for row in rows)

    async def indexes(self, backend: StorageBackend, table: str) -> tuple[IndexInfo, ...]:
        rows = await backend.query(
            """
            SELECT idx.relname AS name, ix.indisunique AS is_unique, att.attname AS column_name
            FROM pg_index ix
            JOIN pg_class tbl ON tbl.oid = ix.indrelid
            JOIN pg_class idx ON idx.oid = ix.indexrelid
            JOIN pg_namespace ns ON ns.oid = tbl.relnamespace
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, position) ON TRUE
            JOIN pg_attribute att ON att.attrelid = tbl.oid AND att.attnum = k.attnum
            WHERE tbl.relname = ? AND ns.nspname = current_schema() AND NOT ix.indisprimary
            ORDER BY idx.relname, k.position
            """,
            (table,),
        )
        grouped: dict[str, tuple[bool, list[str]]] = {}
        for row in rows:
            unique, members = grouped.setdefault(row["name"], (bool(row["is_unique"]), []))
            members.append(row["column_name"])
        return tuple(
            IndexInfo(name=name, unique=unique, columns=tuple(members))
            for name, (unique, members) in grouped.items()
        )


_DIALECTS: Final[dict[str, type[SchemaDialect]]] = {
    "sqlite": SqliteSchema,
    "postgresql": PostgresSchema,
}


class SchemaMigrator:
    """Bring the vote table to its current shape; safe to run repeatedly."""

    def __init__(self, backend: StorageBackend) -> None:
        try:
            self.dialect = _DIALECTS[backend.dialect]()
        except KeyError:
            raise ValueError(f"Unsupported backend dialect: {backend.dialect!r}") from None
        self.backend = backend
        self.last_result: MigrationResult | None = None

    async def inspect(self) -> SchemaInspection:
        """Classify the live vote table without changing it."""
        if not await self.dialect.table_exists(self.backend, VOTE_TABLE):
            if await self.dialect.table_exists(self.backend, LEGACY_TABLE):
                return SchemaInspection(
                    SchemaState.LEGACY,
                    await self.dialect.columns(self.backend, LEGACY_TABLE),
                    await self.dialect.indexes(self.backend, LEGACY_TABLE),
                    f"votes are stored in the earlier {LEGACY_TABLE} table",
                    source=LEGACY_TABLE,
                )
            return SchemaInspection(SchemaState.ABSENT)

        columns = await self.dialect.columns(self.backend, VOTE_TABLE)
        indexes = await self.dialect.indexes(self.backend, VOTE_TABLE)

        def legacy(reason: str) -> SchemaInspection:
            return SchemaInspection(SchemaState.LEGACY, columns, indexes, reason)

        if "voter_fingerprint" not in columns:
            return legacy("voter_fingerprint column is missing")

        for index in indexes:
            if index.unique and "voter_fingerprint" not in index.columns:
                return legacy(f"unique index {index.name} on {', '.join(index.columns)}")

        enforced = any(
            index.unique and index.columns == ("song_id", "voter_fingerprint")
            for index in indexes
        )
        if not enforced and await self._has_duplicate_voters():
            return legacy("duplicate votes per voter with no unique fingerprint index")

        missing = [name for name in ADDITIVE_COLUMNS if name not in columns]
        if missing:
            return SchemaInspection(
                SchemaState.MISSING_COLUMNS,
                columns,
                indexes,
                f"missing column(s): {', '.join(missing)}",
            )
        return SchemaInspection(SchemaState.CURRENT, columns, indexes)

    async def run(self) -> MigrationResult:
        result = MigrationResult()

        try:
            inspection = await self.inspect()
            result.state = inspection.state
            if inspection.reason:
                logger.info("Vote table is %s: %s", inspection.state.value, inspection.reason)
            else:
                logger.info("Vote table is %s", inspection.state.value)

            if inspection.state is SchemaState.ABSENT:
                await self._create_table(result)
            elif inspection.state is SchemaState.LEGACY:
                await self._repair(inspection, result)
            elif inspection.state is SchemaState.MISSING_COLUMNS:
                await self._add_columns(inspection, result)
        except Exception as error:  # noqa: BLE001 - migration failures are non-fatal
            self._record_failure(result, "migration", error)

        try:
            await self._ensure_indexes(result)
        except Exception as error:  # noqa: BLE001 - migration failures are non-fatal
            self._record_failure(result, "index creation", error)

        result.finished_at = time.time()
        if result.ready:
            logger.info("Vote table schema up to date (%d change(s))", len(result.actions))
        else:
            logger.warning(
                "Vote table schema not reconciled; one-vote-per-voter may be unenforced "
                "until the next successful run"
            )
        self.last_result = result
        return result

    async def _has_duplicate_voters(self) -> bool:
        row = await self.backend.query_one(
            f"SELECT song_id FROM {VOTE_TABLE} "
            "WHERE voter_fingerprint IS NOT NULL "
            "GROUP BY song_id, voter_fingerprint HAVING COUNT(*) > 1 LIMIT 1"
        )
        return row is not None

    async def _count(self, table: str) -> int:
        row = await self.backend.query_one(f"SELECT COUNT(*) AS total FROM {table}")
        return int(row["total"]) if row else 0

    async def _create_table(self, result: MigrationResult) -> None:
        await self.backend.execute(self.dialect.create_table_sql())
        result.actions.append(f"created table {VOTE_TABLE}")
        logger.info("Created table %s", VOTE_TABLE)

    async def _repair(self, inspection: SchemaInspection, result: MigrationResult) -> None:
        source = inspection.source
        mapping = _column_mapping(inspection.columns)
        if "song_id" not in mapping or "polarity" not in mapping:
            raise MigrationFailure(
                f"{source} has no song_id/polarity columns; cannot carry votes over"
            )
        if await self.dialect.table_exists(self.backend, BACKUP_TABLE):
            raise MigrationFailure(
                f"{BACKUP_TABLE} already exists; inspect and drop it before repairing {source}"
            )

        targets = ", ".join(mapping)
        selected = ", ".join(mapping.values())
        polarity = mapping["polarity"]
        if "voter_fingerprint" in mapping:
            if "id" not in inspection.columns:
                raise MigrationFailure(f"{source} has no id column to pick surviving votes")
            fingerprint = mapping["voter_fingerprint"]
            # Last write wins per voter; rows without a fingerprint are all kept.
            copy = (
                f"INSERT INTO {VOTE_TABLE} ({targets}) "
                f"SELECT {selected} FROM {BACKUP_TABLE} "
                f"WHERE {polarity} IN (1, -1) AND ({fingerprint} IS NULL OR id IN ("
                f"SELECT MAX(id) FROM {BACKUP_TABLE} "
                f"WHERE {fingerprint} IS NOT NULL AND {polarity} IN (1, -1) "
                f"GROUP BY song_id, {fingerprint})) "
                "ORDER BY id"
            )
        else:
            order = " ORDER BY id" if "id" in inspection.columns else ""
            copy = (
                f"INSERT INTO {VOTE_TABLE} ({targets}) "
                f"SELECT {selected} FROM {BACKUP_TABLE} WHERE {polarity} IN (1, -1){order}"
            )

        before = await self._count(source)
        logger.info("Migrating %s to the current schema (%d row(s))", source, before)
        await self.backend.execute_script(
            [
                f"CREATE TABLE {BACKUP_TABLE} AS SELECT * FROM {source}",
                f"DROP TABLE {source}",
                self.dialect.create_table_sql(),
                copy,
                f"DROP TABLE {BACKUP_TABLE}",
            ]
        )
        after = await self._count(VOTE_TABLE)
        origin = "" if source == VOTE_TABLE else f" from {source}"
        result.actions.append(
            f"rebuilt table {VOTE_TABLE}{origin} ({after} of {before} row(s) kept)"
        )
        logger.info("Table migration complete: kept %d of %d row(s)", after, before)

    async def _add_columns(self, inspection: SchemaInspection, result: MigrationResult) -> None:
        missing = [name for name in ADDITIVE_COLUMNS if name not in inspection.columns]
        await self.backend.execute_script(
            [
                f"ALTER TABLE {VOTE_TABLE} ADD COLUMN {name} {ADDITIVE_COLUMNS[name]}"
                for name in missing
            ]
        )
        for name in missing:
            result.actions.append(f"added column {name}")
            logger.info("Added %s column to %s", name, VOTE_TABLE)

    async def _ensure_indexes(self, result: MigrationResult) -> None:
        existing = {index.name for index in await self.dialect.indexes(self.backend, VOTE_TABLE)}
        for name, ddl in INDEX_DDL.items():
            if name in existing:
                continue
            await self.backend.execute(ddl)
            result.actions.append(f"created index {name}")
            logger.info("Created index %s", name)

    def _record_failure(self, result: MigrationResult, step: str, error: Exception) -> None:
        result.errors.append(f"{step}: {error}")
        logger.exception("Vote table %s failed: %s", step, error)
