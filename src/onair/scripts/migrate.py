"""Run the vote table migration once against the configured database."""

from __future__ import annotations

import argparse
import asyncio
import sys

from onair.core.settings import Settings, settings
from onair.db.schema import MigrationResult, SchemaMigrator
from onair.db.session import create_backend
from onair.main import configure_logging


async def run_migration(config: Settings) -> MigrationResult:
    backend = create_backend(config)
    try:
        return await SchemaMigrator(backend).run()
    finally:
        await backend.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create or repair the song_votes table")
    parser.add_argument(
        "--database-type",
        choices=["sqlite", "postgres"],
        help="Override DATABASE_TYPE for this run.",
    )
    parser.add_argument("--db-path", help="Override DB_PATH (SQLite only).")
    args = parser.parse_args(argv)

    overrides: dict[str, str] = {}
    if args.database_type:
        overrides["database_type"] = args.database_type
    if args.db_path:
        overrides["db_path"] = args.db_path
    config = settings.model_copy(update=overrides) if overrides else settings

    configure_logging(config.log_level)
    result = asyncio.run(run_migration(config))

    state = result.state.value if result.state else "unknown"
    print(f"[migrate] table state before run: {state}")
    for action in result.actions:
        print(f"[migrate] {action}")
    if not result.ready:
        for error in result.errors:
            print(f"[migrate] error: {error}", file=sys.stderr)
        sys.exit(1)
    print("[migrate] schema up to date")


if __name__ == "__main__":
    main()
