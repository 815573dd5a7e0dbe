"""History-table migration runner keyed by provider."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

from .errors import MigrationError
from .resiliency import raise_if_cancelled
from .sanitize import quote_identifier

LOG = logging.getLogger(__name__)

HISTORY_TABLE = "__migrations_history"


@dataclass(frozen=True, slots=True)
class Migration:
    """One named, ordered schema change."""

    migration_id: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256()
        digest.update(f"{self.migration_id}\n".encode())
        for statement in self.statements:
            normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
            digest.update(normalized.encode("utf-8"))
            digest.update(b"\n--\n")
        return digest.hexdigest()


@dataclass(frozen=True, slots=True)
class AppliedMigration:
    migration_id: str
    checksum: str


def load_migrations(directory: Path) -> tuple[Migration, ...]:
    """Read ``*.sql`` files ordered by name; the file stem is the migration id."""

    if not directory.is_dir():
        raise MigrationError(f"Migrations directory not found: {directory}")
    migrations: list[Migration] = []
    for path in sorted(directory.glob("*.sql")):
        text = path.read_text(encoding="utf-8")
        if text.strip():
            migrations.append(Migration(migration_id=path.stem, statements=(text,)))
    return tuple(migrations)


def advisory_lock_key(provider_key: str) -> int:
    """Stable signed 64-bit key for ``pg_advisory_lock``."""

    digest = hashlib.sha256(provider_key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class MigrationRunner:
    """Applies pending migrations and records them in the history table."""

    def __init__(
        self,
        provider_key: str,
        migrations: Iterable[Migration],
        *,
        history_table: str = HISTORY_TABLE,
        history_schema: str | None = None,
    ) -> None:
        self._provider_key = provider_key
        self._migrations: tuple[Migration, ...] = tuple(migrations)
        self._history_table = history_table
        self._history_schema = history_schema or None
        seen: set[str] = set()
        for migration in self._migrations:
            if migration.migration_id in seen:
                raise MigrationError(f"Duplicate migration id '{migration.migration_id}'")
            seen.add(migration.migration_id)

    @property
    def migrations(self) -> Sequence[Migration]:
        return self._migrations

    @property
    def qualified_history_table(self) -> str:
        table = quote_identifier(self._history_table)
        if self._history_schema:
            return f"{quote_identifier(self._history_schema)}.{table}"
        return table

    def _create_history_sql(self) -> list[str]:
        statements: list[str] = []
        if self._history_schema:
            statements.append(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(self._history_schema)};")
        statements.append(
            f"CREATE TABLE IF NOT EXISTS {self.qualified_history_table} ("
            "migration_id text NOT NULL, "
            "provider_key text NOT NULL, "
            "checksum text NOT NULL, "
            "applied_at timestamptz NOT NULL DEFAULT now(), "
            "PRIMARY KEY (provider_key, migration_id));"
        )
        return statements

    async def applied(self, connection: Any) -> dict[str, AppliedMigration]:
        rows = await connection.fetch(
            f"SELECT migration_id, checksum FROM {self.qualified_history_table} "
            "WHERE provider_key = $1 ORDER BY migration_id",
            self._provider_key,
        )
        return {
            str(row["migration_id"]): AppliedMigration(str(row["migration_id"]), str(row["checksum"]))
            for row in rows
        }

    async def pending(self, connection: Any) -> list[Migration]:
        applied = await self.applied(connection)
        pending: list[Migration] = []
        for migration in self._migrations:
            record = applied.get(migration.migration_id)
            if record is None:
                pending.append(migration)
            elif record.checksum != migration.checksum:
                raise MigrationError(
                    f"Checksum mismatch for migration '{migration.migration_id}': "
                    f"db={record.checksum} code={migration.checksum}"
                )
        return pending

    async def apply(self, connection: Any, *, cancel: asyncio.Event | None = None) -> list[str]:
        """Apply pending migrations in order, one transaction each; returns applied ids."""

        lock_key = advisory_lock_key(self._provider_key)
        for statement in self._create_history_sql():
            await connection.execute(statement)
        await connection.execute("SELECT pg_advisory_lock($1)", lock_key)
        applied: list[str] = []
        try:
            for migration in await self.pending(connection):
                raise_if_cancelled(cancel)
                async with connection.transaction():
                    for statement in migration.statements:
                        await connection.execute(statement)
                    await connection.execute(
                        f"INSERT INTO {self.qualified_history_table} "
                        "(migration_id, provider_key, checksum) VALUES ($1, $2, $3)",
                        migration.migration_id,
                        self._provider_key,
                        migration.checksum,
                    )
                LOG.info(
                    "Applied migration",
                    extra={"migration": migration.migration_id, "provider": self._provider_key},
                )
                applied.append(migration.migration_id)
        finally:
            await connection.execute("SELECT pg_advisory_unlock($1)", lock_key)
        return applied


__all__ = [
    "AppliedMigration",
    "HISTORY_TABLE",
    "Migration",
    "MigrationRunner",
    "advisory_lock_key",
    "load_migrations",
]
