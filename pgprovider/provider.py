"""PostgreSQL implementation of the host's database provider contract."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Iterable, Protocol, Sequence

from .config import DatabaseConfiguration
from .converters import DateTimeKindConverter
from .errors import (
    ArgumentError,
    ConfigurationError,
    MaintenanceError,
    MigrationError,
    ProviderError,
    ProviderStateError,
    PurgeError,
    UnsupportedOperationError,
)
from .migrations import Migration, MigrationRunner
from .registry import provider_key
from .resiliency import raise_if_cancelled
from .sanitize import quote_identifier
from .session import PROVIDER_KEY, AsyncpgConnectionFactory, ConnectionFactory, SchemaSession, configure_session

LOG = logging.getLogger(__name__)

BACKUP_UNSUPPORTED = (
    "PostgreSQL backups must be handled outside of the media server, for example with pg_dump and pg_restore."
)

ConnectionFactoryBuilder = Callable[[SchemaSession], ConnectionFactory]


class ProviderState(str, Enum):
    """Lifecycle of a provider instance."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    SHUT_DOWN = "shut_down"


class DatabaseProvider(Protocol):
    """Capability set the host expects from a database backend."""

    connection_factory: ConnectionFactory | None

    def initialise(self, configuration: DatabaseConfiguration) -> SchemaSession: ...

    async def migrate(self, *, cancel: asyncio.Event | None = None) -> list[str]: ...

    async def run_scheduled_maintenance(self, *, cancel: asyncio.Event | None = None) -> None: ...

    async def purge_tables(
        self, table_names: Iterable[str] | None, *, cancel: asyncio.Event | None = None
    ) -> None: ...

    async def shutdown(self) -> None: ...

    async def migration_backup_fast(self, *, cancel: asyncio.Event | None = None) -> str: ...

    async def restore_backup_fast(self, key: str, *, cancel: asyncio.Event | None = None) -> None: ...

    async def delete_backup(self, key: str) -> None: ...


@provider_key(PROVIDER_KEY)
class PostgresDatabaseProvider:
    """Configures the host to persist its relational state in PostgreSQL."""

    def __init__(
        self,
        *,
        migrations: Sequence[Migration] = (),
        connection_factory: ConnectionFactory | None = None,
        factory_builder: ConnectionFactoryBuilder | None = None,
        converter: DateTimeKindConverter | None = None,
        logger: logging.Logger = LOG,
    ) -> None:
        self._migrations = tuple(migrations)
        self._converter = converter or DateTimeKindConverter()
        self._factory_builder = factory_builder or self._default_factory
        self._logger = logger
        self._session: SchemaSession | None = None
        self._state = ProviderState.UNINITIALIZED
        self.connection_factory: ConnectionFactory | None = connection_factory

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def session(self) -> SchemaSession | None:
        return self._session

    def initialise(self, configuration: DatabaseConfiguration) -> SchemaSession:
        """Resolve connection and resiliency settings; runs once per instance."""

        if self._state is not ProviderState.UNINITIALIZED:
            raise ProviderStateError(f"Provider cannot be initialised from state '{self._state.value}'.")
        if configuration is None:
            raise ArgumentError("A database configuration must be supplied.")
        custom = configuration.custom_provider_options
        if custom is None:
            raise ConfigurationError("The PostgreSQL provider requires custom provider options.")
        self._session = configure_session(
            custom.connection_string,
            custom.provider_options(),
            provider_key=getattr(type(self), "provider_key", PROVIDER_KEY),
            logger=self._logger,
        )
        self._state = ProviderState.INITIALIZED
        return self._session

    def ensure_connection_factory(self) -> ConnectionFactory:
        """Return the live connection factory, building it from the session if needed."""

        session = self._require_session()
        if self.connection_factory is None:
            self.connection_factory = self._factory_builder(session)
        return self.connection_factory

    async def migrate(self, *, cancel: asyncio.Event | None = None) -> list[str]:
        """Create or upgrade the schema; returns the ids of newly applied migrations."""

        session = self._require_session()
        factory = self.ensure_connection_factory()
        runner = MigrationRunner(
            session.provider_key,
            self._migrations,
            history_table=session.history_table,
            history_schema=session.history_schema,
        )
        raise_if_cancelled(cancel)
        try:
            applied = await factory.run(lambda connection: runner.apply(connection, cancel=cancel))
        except ProviderError:
            raise
        except Exception as exc:
            raise MigrationError(f"Applying PostgreSQL migrations failed: {exc}") from exc
        self._logger.info(
            "PostgreSQL schema is up to date",
            extra={"applied": applied, "known": len(runner.migrations)},
        )
        return applied

    async def run_scheduled_maintenance(self, *, cancel: asyncio.Event | None = None) -> None:
        """Vacuum/analyze and reindex the current database."""

        if self._state is ProviderState.SHUT_DOWN:
            raise ProviderStateError("Provider has been shut down.")
        factory = self.connection_factory
        if factory is None:
            self._logger.debug("Skipping PostgreSQL optimization because the connection factory is not ready.")
            return
        raise_if_cancelled(cancel)

        async def _maintain(connection: Any) -> None:
            for command in await self._maintenance_commands(connection):
                raise_if_cancelled(cancel)
                await factory.execute(connection, command)
                self._logger.info("Executed maintenance command: %s", command)

        try:
            await factory.run(_maintain)
        except ProviderError:
            raise
        except Exception as exc:
            raise MaintenanceError(f"PostgreSQL maintenance failed: {exc}") from exc

    async def purge_tables(
        self, table_names: Iterable[str] | None, *, cancel: asyncio.Event | None = None
    ) -> None:
        """Truncate the given tables in one statement, resetting identities and cascading."""

        if table_names is None:
            raise ArgumentError("table_names cannot be None.")
        if isinstance(table_names, str):
            raise ArgumentError("table_names must be a collection of names, not a single string.")
        identifiers = [quote_identifier(name) for name in table_names]
        if not identifiers:
            return
        self._require_session()
        factory = self.ensure_connection_factory()
        sql = f"TRUNCATE TABLE {', '.join(identifiers)} RESTART IDENTITY CASCADE;"
        raise_if_cancelled(cancel)

        async def _purge(connection: Any) -> None:
            raise_if_cancelled(cancel)
            await factory.execute(connection, sql)

        try:
            await factory.run(_purge)
        except ProviderError:
            raise
        except Exception as exc:
            raise PurgeError(f"Failed to purge tables {', '.join(identifiers)}: {exc}") from exc

    async def shutdown(self) -> None:
        """Release pooled connections; safe to call more than once."""

        factory, self.connection_factory = self.connection_factory, None
        if factory is not None:
            await factory.close()
        if self._state is ProviderState.INITIALIZED:
            self._state = ProviderState.SHUT_DOWN

    async def migration_backup_fast(self, *, cancel: asyncio.Event | None = None) -> str:
        raise UnsupportedOperationError(BACKUP_UNSUPPORTED)

    async def restore_backup_fast(self, key: str, *, cancel: asyncio.Event | None = None) -> None:
        raise UnsupportedOperationError(BACKUP_UNSUPPORTED)

    async def delete_backup(self, key: str) -> None:
        raise UnsupportedOperationError(BACKUP_UNSUPPORTED)

    async def _maintenance_commands(self, connection: Any) -> list[str]:
        database = await connection.fetchval("SELECT current_database()")
        return [
            "VACUUM (ANALYZE);",
            f"REINDEX DATABASE {quote_identifier(database)};",
        ]

    def _require_session(self) -> SchemaSession:
        if self._state is ProviderState.SHUT_DOWN:
            raise ProviderStateError("Provider has been shut down.")
        if self._session is None:
            raise ProviderStateError("Provider has not been initialised.")
        return self._session

    def _default_factory(self, session: SchemaSession) -> ConnectionFactory:
        return AsyncpgConnectionFactory(session, converter=self._converter)


__all__ = [
    "BACKUP_UNSUPPORTED",
    "DatabaseProvider",
    "PostgresDatabaseProvider",
    "ProviderState",
]
