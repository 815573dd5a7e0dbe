"""Tests for the provider lifecycle operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import pytest

from pgprovider.config import CustomDatabaseOption, CustomProviderOptions, DatabaseConfiguration
from pgprovider.errors import (
    ArgumentError,
    ConfigurationError,
    MaintenanceError,
    MigrationError,
    ProviderStateError,
    PurgeError,
    UnsupportedOperationError,
)
from pgprovider.migrations import Migration
from pgprovider.provider import PostgresDatabaseProvider, ProviderState
from pgprovider.session import SchemaSession

BASE = "Host=db;Database=jf;Username=u;Password=p"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakeTransaction:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, *exc: object) -> None:
        return None


class _FakeConnection:
    def __init__(self, database: str = "jf", fail_on: str | None = None) -> None:
        self.database = database
        self.fail_on = fail_on
        self.statements: list[str] = []

    async def execute(self, sql: str, *args: object) -> str:
        self.statements.append(sql)
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError(f"backend rejected: {sql}")
        return "OK"

    async def fetch(self, sql: str, *args: object) -> list[dict[str, str]]:
        self.statements.append(sql)
        return []

    async def fetchval(self, sql: str, *args: object) -> str:
        self.statements.append(sql)
        return self.database

    def transaction(self) -> _FakeTransaction:
        return _FakeTransaction()


class _FakeFactory:
    def __init__(self, connection: _FakeConnection | None = None) -> None:
        self.connection = connection or _FakeConnection()
        self.runs = 0
        self.closed = 0

    async def run(self, work: Callable[[Any], Awaitable[Any]]) -> Any:
        self.runs += 1
        return await work(self.connection)

    async def execute(self, connection: Any, sql: str, *args: object) -> str:
        return await connection.execute(sql, *args)

    async def close(self) -> None:
        self.closed += 1


def _configuration(*options: tuple[str, str], connection_string: str | None = BASE) -> DatabaseConfiguration:
    return DatabaseConfiguration(
        custom_provider_options=CustomProviderOptions(
            connection_string=connection_string,
            options=[CustomDatabaseOption(key=key, value=value) for key, value in options],
        )
    )


def _initialised(factory: _FakeFactory | None = None, **kwargs: Any) -> PostgresDatabaseProvider:
    provider = PostgresDatabaseProvider(connection_factory=factory, **kwargs)
    provider.initialise(_configuration())
    return provider


def test_initialise_builds_session_and_changes_state() -> None:
    provider = PostgresDatabaseProvider()

    session = provider.initialise(
        _configuration(("builder:SearchPath", "public"), ("command-timeout", "60"), ("enable-retry-on-failure", "yes"))
    )

    assert isinstance(session, SchemaSession)
    assert provider.state is ProviderState.INITIALIZED
    assert provider.session is session
    assert session.descriptor.get("Search Path") == "public"
    assert session.policy.command_timeout == 60
    assert (session.policy.retry_count, session.policy.retry_delay_seconds) == (5, 15)
    assert provider.connection_factory is None


@pytest.mark.parametrize("timeout", ["abc", "0", "-5"])
def test_failed_initialise_leaves_provider_unusable(timeout: str) -> None:
    provider = PostgresDatabaseProvider()

    with pytest.raises(ConfigurationError, match="command-timeout"):
        provider.initialise(_configuration(("command-timeout", timeout)))

    assert provider.state is ProviderState.UNINITIALIZED
    assert provider.session is None


@pytest.mark.parametrize("connection_string", [None, "", "  "])
def test_initialise_requires_a_connection_string(connection_string: str | None) -> None:
    with pytest.raises(ConfigurationError):
        PostgresDatabaseProvider().initialise(_configuration(connection_string=connection_string))


def test_initialise_requires_custom_options() -> None:
    with pytest.raises(ConfigurationError, match="custom provider options"):
        PostgresDatabaseProvider().initialise(DatabaseConfiguration())


def test_initialise_runs_once() -> None:
    provider = _initialised()

    with pytest.raises(ProviderStateError):
        provider.initialise(_configuration())


def test_initialise_logs_redacted_summary(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="pgprovider")

    _initialised()

    assert "Configured PostgreSQL connection: Host=db, Database=jf, Username=u" in caplog.text
    assert "Password" not in caplog.text


def test_provider_key_is_attached() -> None:
    assert PostgresDatabaseProvider.provider_key == "PostgreSQL"  # type: ignore[attr-defined]


@pytest.mark.anyio
async def test_maintenance_without_factory_is_a_logged_no_op(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="pgprovider")
    provider = PostgresDatabaseProvider()

    await provider.run_scheduled_maintenance()

    assert "connection factory is not ready" in caplog.text


@pytest.mark.anyio
async def test_maintenance_runs_commands_in_order(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="pgprovider")
    factory = _FakeFactory()
    provider = _initialised(factory)

    await provider.run_scheduled_maintenance()

    assert factory.connection.statements == [
        "SELECT current_database()",
        "VACUUM (ANALYZE);",
        'REINDEX DATABASE "jf";',
    ]
    assert factory.runs == 1
    assert "Executed maintenance command: VACUUM (ANALYZE);" in caplog.text
    assert 'Executed maintenance command: REINDEX DATABASE "jf";' in caplog.text


@pytest.mark.anyio
async def test_maintenance_escapes_database_name() -> None:
    factory = _FakeFactory(_FakeConnection(database='media"db'))
    provider = _initialised(factory)

    await provider.run_scheduled_maintenance()

    assert factory.connection.statements[-1] == 'REINDEX DATABASE "media""db";'


@pytest.mark.anyio
async def test_maintenance_failure_is_wrapped_without_rollback() -> None:
    factory = _FakeFactory(_FakeConnection(fail_on="REINDEX"))
    provider = _initialised(factory)

    with pytest.raises(MaintenanceError) as excinfo:
        await provider.run_scheduled_maintenance()

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert "VACUUM (ANALYZE);" in factory.connection.statements


@pytest.mark.anyio
async def test_maintenance_honours_cancellation() -> None:
    factory = _FakeFactory()
    provider = _initialised(factory)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(asyncio.CancelledError):
        await provider.run_scheduled_maintenance(cancel=cancel)

    assert factory.connection.statements == []


@pytest.mark.anyio
async def test_purge_truncates_all_tables_in_one_statement() -> None:
    factory = _FakeFactory()
    provider = _initialised(factory)

    await provider.purge_tables(["users", 'sess"ions'])

    assert factory.connection.statements == [
        'TRUNCATE TABLE "users", "sess""ions" RESTART IDENTITY CASCADE;'
    ]
    assert factory.runs == 1


@pytest.mark.anyio
async def test_purge_with_no_tables_touches_nothing() -> None:
    factory = _FakeFactory()
    provider = _initialised(factory)

    await provider.purge_tables([])
    await provider.purge_tables(iter(()))

    assert factory.runs == 0
    assert factory.connection.statements == []


@pytest.mark.anyio
async def test_purge_rejects_missing_collection() -> None:
    provider = _initialised(_FakeFactory())

    with pytest.raises(ArgumentError):
        await provider.purge_tables(None)
    with pytest.raises(ArgumentError):
        await provider.purge_tables("users")


@pytest.mark.anyio
async def test_purge_rejects_blank_names_before_touching_the_database() -> None:
    factory = _FakeFactory()
    provider = _initialised(factory)

    with pytest.raises(ArgumentError):
        await provider.purge_tables(["users", "  "])

    assert factory.runs == 0


@pytest.mark.anyio
async def test_purge_failure_is_wrapped() -> None:
    factory = _FakeFactory(_FakeConnection(fail_on="TRUNCATE"))
    provider = _initialised(factory)

    with pytest.raises(PurgeError, match='"missing"'):
        await provider.purge_tables(["missing"])


@pytest.mark.anyio
async def test_purge_requires_initialisation() -> None:
    provider = PostgresDatabaseProvider(connection_factory=_FakeFactory())

    with pytest.raises(ProviderStateError):
        await provider.purge_tables(["users"])


@pytest.mark.anyio
async def test_migrate_builds_factory_and_applies_migrations() -> None:
    factory = _FakeFactory()
    built: list[SchemaSession] = []

    def _builder(session: SchemaSession) -> _FakeFactory:
        built.append(session)
        return factory

    provider = PostgresDatabaseProvider(
        migrations=[Migration("0001_initial", ("CREATE TABLE users (id int);",))],
        factory_builder=_builder,
    )
    provider.initialise(_configuration(("default-schema", "media")))

    applied = await provider.migrate()

    assert applied == ["0001_initial"]
    assert built and built[0].history_schema == "media"
    assert provider.connection_factory is factory
    assert 'CREATE SCHEMA IF NOT EXISTS "media";' in factory.connection.statements
    assert "CREATE TABLE users (id int);" in factory.connection.statements


@pytest.mark.anyio
async def test_migrate_wraps_backend_failures() -> None:
    factory = _FakeFactory(_FakeConnection(fail_on="CREATE TABLE users"))
    provider = _initialised(factory, migrations=[Migration("0001", ("CREATE TABLE users ();",))])

    with pytest.raises(MigrationError):
        await provider.migrate()


@pytest.mark.anyio
async def test_migrate_requires_initialisation() -> None:
    with pytest.raises(ProviderStateError):
        await PostgresDatabaseProvider().migrate()


@pytest.mark.anyio
async def test_shutdown_closes_factory_and_is_idempotent() -> None:
    factory = _FakeFactory()
    provider = _initialised(factory)

    await provider.shutdown()
    await provider.shutdown()

    assert factory.closed == 1
    assert provider.state is ProviderState.SHUT_DOWN
    assert provider.connection_factory is None


@pytest.mark.anyio
async def test_operations_after_shutdown_are_rejected() -> None:
    provider = _initialised(_FakeFactory())
    await provider.shutdown()

    with pytest.raises(ProviderStateError):
        await provider.run_scheduled_maintenance()
    with pytest.raises(ProviderStateError):
        await provider.purge_tables(["users"])
    with pytest.raises(ProviderStateError):
        await provider.migrate()


@pytest.mark.anyio
async def test_shutdown_before_initialise_is_harmless() -> None:
    provider = PostgresDatabaseProvider()

    await provider.shutdown()

    assert provider.state is ProviderState.UNINITIALIZED


@pytest.mark.anyio
@pytest.mark.parametrize("initialise", [False, True])
async def test_backup_family_is_unsupported(initialise: bool) -> None:
    provider = _initialised(_FakeFactory()) if initialise else PostgresDatabaseProvider()

    with pytest.raises(UnsupportedOperationError, match="outside"):
        await provider.migration_backup_fast()
    with pytest.raises(UnsupportedOperationError):
        await provider.restore_backup_fast("key")
    with pytest.raises(UnsupportedOperationError):
        await provider.delete_backup("")
