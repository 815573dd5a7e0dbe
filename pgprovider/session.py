"""Schema session configuration and the asyncpg-backed connection factory."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, TypeVar, runtime_checkable

import asyncpg

from .converters import DateTimeKindConverter
from .descriptor import ConnectionDescriptor, build_connection_descriptor
from .errors import ProviderStateError
from .migrations import HISTORY_TABLE
from .options import DEFAULT_SCHEMA, ProviderOptions
from .resiliency import ResiliencyPolicy, resolve_resiliency_policy, resolve_sensitive_data_logging

LOG = logging.getLogger(__name__)
SQL_LOG = logging.getLogger("pgprovider.sql")

PROVIDER_KEY = "PostgreSQL"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SchemaSession:
    """Resolved connection, resiliency and migration-history settings."""

    descriptor: ConnectionDescriptor
    policy: ResiliencyPolicy
    provider_key: str = PROVIDER_KEY
    history_schema: str | None = None
    history_table: str = HISTORY_TABLE
    sensitive_data_logging: bool = False

    @property
    def redacted_connection_string(self) -> str:
        return self.descriptor.redacted().to_connection_string()

    def pool_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``asyncpg.create_pool``."""

        kwargs: dict[str, Any] = self.descriptor.connect_kwargs()
        kwargs.update(self.descriptor.pool_kwargs())
        if self.policy.command_timeout is not None:
            kwargs["command_timeout"] = float(self.policy.command_timeout)
        return kwargs


def configure_session(
    connection_string: str | None,
    options: ProviderOptions,
    *,
    provider_key: str = PROVIDER_KEY,
    logger: logging.Logger = LOG,
) -> SchemaSession:
    """Build a session from raw options; ConfigurationError leaves nothing behind."""

    descriptor = build_connection_descriptor(connection_string, options)
    policy = resolve_resiliency_policy(options)
    history_schema = options.get_str(DEFAULT_SCHEMA)
    sensitive = resolve_sensitive_data_logging(options)
    if sensitive:
        logger.warning(
            "EnableSensitiveDataLogging is enabled on the PostgreSQL provider. Avoid using this in production."
        )
    session = SchemaSession(
        descriptor=descriptor,
        policy=policy,
        provider_key=provider_key,
        history_schema=history_schema.strip() if history_schema and history_schema.strip() else None,
        sensitive_data_logging=sensitive,
    )
    safe = descriptor.redacted()
    logger.info(
        "Configured PostgreSQL connection: Host=%s, Database=%s, Username=%s",
        safe.host,
        safe.database,
        safe.username,
    )
    return session


@runtime_checkable
class ConnectionFactory(Protocol):
    """Hands out live connections for lifecycle operations."""

    async def run(self, work: Callable[[Any], Awaitable[T]]) -> T:
        """Run ``work`` on a pooled connection under the session's resiliency policy."""

    async def execute(self, connection: Any, sql: str, *args: object) -> str:
        """Execute one statement, logging it to the SQL logger."""

    async def close(self) -> None:
        """Release every pooled connection; safe to call repeatedly."""


class AsyncpgConnectionFactory:
    """Owns the asyncpg pool for one schema session."""

    def __init__(
        self,
        session: SchemaSession,
        *,
        converter: DateTimeKindConverter | None = None,
    ) -> None:
        self._session = session
        self._converter = converter or DateTimeKindConverter()
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()
        self._closed = False
        self._previous_sql_level: int | None = None
        if session.sensitive_data_logging:
            self._previous_sql_level = SQL_LOG.level
            SQL_LOG.setLevel(logging.DEBUG)

    @property
    def session(self) -> SchemaSession:
        return self._session

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._closed:
            raise ProviderStateError("The connection factory has been closed.")
        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(
                    init=self._converter.register,
                    **self._session.pool_kwargs(),
                )
                if self._closed:
                    await pool.close()
                    raise ProviderStateError("The connection factory has been closed.")
                self._pool = pool
                LOG.debug("Opened PostgreSQL connection pool", extra={"host": self._session.descriptor.host})
            return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            yield connection

    async def run(self, work: Callable[[Any], Awaitable[T]]) -> T:
        async def _attempt() -> T:
            async with self.acquire() as connection:
                return await work(connection)

        return await self._session.policy.run(_attempt)

    async def execute(self, connection: Any, sql: str, *args: object) -> str:
        if self._session.sensitive_data_logging and args:
            SQL_LOG.debug("Executing %s with parameters %r", sql, args)
        else:
            SQL_LOG.debug("Executing %s", sql)
        return await connection.execute(sql, *args)

    async def close(self) -> None:
        self._closed = True
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            LOG.debug("Closed PostgreSQL connection pool")
        if self._previous_sql_level is not None:
            SQL_LOG.setLevel(self._previous_sql_level)
            self._previous_sql_level = None


__all__ = [
    "AsyncpgConnectionFactory",
    "ConnectionFactory",
    "PROVIDER_KEY",
    "SchemaSession",
    "configure_session",
]
