"""PostgreSQL database provider for the media server host."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import CustomDatabaseOption, CustomProviderOptions, DatabaseConfiguration, load_database_config
from .descriptor import ConnectionDescriptor, build_connection_descriptor, parse_connection_string
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
from .migrations import Migration, MigrationRunner, load_migrations
from .options import OptionEntry, ProviderOptions
from .provider import DatabaseProvider, PostgresDatabaseProvider, ProviderState
from .registry import ProviderRegistry, default_registry, provider_key
from .resiliency import ResiliencyPolicy, resolve_resiliency_policy
from .sanitize import quote_identifier
from .session import AsyncpgConnectionFactory, ConnectionFactory, SchemaSession, configure_session

__all__ = [
    "ArgumentError",
    "AsyncpgConnectionFactory",
    "ConfigurationError",
    "ConnectionDescriptor",
    "ConnectionFactory",
    "CustomDatabaseOption",
    "CustomProviderOptions",
    "DatabaseConfiguration",
    "DatabaseProvider",
    "MaintenanceError",
    "Migration",
    "MigrationError",
    "MigrationRunner",
    "OptionEntry",
    "PostgresDatabaseProvider",
    "ProviderError",
    "ProviderOptions",
    "ProviderRegistry",
    "ProviderState",
    "ProviderStateError",
    "PurgeError",
    "ResiliencyPolicy",
    "SchemaSession",
    "UnsupportedOperationError",
    "__version__",
    "build_connection_descriptor",
    "configure_session",
    "default_registry",
    "load_database_config",
    "load_migrations",
    "parse_connection_string",
    "provider_key",
    "quote_identifier",
    "resolve_resiliency_policy",
]
