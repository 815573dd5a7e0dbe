"""Command line helpers for checking configuration and running provider tasks."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import CONFIG_FILE, CustomProviderOptions, DatabaseConfiguration, load_database_config
from .errors import ConfigurationError, ProviderError
from .migrations import load_migrations
from .provider import PostgresDatabaseProvider

LOG = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pgprovider", description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help=f"TOML configuration file (default {CONFIG_FILE})")
    parser.add_argument("--connection-string", default=None, help="Override the configured connection string")
    parser.add_argument(
        "--option",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra provider option, may be repeated",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("check", help="Validate configuration and print the redacted connection")
    migrate = commands.add_parser("migrate", help="Apply pending schema migrations")
    migrate.add_argument("--migrations", type=Path, default=None, help="Directory of *.sql migrations")
    commands.add_parser("maintain", help="Run VACUUM (ANALYZE) and REINDEX on the database")
    return parser.parse_args(argv)


def build_configuration(args: argparse.Namespace) -> DatabaseConfiguration:
    if args.config is not None or args.connection_string is None:
        config = load_database_config(args.config or CONFIG_FILE)
    else:
        config = DatabaseConfiguration(custom_provider_options=CustomProviderOptions())
    if args.connection_string:
        config = config.with_connection_string(args.connection_string)
    custom = config.custom_provider_options or CustomProviderOptions()
    for item in args.option:
        key, separator, value = item.partition("=")
        if not separator or not key:
            raise ConfigurationError(f"Options must look like KEY=VALUE, got {item!r}")
        custom = custom.with_option(key, value)
    return config.model_copy(update={"custom_provider_options": custom})


async def _migrate(provider: PostgresDatabaseProvider) -> list[str]:
    try:
        return await provider.migrate()
    finally:
        await provider.shutdown()


async def _maintain(provider: PostgresDatabaseProvider) -> None:
    provider.ensure_connection_factory()
    try:
        await provider.run_scheduled_maintenance()
    finally:
        await provider.shutdown()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        configuration = build_configuration(args)
        migrations = load_migrations(args.migrations) if getattr(args, "migrations", None) else ()
        provider = PostgresDatabaseProvider(migrations=migrations)
        session = provider.initialise(configuration)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except ProviderError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.command == "check":
        policy = session.policy
        print(session.redacted_connection_string)
        print(f"command_timeout={policy.command_timeout}")
        if policy.retry_enabled:
            print(f"retries=enabled count={policy.retry_count} delay={policy.retry_delay_seconds}s")
        else:
            print("retries=disabled")
        print(f"history_schema={session.history_schema or '(default)'}")
        return 0

    try:
        if args.command == "migrate":
            applied = asyncio.run(_migrate(provider))
            print(f"Applied {len(applied)} migration(s).")
        else:
            asyncio.run(_maintain(provider))
            print("Maintenance complete.")
    except ProviderError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


__all__ = ["build_configuration", "main", "parse_args"]
