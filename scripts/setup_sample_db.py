"""Utility that launches a disposable PostgreSQL Docker container for pgprovider."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pgprovider.config import (
    CONFIG_FILE,
    CustomDatabaseOption,
    CustomProviderOptions,
    DatabaseConfiguration,
    save_database_config,
)
from pgprovider.descriptor import ConnectionDescriptor

DEFAULT_CONTAINER = "pgprovider-sample-db"
DEFAULT_PORT = 5544
DEFAULT_PASSWORD = "pgprovider"
DEFAULT_DB = "media"
DEFAULT_USER = "media"
DOCKER_IMAGE = "postgres:16-alpine"
READY_TIMEOUT_SECONDS = 20


def docker(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    print("$ docker", " ".join(args))
    return subprocess.run(["docker", *args], check=check, text=True, capture_output=True)


def ensure_container(args: argparse.Namespace) -> None:
    """Start the sample container, creating it on first use, and wait for Postgres."""

    if docker("start", args.container, check=False).returncode != 0:
        docker(
            "run",
            "--detach",
            "--name",
            args.container,
            "--env",
            f"POSTGRES_PASSWORD={args.password}",
            "--env",
            f"POSTGRES_DB={args.database}",
            "--env",
            f"POSTGRES_USER={args.user}",
            "--publish",
            f"{args.port}:5432",
            DOCKER_IMAGE,
        )
    deadline = time.monotonic() + READY_TIMEOUT_SECONDS
    while time.monotonic() < deadline:
        ready = docker("exec", args.container, "pg_isready", "-U", args.user, "-d", args.database, check=False)
        if ready.returncode == 0:
            return
        time.sleep(0.5)
    print(f"Warning: {args.container} not accepting connections after {READY_TIMEOUT_SECONDS}s.")


def sample_configuration(port: int, user: str, database: str, password: str) -> DatabaseConfiguration:
    descriptor = ConnectionDescriptor(
        (
            ("Host", "localhost"),
            ("Port", str(port)),
            ("Database", database),
            ("Username", user),
            ("Password", password),
        )
    )
    return DatabaseConfiguration(
        custom_provider_options=CustomProviderOptions(
            plugin_name="PostgreSQL",
            connection_string=descriptor.to_connection_string(),
            options=[
                CustomDatabaseOption(key="command-timeout", value="60"),
                CustomDatabaseOption(key="enable-retry-on-failure", value="true"),
                CustomDatabaseOption(key="builder:Application Name", value="pgprovider-sample"),
            ],
        )
    )


def update_config(config: DatabaseConfiguration, path: Path, *, force: bool) -> None:
    if path.exists() and not force:
        print(f"{path} already exists; leaving as-is (use --force to overwrite).")
        return
    save_database_config(config, path)
    print(f"Wrote sample database configuration to {path}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Postgres on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Where to write the configuration")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing configuration file")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        ensure_container(args)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    update_config(
        sample_configuration(args.port, args.user, args.database, args.password),
        args.config,
        force=args.force,
    )
    print(f"Sample database is ready. Try: python -m pgprovider --config {args.config} check")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
