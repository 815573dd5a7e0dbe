"""Database configuration loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .options import OptionEntry, ProviderOptions

CONFIG_FILE = Path("config") / "database.toml"


class CustomDatabaseOption(BaseModel):
    """One ``key``/``value`` pair under ``custom_provider_options.options``."""

    key: str
    value: str


class CustomProviderOptions(BaseModel):
    """Provider-specific section of the database configuration."""

    plugin_name: str | None = None
    connection_string: str | None = None
    options: list[CustomDatabaseOption] = Field(default_factory=list)

    def provider_options(self) -> ProviderOptions:
        return ProviderOptions(OptionEntry(option.key, option.value) for option in self.options)

    def with_option(self, key: str, value: str) -> CustomProviderOptions:
        """Return a copy with an option appended."""

        options = [*self.options, CustomDatabaseOption(key=key, value=value)]
        return self.model_copy(update={"options": options})


class DatabaseConfiguration(BaseModel):
    """Shape of the host's database configuration file."""

    database_type: str = "PostgreSQL"
    custom_provider_options: CustomProviderOptions | None = None

    def with_connection_string(self, connection_string: str) -> DatabaseConfiguration:
        """Return a copy with the provider connection string replaced."""

        custom = self.custom_provider_options or CustomProviderOptions()
        custom = custom.model_copy(update={"connection_string": connection_string})
        return self.model_copy(update={"custom_provider_options": custom})


def load_database_config(path: Path = CONFIG_FILE) -> DatabaseConfiguration:
    """Load and validate the configuration file, raising ConfigurationError on any problem."""

    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Database configuration not found: {path}") from exc
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"Could not read database configuration {path}: {exc}") from exc
    try:
        return DatabaseConfiguration.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid database configuration {path}: {exc}") from exc


def _toml_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t")
    return f'"{escaped}"'


def save_database_config(config: DatabaseConfiguration, path: Path = CONFIG_FILE) -> None:
    """Persist configuration to disk."""

    path.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [f"database_type = {_toml_string(config.database_type)}"]
    custom = config.custom_provider_options
    if custom is not None:
        lines.append("")
        lines.append("[custom_provider_options]")
        if custom.plugin_name:
            lines.append(f"plugin_name = {_toml_string(custom.plugin_name)}")
        if custom.connection_string is not None:
            lines.append(f"connection_string = {_toml_string(custom.connection_string)}")
        for option in custom.options:
            lines.append("")
            lines.append("[[custom_provider_options.options]]")
            lines.append(f"key = {_toml_string(option.key)}")
            lines.append(f"value = {_toml_string(option.value)}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


__all__ = [
    "CONFIG_FILE",
    "CustomDatabaseOption",
    "CustomProviderOptions",
    "DatabaseConfiguration",
    "load_database_config",
    "save_database_config",
]
