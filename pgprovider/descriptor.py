"""Connection descriptor parsing, overrides and asyncpg keyword mapping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

from .errors import ConfigurationError
from .options import BUILDER_PREFIX, ProviderOptions, parse_int

LOG = logging.getLogger(__name__)

PASSWORD_MASK = "********"

HOST = "Host"
PORT = "Port"
DATABASE = "Database"
USERNAME = "Username"
PASSWORD = "Password"
SEARCH_PATH = "Search Path"
APPLICATION_NAME = "Application Name"
TIMEOUT = "Timeout"
COMMAND_TIMEOUT = "Command Timeout"
SSL_MODE = "SSL Mode"
MINIMUM_POOL_SIZE = "Minimum Pool Size"
MAXIMUM_POOL_SIZE = "Maximum Pool Size"

_SYNONYMS: Mapping[str, str] = {
    "host": HOST,
    "server": HOST,
    "port": PORT,
    "database": DATABASE,
    "db": DATABASE,
    "username": USERNAME,
    "user": USERNAME,
    "userid": USERNAME,
    "uid": USERNAME,
    "password": PASSWORD,
    "pwd": PASSWORD,
    "psw": PASSWORD,
    "searchpath": SEARCH_PATH,
    "applicationname": APPLICATION_NAME,
    "timeout": TIMEOUT,
    "commandtimeout": COMMAND_TIMEOUT,
    "sslmode": SSL_MODE,
    "minimumpoolsize": MINIMUM_POOL_SIZE,
    "minpoolsize": MINIMUM_POOL_SIZE,
    "maximumpoolsize": MAXIMUM_POOL_SIZE,
    "maxpoolsize": MAXIMUM_POOL_SIZE,
    "pooling": "Pooling",
    "passfile": "Passfile",
    "keepalive": "Keepalive",
    "includeerrordetail": "Include Error Detail",
    "connectionidlelifetime": "Connection Idle Lifetime",
    "targetsessionattributes": "Target Session Attributes",
    "rootcertificate": "Root Certificate",
    "sslcertificate": "SSL Certificate",
    "sslkey": "SSL Key",
    "options": "Options",
}

_INTEGER_KEYWORDS = frozenset(
    {PORT, TIMEOUT, COMMAND_TIMEOUT, MINIMUM_POOL_SIZE, MAXIMUM_POOL_SIZE}
)

_SSL_MODES: Mapping[str, str] = {
    "disable": "disable",
    "allow": "allow",
    "prefer": "prefer",
    "require": "require",
    "verifyca": "verify-ca",
    "verifyfull": "verify-full",
}

# Keywords consumed by connect_kwargs()/pool_kwargs(); anything else stays in
# the descriptor but is not understood by asyncpg.
_DRIVER_KEYWORDS = frozenset(
    {
        HOST,
        PORT,
        DATABASE,
        USERNAME,
        PASSWORD,
        SEARCH_PATH,
        APPLICATION_NAME,
        TIMEOUT,
        COMMAND_TIMEOUT,
        SSL_MODE,
        MINIMUM_POOL_SIZE,
        MAXIMUM_POOL_SIZE,
    }
)


def _normalize(keyword: str) -> str:
    return "".join(keyword.split()).replace("_", "").lower()


def canonical_keyword(keyword: str) -> str:
    """Map a keyword or one of its synonyms onto its canonical spelling."""

    stripped = keyword.strip()
    if not stripped or any(char in stripped for char in ";="):
        raise ConfigurationError(f"Invalid connection string keyword: {keyword!r}")
    return _SYNONYMS.get(_normalize(stripped), stripped)


@dataclass(frozen=True, slots=True)
class ConnectionDescriptor:
    """Ordered, canonical keyword/value pairs describing one connection."""

    pairs: tuple[tuple[str, str], ...] = ()

    def __repr__(self) -> str:
        return f"ConnectionDescriptor({self.redacted().to_connection_string()!r})"

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.pairs)

    def get(self, keyword: str, default: str | None = None) -> str | None:
        wanted = _normalize(canonical_keyword(keyword))
        for name, value in self.pairs:
            if _normalize(name) == wanted:
                return value
        return default

    def as_dict(self) -> dict[str, str]:
        return dict(self.pairs)

    @property
    def host(self) -> str | None:
        return self.get(HOST)

    @property
    def database(self) -> str | None:
        return self.get(DATABASE)

    @property
    def username(self) -> str | None:
        return self.get(USERNAME)

    @property
    def password(self) -> str | None:
        return self.get(PASSWORD)

    @property
    def port(self) -> int | None:
        value = self.get(PORT)
        return None if value is None else parse_int(value, key=PORT)

    def with_value(self, keyword: str, value: str) -> ConnectionDescriptor:
        """Return a copy with ``keyword`` set, replacing any existing value in place."""

        name = canonical_keyword(keyword)
        wanted = _normalize(name)
        pairs = list(self.pairs)
        for index, (existing, _) in enumerate(pairs):
            if _normalize(existing) == wanted:
                pairs[index] = (existing, value)
                break
        else:
            pairs.append((name, value))
        return ConnectionDescriptor(tuple(pairs))

    def with_overrides(self, overrides: Iterable[tuple[str, str]]) -> ConnectionDescriptor:
        descriptor = self
        for keyword, value in overrides:
            descriptor = descriptor.with_value(keyword, value)
        return descriptor

    def redacted(self) -> ConnectionDescriptor:
        """Copy safe for logging: a non-empty password becomes a fixed mask."""

        if not self.password:
            return self
        return self.with_value(PASSWORD, PASSWORD_MASK)

    def to_connection_string(self) -> str:
        return ";".join(f"{name}={_quote_value(value)}" for name, value in self.pairs)

    def validate(self) -> None:
        """Check integer-valued keywords and the SSL mode."""

        for name, value in self.pairs:
            if name in _INTEGER_KEYWORDS:
                parse_int(value, key=name)
        ssl_mode = self.get(SSL_MODE)
        if ssl_mode is not None and _normalize(ssl_mode).replace("-", "") not in _SSL_MODES:
            raise ConfigurationError(f"Unsupported SSL Mode: {ssl_mode!r}")

    def connect_kwargs(self) -> dict[str, object]:
        """Keyword arguments for ``asyncpg.connect`` / ``asyncpg.create_pool``."""

        kwargs: dict[str, object] = {}
        host = self.host
        if host:
            hosts = [item.strip() for item in host.split(",") if item.strip()]
            if hosts:
                kwargs["host"] = hosts if len(hosts) > 1 else hosts[0]
        if self.port is not None:
            kwargs["port"] = self.port
        if self.database:
            kwargs["database"] = self.database
        if self.username:
            kwargs["user"] = self.username
        if self.password:
            kwargs["password"] = self.password
        timeout = self.get(TIMEOUT)
        if timeout is not None:
            kwargs["timeout"] = float(parse_int(timeout, key=TIMEOUT))
        command_timeout = self.get(COMMAND_TIMEOUT)
        if command_timeout is not None:
            kwargs["command_timeout"] = float(parse_int(command_timeout, key=COMMAND_TIMEOUT))
        ssl_mode = self.get(SSL_MODE)
        if ssl_mode is not None:
            kwargs["ssl"] = _SSL_MODES[_normalize(ssl_mode).replace("-", "")]
        server_settings: dict[str, str] = {}
        search_path = self.get(SEARCH_PATH)
        if search_path:
            server_settings["search_path"] = search_path
        application_name = self.get(APPLICATION_NAME)
        if application_name:
            server_settings["application_name"] = application_name
        if server_settings:
            kwargs["server_settings"] = server_settings
        ignored = [name for name, _ in self.pairs if name not in _DRIVER_KEYWORDS]
        if ignored:
            LOG.debug("Connection keywords not used by asyncpg", extra={"keywords": ignored})
        return kwargs

    def pool_kwargs(self) -> dict[str, int]:
        kwargs: dict[str, int] = {}
        minimum = self.get(MINIMUM_POOL_SIZE)
        if minimum is not None:
            kwargs["min_size"] = parse_int(minimum, key=MINIMUM_POOL_SIZE)
        maximum = self.get(MAXIMUM_POOL_SIZE)
        if maximum is not None:
            kwargs["max_size"] = parse_int(maximum, key=MAXIMUM_POOL_SIZE)
        if "max_size" in kwargs and "min_size" not in kwargs:
            kwargs["min_size"] = min(kwargs["max_size"], 1)
        if "min_size" in kwargs and "max_size" not in kwargs:
            kwargs["max_size"] = max(kwargs["min_size"], 10)
        return kwargs


def parse_connection_string(connection_string: str | None) -> ConnectionDescriptor:
    """Parse ``Keyword=Value;...`` text into a descriptor."""

    if connection_string is None or not connection_string.strip():
        raise ConfigurationError("A PostgreSQL connection string must be supplied.")
    descriptor = ConnectionDescriptor()
    for keyword, value in _split_pairs(connection_string):
        descriptor = descriptor.with_value(keyword, value)
    return descriptor


def build_connection_descriptor(
    connection_string: str | None,
    options: ProviderOptions | None = None,
) -> ConnectionDescriptor:
    """Parse the base string, then apply ``builder:`` overrides in order."""

    descriptor = parse_connection_string(connection_string)
    if options is not None:
        overrides = options.with_prefix(BUILDER_PREFIX)
        for keyword, _ in overrides:
            LOG.debug("Applying connection string override", extra={"keyword": keyword})
        descriptor = descriptor.with_overrides(overrides)
    descriptor.validate()
    return descriptor


def _split_pairs(text: str) -> Iterator[tuple[str, str]]:
    index = 0
    length = len(text)
    while index < length:
        separator = text.find("=", index)
        terminator = text.find(";", index)
        if separator == -1 or (terminator != -1 and terminator < separator):
            end = length if terminator == -1 else terminator
            if text[index:end].strip():
                raise ConfigurationError(
                    f"Malformed connection string segment: {text[index:end].strip()!r}"
                )
            index = end + 1
            continue
        keyword = text[index:separator]
        index = separator + 1
        while index < length and text[index] in " \t":
            index += 1
        if index < length and text[index] in "\"'":
            value, index = _read_quoted(text, index)
            while index < length and text[index].isspace():
                index += 1
            if index < length and text[index] != ";":
                raise ConfigurationError(
                    f"Unexpected text after quoted value for {keyword.strip()!r}"
                )
        else:
            end = text.find(";", index)
            end = length if end == -1 else end
            value = text[index:end].strip()
            index = end
        index += 1
        yield keyword, value


def _read_quoted(text: str, start: int) -> tuple[str, int]:
    quote = text[start]
    chunks: list[str] = []
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == quote:
            if index + 1 < len(text) and text[index + 1] == quote:
                chunks.append(quote)
                index += 2
                continue
            return "".join(chunks), index + 1
        chunks.append(char)
        index += 1
    raise ConfigurationError("Unterminated quoted value in connection string.")


def _quote_value(value: str) -> str:
    if value != value.strip() or any(char in value for char in ";\"'"):
        return '"' + value.replace('"', '""') + '"'
    return value


__all__ = [
    "ConnectionDescriptor",
    "PASSWORD_MASK",
    "build_connection_descriptor",
    "canonical_keyword",
    "parse_connection_string",
]
