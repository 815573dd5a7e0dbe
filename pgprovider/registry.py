"""Discovery of database providers exposed via entry points."""

from __future__ import annotations

import importlib.metadata as metadata
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar

from .errors import ConfigurationError

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "pgprovider.database_providers"
PROVIDER_KEY_ATTR = "provider_key"

C = TypeVar("C", bound=type)


def provider_key(key: str) -> Callable[[C], C]:
    """Class decorator tagging a provider with the key the host selects it by."""

    if not key or not key.strip():
        raise ValueError("Provider keys cannot be empty")

    def _decorate(cls: C) -> C:
        setattr(cls, PROVIDER_KEY_ATTR, key)
        return cls

    return _decorate


@dataclass(slots=True, frozen=True)
class DiscoveredProvider:
    """Metadata captured from entry point discovery."""

    key: str
    provider_class: type
    entry_point: metadata.EntryPoint | None = None


class ProviderRegistry:
    """Resolves provider classes by key from entry points and built-ins."""

    def __init__(
        self,
        *,
        entry_point_group: str = ENTRY_POINT_GROUP,
        builtin_providers: Iterable[type] | None = None,
    ) -> None:
        self._entry_point_group = entry_point_group
        self._builtin_providers = list(builtin_providers or [])
        self._discovered: dict[str, DiscoveredProvider] = {}

    def discover(self) -> list[DiscoveredProvider]:
        """Enumerate provider classes; built-ins never shadow entry points."""

        discovered: dict[str, DiscoveredProvider] = {}
        group = metadata.entry_points().select(group=self._entry_point_group)
        for entry_point in sorted(group, key=lambda ep: ep.name):
            provider_class = self._load_class(entry_point)
            key = getattr(provider_class, PROVIDER_KEY_ATTR, None) if provider_class else None
            if not key:
                LOG.warning("Skipping entry point without a provider key", extra={"entry_point": entry_point.name})
                continue
            discovered[key.casefold()] = DiscoveredProvider(key, provider_class, entry_point)
        for provider_class in self._builtin_providers:
            key = getattr(provider_class, PROVIDER_KEY_ATTR, None)
            if not key:
                LOG.warning("Skipping built-in provider without a key", extra={"provider": provider_class.__name__})
                continue
            discovered.setdefault(key.casefold(), DiscoveredProvider(key, provider_class))
        self._discovered = discovered
        return list(discovered.values())

    def keys(self) -> list[str]:
        if not self._discovered:
            self.discover()
        return [provider.key for provider in self._discovered.values()]

    def resolve(self, key: str) -> type:
        """Return the provider class registered under ``key`` (case-insensitive)."""

        if not self._discovered:
            self.discover()
        try:
            return self._discovered[key.casefold()].provider_class
        except KeyError:
            known = ", ".join(sorted(self.keys())) or "none"
            raise ConfigurationError(f"No database provider registered for '{key}' (known: {known}).") from None

    def create(self, key: str, **kwargs: Any) -> Any:
        return self.resolve(key)(**kwargs)

    def _load_class(self, entry_point: metadata.EntryPoint) -> type | None:
        obj = entry_point.load()
        if inspect.isclass(obj):
            return obj
        LOG.warning("Entry point does not reference a class", extra={"entry_point": entry_point.name})
        return None


def default_registry() -> ProviderRegistry:
    """Registry with the bundled PostgreSQL provider as a built-in."""

    from .provider import PostgresDatabaseProvider

    return ProviderRegistry(builtin_providers=[PostgresDatabaseProvider])


__all__ = [
    "DiscoveredProvider",
    "ENTRY_POINT_GROUP",
    "ProviderRegistry",
    "default_registry",
    "provider_key",
]
