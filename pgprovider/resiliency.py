"""Timeout and retry policy resolved from provider options."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import asyncpg

from .options import (
    COMMAND_TIMEOUT,
    ENABLE_RETRY_ON_FAILURE,
    ENABLE_SENSITIVE_DATA_LOGGING,
    RETRY_COUNT,
    RETRY_DELAY_SECONDS,
    ProviderOptions,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_COUNT = 5
DEFAULT_RETRY_DELAY_SECONDS = 15

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InsufficientResourcesError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.AdminShutdownError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    OSError,
    asyncio.TimeoutError,
)

Sleeper = Callable[[float], Awaitable[None]]


def is_transient_error(exc: BaseException) -> bool:
    """True for failures worth retrying: lost connections, contention, overload."""

    return isinstance(exc, _TRANSIENT_ERRORS)


@dataclass(frozen=True, slots=True)
class ResiliencyPolicy:
    """Command timeout plus optional retry-on-failure settings."""

    command_timeout: int | None = None
    retry_enabled: bool = False
    retry_count: int = DEFAULT_RETRY_COUNT
    retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS

    @property
    def max_attempts(self) -> int:
        return self.retry_count + 1 if self.retry_enabled else 1

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff for the given 1-based retry, capped at ``retry_delay_seconds``."""

        return float(min(2**attempt - 1, self.retry_delay_seconds))

    async def run(self, operation: Callable[[], Awaitable[T]], *, sleep: Sleeper = asyncio.sleep) -> T:
        """Run ``operation``, retrying transient failures when retries are enabled."""

        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                attempt += 1
                if attempt >= self.max_attempts or not is_transient_error(exc):
                    raise
                delay = self.delay_for(attempt)
                LOG.warning(
                    "Transient PostgreSQL failure, retrying",
                    extra={"attempt": attempt, "retry_count": self.retry_count, "delay": delay},
                )
                await sleep(delay)


def resolve_resiliency_policy(options: ProviderOptions) -> ResiliencyPolicy:
    """Read timeout and retry options; retry settings only count when retries are on."""

    command_timeout = options.get_int(COMMAND_TIMEOUT, positive=True)
    if not options.get_bool(ENABLE_RETRY_ON_FAILURE):
        return ResiliencyPolicy(command_timeout=command_timeout)
    return ResiliencyPolicy(
        command_timeout=command_timeout,
        retry_enabled=True,
        retry_count=options.get_int(RETRY_COUNT, DEFAULT_RETRY_COUNT, positive=True),
        retry_delay_seconds=options.get_int(RETRY_DELAY_SECONDS, DEFAULT_RETRY_DELAY_SECONDS, positive=True),
    )


def raise_if_cancelled(cancel: asyncio.Event | None) -> None:
    """Abort at a connection or statement boundary once ``cancel`` is set."""

    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError()


def resolve_sensitive_data_logging(options: ProviderOptions) -> bool:
    return options.get_bool(ENABLE_SENSITIVE_DATA_LOGGING)


__all__ = [
    "DEFAULT_RETRY_COUNT",
    "DEFAULT_RETRY_DELAY_SECONDS",
    "ResiliencyPolicy",
    "is_transient_error",
    "raise_if_cancelled",
    "resolve_resiliency_policy",
    "resolve_sensitive_data_logging",
]
