"""Codec keeping ``timestamp without time zone`` columns in UTC."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo

PG_EPOCH = datetime(2000, 1, 1)
_MICROSECOND = timedelta(microseconds=1)
_INFINITY = 2**63 - 1
_NEGATIVE_INFINITY = -(2**63)


class DateTimeKindConverter:
    """Stores datetimes as UTC and tags values read back with ``kind``.

    Aware values are converted to UTC before writing; naive values are taken to
    already be UTC. Registered on every pooled connection via ``register``.
    """

    def __init__(self, kind: tzinfo = timezone.utc) -> None:
        self.kind = kind

    def encode(self, value: datetime) -> tuple[int]:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        if value == datetime.max:
            return (_INFINITY,)
        if value == datetime.min:
            return (_NEGATIVE_INFINITY,)
        return ((value - PG_EPOCH) // _MICROSECOND,)

    def decode(self, data: tuple[int]) -> datetime:
        (microseconds,) = data
        if microseconds == _INFINITY:
            return datetime.max.replace(tzinfo=self.kind)
        if microseconds == _NEGATIVE_INFINITY:
            return datetime.min.replace(tzinfo=self.kind)
        return (PG_EPOCH + timedelta(microseconds=microseconds)).replace(tzinfo=self.kind)

    async def register(self, connection) -> None:  # type: ignore[no-untyped-def]
        await connection.set_type_codec(
            "timestamp",
            schema="pg_catalog",
            encoder=self.encode,
            decoder=self.decode,
            format="tuple",
        )


__all__ = ["DateTimeKindConverter", "PG_EPOCH"]
