"""Column types that behave the same on PostgreSQL and on the SQLite test store."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

import orjson
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.type_api import TypeEngine
from sqlalchemy.types import CHAR, JSON, DateTime, TypeDecorator

__all__ = ["GUID", "JSONType", "JSONValue", "UTCDateTime"]

JSONValue = dict[str, Any] | list[Any]


class GUID(TypeDecorator[uuid.UUID]):
    """Native ``uuid`` on PostgreSQL, ``CHAR(36)`` elsewhere."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = uuid.UUID(value)
        if not isinstance(value, uuid.UUID):
            raise TypeError(f"GUID columns take UUID values, got {type(value)!r}")
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator[JSONValue]):
    """``JSONB`` on PostgreSQL, plain ``JSON`` on SQLite.

    Task params come straight from client payloads, so values are normalised
    through orjson on the way in: UUIDs and datetimes become strings and
    anything orjson cannot encode is rejected before it reaches the driver.
    """

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if not isinstance(value, (dict, list)):
            raise TypeError("JSONType columns hold objects or arrays")
        return orjson.loads(orjson.dumps(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> JSONValue | None:
        if value is None or isinstance(value, (dict, list)):
            return value
        decoded = orjson.loads(value)
        if not isinstance(decoded, (dict, list)):
            raise TypeError("stored JSON is neither an object nor an array")
        return decoded


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite drops the offset; everything we write is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


class UTCDateTime(TypeDecorator[dt.datetime]):
    """Timezone-aware timestamps, always returned in UTC."""

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if not isinstance(value, dt.datetime):
            raise TypeError("UTCDateTime columns take datetime values")
        if value.tzinfo is None:
            raise ValueError("naive datetimes are not accepted; attach a timezone")
        return value.astimezone(dt.UTC)

    def process_result_value(self, value: Any, dialect: Dialect) -> dt.datetime | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = dt.datetime.fromisoformat(value)
        if not isinstance(value, dt.datetime):
            raise TypeError(f"expected a datetime, got {type(value)!r}")
        return _as_utc(value)
