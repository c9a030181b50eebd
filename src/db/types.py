from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy.types import DateTime as _DateTime
from sqlalchemy.types import TypeDecorator

from src.utils.time import UTC


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """
    Store datetimes as naive UTC and always return tz-aware UTC datetimes.

    SQLite has no timezone-aware datetime type; Postgres (Supabase) gets the same
    normalized values so both backends compare equally.
    """

    impl = _DateTime
    cache_ok = True

    def process_bind_param(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        v = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return v.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
