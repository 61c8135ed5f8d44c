"""SQLAlchemy declarative base, UTC datetime column type and common columns."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UtcDateTime(TypeDecorator):
    """Timezone-aware datetime that always reads back as UTC.

    SQLite drops the offset on storage, so naive values coming back are
    tagged as UTC; values are normalized to UTC before binding.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM rows."""

    type_annotation_map = {datetime: UtcDateTime()}


class TimestampMixin:
    """Row bookkeeping: when the store first saw a record and last changed it."""

    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime, default=_now, server_default=func.now(), onupdate=_now,
    )
