from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column
from sqlalchemy import Enum as SAEnum


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def enum_column(enum_cls: type[Enum], name: str, **kwargs) -> Column:
    """Persist enum *values* (e.g. 'in_progress'), not member names."""
    return Column(
        SAEnum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
        **kwargs,
    )
