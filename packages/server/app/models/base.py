"""Base mixins and column helpers for SQLModel tables."""

from datetime import datetime, timezone
from typing import Any
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp(**kwargs: Any) -> Any:
    """A non-null, timezone-aware column defaulting to the current UTC time."""
    return Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
        **kwargs,
    )


class TimestampMixin(SQLModel):
    created_at: datetime = utc_timestamp()
    updated_at: datetime = utc_timestamp(sa_column_kwargs={"onupdate": utcnow})


class UUIDMixin(SQLModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, nullable=False)
