"""
Declarative base and shared column mixins.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base holding the metadata for every cache table."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class BaseModel(Base):
    """Abstract base for cache tables."""

    __abstract__ = True


class TimestampMixin:
    """Adds created_at / updated_at columns maintained by the application."""

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        comment="When the row was first written"
    )

    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        comment="When the row was last written"
    )
