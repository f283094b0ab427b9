"""
Declarative base shared by every table in the field operations schema.

Primary keys are ULID strings (26 chars, lexicographically time ordered) so ids
can be generated in the application before a row is flushed.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import ulid


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """
    created_at / updated_at columns filled in by the database.

    Both are server defaults, so freshly inserted rows must be refreshed before
    the values are read back.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
