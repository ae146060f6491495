"""
Module: pharmacy_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map that
    keeps money in fixed-point columns, and the TrackedBase mixin for
    row timestamps.
Architecture position: Kernel > DB.  Lowest-level import target for the
    models package.  MUST NOT import from models/, store/ or services/.

Invariants enforced:
    - UUID primary keys generated with uuid4, stored as String(36) so the
      schema runs unchanged on PostgreSQL and SQLite.
    - Decimal maps to Numeric(38, 9).  Money is NEVER stored as float.
    - datetime maps to UTCDateTime (always timezone-aware on read).
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalized to UTC.

    SQLite drops tzinfo on storage; values read back without one are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Guarantees:
        - id is a uuid4-generated UUID.
        - Decimal -> Numeric(38, 9), datetime -> UTCDateTime,
          int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base for mutable operational rows (sales, line items, stock).

    created_at is set on INSERT; updated_at follows every UPDATE, including
    the conditional bulk updates the store issues for stock and counters.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
