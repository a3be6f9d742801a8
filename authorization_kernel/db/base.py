"""
Declarative base classes for the authorization tables.

Every table gets a uuid4 primary key stored as a 36-character string, so
the same schema runs on PostgreSQL and SQLite.  Header-like tables
(authorizations, service types) also carry who/when audit columns through
TrackedBase; the utilization ledger row carries its own last-update fields
instead.

This module is the bottom of the kernel import graph: it must not import
from models/, selectors/, services/ or domain/.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID in Python, VARCHAR(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """
    Root of every model.

    Annotation map: unit counters are BigInteger, negotiated rates are
    Numeric(12, 2), timestamps are timezone-aware.
    """

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        int: BigInteger,
        Decimal: Numeric(12, 2),
        datetime: DateTime(timezone=True),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """created/updated timestamps and actor ids.  created_by_id is required."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
