"""
Declarative base for the ITAD ORM models.

Primary keys are UUID4 values stored as ``String(36)`` so the same schema
runs on SQLite (tests, single-node installs) and server databases.  This
module is the lowest import target in the kernel and imports nothing from
``models``, ``services`` or ``domain``.
"""

from uuid import UUID, uuid4

from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, 36-char text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """Every table gets a ``uuid4`` ``id`` primary key."""

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
