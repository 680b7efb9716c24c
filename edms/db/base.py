"""
EDMS Database Base — SQLAlchemy declarative base, mixins, and UTC helpers.

Provides:
- Base: SQLAlchemy declarative base for all EDMS models
- SoftDeleteMixin: is_deleted, deleted_at
- utcnow / as_utc: timezone handling shared by models and queries
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all EDMS models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.

    SQLite drops tzinfo on DateTime(timezone=True) columns; naive values
    read back from the store are UTC by construction.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SoftDeleteMixin:
    """Adds is_deleted, deleted_at columns for soft delete support."""
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
