"""
SQLAlchemy declarative base with shared timestamp columns.
Every model inherits from this base.
"""
from sqlalchemy import Column, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from campusmarket.core.time_utils import utcnow


class TimestampMixin:
    """
    Adds created_at / updated_at columns.

    Both are naive UTC; updated_at is refreshed on every UPDATE.
    """

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# SQLAlchemy declarative base
Base = declarative_base()


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
