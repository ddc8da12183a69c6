"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Provides the declarative base and common mixins used by all
ORM models in the pipeline (moderation ledger, analytics,
engagement events, performance alerts).

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- TimestampMixin: Common timestamp columns
- new_id: String primary-key factory (portable across
  PostgreSQL and SQLite)

============================================================
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from core.clock import utcnow


def new_id() -> str:
    """Generate a string UUID primary key."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All timestamps are naive UTC; see core.clock.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=False),
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.

    Values are set from the application clock rather than the
    database server so that SQLite and PostgreSQL agree.

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        comment="Record creation timestamp (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Last update timestamp (UTC)"
    )
