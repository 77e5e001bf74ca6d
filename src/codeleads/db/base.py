"""
SQLAlchemy Base and Mixins

Provides declarative base, reusable mixins and the append-only guard for
database models.
"""
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

from src.codeleads.exceptions import AppendOnlyViolationError

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current time used for all application-set timestamps."""
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    """String UUID primary key."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """
    Base class for all database models.

    Provides common functionality and type hints for SQLAlchemy models.
    """

    id: Any


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamp columns.

    Automatically tracks when records are created and last updated.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when record was created"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )


def append_only(model_cls):
    """
    Class decorator marking a model as append-only.

    Any flush that would UPDATE or DELETE a row of the model raises
    AppendOnlyViolationError before SQL is emitted.
    """

    def _reject(operation: str):
        def listener(mapper, connection, target):
            raise AppendOnlyViolationError(
                f"{model_cls.__tablename__} is append-only; {operation} rejected",
                {"table": model_cls.__tablename__, "operation": operation},
            )
        return listener

    event.listen(model_cls, "before_update", _reject("update"))
    event.listen(model_cls, "before_delete", _reject("delete"))
    return model_cls


def import_all_models():
    """
    Import all models to register them with SQLAlchemy Base.

    This function should be called before running Alembic migrations
    to ensure all models are discovered.
    """
    from src.codeleads.db import models  # noqa: F401
