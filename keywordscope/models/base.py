"""Base model and column types for SQLAlchemy models."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import String, TypeDecorator

# JSONB on Postgres, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class StringCUID(TypeDecorator):
    """String identifier type for CUID values."""

    impl = String(32)
    cache_ok = True

    def process_result_value(self, value: Any, dialect: Any) -> str | None:
        if value is not None:
            return str(value)
        return value

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is not None:
            return str(value)
        return value


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass
