"""Declarative base and shared column types."""
from __future__ import annotations

import enum

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, declared_attr

# JSONB on Postgres, plain JSON elsewhere (SQLite in development and tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (``phone``), not member names (``PHONE``)."""

    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base model with naming conventions."""

    __abstract__ = True

    @declared_attr.directive
    def __tablename__(cls) -> str:  # type: ignore[misc]
        return cls.__name__.lower()
