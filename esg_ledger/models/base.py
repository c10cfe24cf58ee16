"""
ESG Ledger - Base Model

Shared column types and helpers for all SQLAlchemy models.
"""

import enum
from datetime import datetime, timezone
from typing import Type

from sqlalchemy import Enum as SQLEnum

from esg_ledger.database import Base


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def enum_column(enum_cls: Type[enum.Enum]) -> SQLEnum:
    """Enum column persisted by value ("site"), not by member name ("SITE")."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
        validate_strings=True,
    )


__all__ = ["Base", "utcnow", "enum_column"]
