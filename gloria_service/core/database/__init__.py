"""Core database package: declarative base, mixins and a thin repository.

Base Classes and Mixins:
    - Base: Declarative base with constraint naming conventions
    - UUIDv7PKMixin: Time-sortable UUID primary key
    - TimestampMixin: created_at, updated_at tracking

Repository:
    - BaseRepository[T]: Single-entity lookups with explicit session passing
"""

from gloria_service.core.database.base import (
    NAMING_CONVENTION,
    Base,
    TimestampMixin,
    UUIDv7PKMixin,
    generate_uuid7,
)
from gloria_service.core.database.repository import BaseRepository

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "generate_uuid7",
]
