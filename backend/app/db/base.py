"""
Database Base Classes and Common Utilities

Foundation for every ORM model in the pipeline.

Key Pieces:
-----------
1. metadata: MetaData with a constraint naming convention, so Alembic
   autogenerate produces stable names (uq_blocks_arena_id, fk_blocks_channel_id_channels)
2. Base: SQLAlchemy 2.0 DeclarativeBase bound to that metadata
3. TimestampedColumns: id / created_at / updated_at shared by all tables
4. BaseModel: abstract base combining the two
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, registry


# ================================
# Naming Convention for Constraints
# ================================
convention = {
    "ix": "ix_%(column_0_label)s",  # Index
    "uq": "uq_%(table_name)s_%(column_0_name)s",  # Unique constraint
    "ck": "ck_%(table_name)s_%(constraint_name)s",  # Check constraint
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",  # Foreign key
    "pk": "pk_%(table_name)s",  # Primary key
}

metadata = MetaData(naming_convention=convention)

orm_registry = registry(metadata=metadata)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# ================================
# Base DeclarativeBase Class
# ================================
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        class Block(Base):
            __tablename__ = "blocks"
            id: Mapped[int] = mapped_column(primary_key=True)
    """

    registry = orm_registry
    metadata = metadata

    __tablename__: str


# ================================
# Shared Columns Mixin
# ================================
class TimestampedColumns:
    """
    Mixin with the columns every table carries.

    - id: auto-incrementing integer primary key
    - created_at: set once on insert (UTC)
    - updated_at: refreshed on every ORM update (UTC)

    Bulk upserts issued through insert().on_conflict_do_update() bypass the
    ORM onupdate hook, so they set updated_at explicitly.
    """

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing primary key"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated (UTC)"
    )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"

    def dict(self) -> dict[str, Any]:
        """
        Convert model instance to a plain dictionary of column values.

        Handy for logging and for Celery task results, which must be JSON.
        """
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }


# ================================
# Convenient Base Model
# ================================
class BaseModel(Base, TimestampedColumns):
    """
    Ready-to-use abstract base for application models.

    class Channel(BaseModel):
        __tablename__ = "channels"
        ...
    """

    __abstract__ = True


# ================================
# String Length Constraints
# ================================
String50 = String(50)  # session ids, month keys, tiers
String100 = String(100)  # IP addresses, usernames
String255 = String(255)  # titles, slugs
String2048 = String(2048)  # URLs (Are.na source URLs can be long)
