import uuid

from sqlalchemy import JSON, ForeignKey, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSON column that becomes JSONB on PostgreSQL; SQL NULL (not JSON 'null') for None.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class Base(DeclarativeBase):
    pass


class EntityScopedBase(Base):
    """Abstract base for all entity-scoped tables. Adds entity_id FK + index."""

    __abstract__ = True

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("entities.id"),
        nullable=False,
        index=True,
    )
